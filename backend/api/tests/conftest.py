from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app import lifecycle
from app.anchoring import Inclusion, InclusionOutcome
from app.config import Settings
from app.context import CurationContext
from app.db import init_schema
from app.errors import ExternalUnavailable
from app.models import ArtifactType, Principal, Role, VoteValue
from app.sweeper import sweep_expired_reviews
from app.users import ensure_system_user, get_or_create_user
from app.voting import cast_vote

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeContentStore:
    def __init__(self) -> None:
        self.documents: List[Dict[str, Any]] = []
        self.files: List[str] = []
        self.fail_json = False
        self.fail_file = False
        self._ids = itertools.count(1)

    def publish_json(self, document: Dict[str, Any], name: str) -> str:
        if self.fail_json:
            raise ExternalUnavailable("content store down")
        self.documents.append(document)
        return f"bafyjson{next(self._ids)}"

    def publish_file(self, url: str, name: str) -> str:
        if self.fail_file:
            raise ExternalUnavailable("file host down")
        self.files.append(url)
        return f"bafyfile{next(self._ids)}"

    def gateway_url(self, content_id: str) -> str:
        return f"https://gateway.test/ipfs/{content_id}"


class FakeLedger:
    network = "testnet"

    def __init__(self) -> None:
        self.available = True
        self.outcome = InclusionOutcome.INCLUDED
        self.lookup_outcome = InclusionOutcome.TIMED_OUT
        self.remarks: List[str] = []
        self.lookups: List[str] = []
        self._blocks = itertools.count(100)

    def is_available(self) -> bool:
        return self.available

    def submit_remark(self, remark: str, timeout: float) -> Inclusion:
        self.remarks.append(remark)
        n = next(self._blocks)
        if self.outcome == InclusionOutcome.TIMED_OUT:
            return Inclusion(
                InclusionOutcome.TIMED_OUT,
                tx_hash=f"0xtx{n}",
                detail="fake ledger",
                submitted_block=n,
                valid_until_block=n + 64,
            )
        if self.outcome != InclusionOutcome.INCLUDED:
            return Inclusion(self.outcome, tx_hash=f"0xtx{n}", detail="fake ledger")
        return Inclusion(InclusionOutcome.INCLUDED, tx_hash=f"0xtx{n}", block_number=n)

    def lookup(self, tx_hash: str, from_block: int, valid_until_block: int) -> Inclusion:
        self.lookups.append(tx_hash)
        if self.lookup_outcome == InclusionOutcome.INCLUDED:
            return Inclusion(InclusionOutcome.INCLUDED, tx_hash=tx_hash, block_number=from_block + 1)
        return Inclusion(
            self.lookup_outcome,
            tx_hash=tx_hash,
            detail="fake ledger",
            submitted_block=from_block,
            valid_until_block=valid_until_block,
        )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    init_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        review_window_days=7,
        min_votes=3,
        approve_ratio=0.6,
        flag_threshold=3,
        file_storage_base_url="https://files.test/",
        pinata_jwt="",
        chain_rpc_url="",
        anchor_seed="",
        chain_explorer_url="https://explorer.test/extrinsic/",
        anchor_remark_prefix="CURATE",
        anchor_inclusion_timeout_seconds=5,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def content_store() -> FakeContentStore:
    return FakeContentStore()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def ctx(engine, settings, clock, content_store, ledger) -> CurationContext:
    return CurationContext(
        engine=engine,
        settings=settings,
        clock=clock,
        content_store=content_store,
        ledger=ledger,
    )


@pytest.fixture
def system_id(ctx) -> str:
    return ensure_system_user(ctx.engine, ctx.settings.system_wallet, ctx.clock)


def _principal(ctx: CurationContext, wallet: str, role: Role = Role.MEMBER) -> Principal:
    user = get_or_create_user(ctx.engine, wallet, ctx.clock, role=role)
    return Principal(user_id=user.id, role=user.role)


@pytest.fixture
def people(ctx) -> SimpleNamespace:
    return SimpleNamespace(
        submitter=_principal(ctx, "5Submitter"),
        voters=[_principal(ctx, f"5Voter{i}") for i in range(5)],
        expert=_principal(ctx, "5Expert", Role.EXPERT),
        expert2=_principal(ctx, "5Expert2", Role.EXPERT),
        admin=_principal(ctx, "5Admin", Role.ADMIN),
        outsider=_principal(ctx, "5Outsider"),
    )


@pytest.fixture
def make_artifact(ctx, people):
    def _make(principal: Optional[Principal] = None, **overrides: Any):
        values = {
            "title": "Harbour at dawn",
            "description": "Photograph of the old harbour taken at sunrise.",
            "type": ArtifactType.IMAGE,
            "tags": ["harbour", "photo"],
        }
        values.update(overrides)
        return lifecycle.submit(ctx, principal or people.submitter, **values)

    return _make


@pytest.fixture
def expert_review_artifact(ctx, people, clock, make_artifact, system_id):
    """An artifact that passed community review and waits for an expert."""
    def _make(file_reference: Optional[str] = None, **overrides: Any):
        artifact = make_artifact(**overrides)
        if file_reference:
            lifecycle.record_file(ctx, artifact.id, people.submitter, file_reference, "application/pdf")
        for voter in people.voters[:3]:
            cast_vote(ctx, artifact.id, voter.user_id, VoteValue.APPROVE)
        clock.advance(days=7)
        sweep_expired_reviews(ctx, system_id)
        return artifact.id

    return _make
