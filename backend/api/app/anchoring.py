"""Proof anchoring: commit a hash of a verified artifact to a public ledger.

The hash covers a small canonical JSON document built only from public
fields, so anyone holding those fields can recompute it (verify_proof) and
compare with the remark stored on-chain. The ledger adapter submits a
Substrate System.remark and waits, with a bound, for block inclusion.
"""

from __future__ import annotations

import enum
import hashlib
import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Tuple

from app import audit, repo
from app.config import Settings
from app.errors import Conflict, ExternalUnavailable, NotFound, PreconditionFailed
from app.models import ArtifactStatus, AuditEvent, EventType

if TYPE_CHECKING:
    from app.context import CurationContext

logger = logging.getLogger(__name__)

PROOF_VERSION = "v1"


# ----------------------------
# Ledger adapter
# ----------------------------

class InclusionOutcome(str, enum.Enum):
    INCLUDED = "INCLUDED"
    DROPPED = "DROPPED"
    TIMED_OUT = "TIMED_OUT"


@dataclass(frozen=True)
class Inclusion:
    outcome: InclusionOutcome
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    detail: str = ""
    # Set on TIMED_OUT: where to look for the transaction, and the last
    # block it can still land in.
    submitted_block: Optional[int] = None
    valid_until_block: Optional[int] = None


class Ledger(Protocol):
    network: str

    def is_available(self) -> bool: ...

    def submit_remark(self, remark: str, timeout: float) -> Inclusion: ...

    def lookup(self, tx_hash: str, from_block: int, valid_until_block: int) -> Inclusion: ...


class SubstrateLedger:
    """
    System.remark submitter backed by substrate-interface.

    One submission at a time. The extrinsic is signed (mortal, so it cannot
    land after `mortality_period` blocks) and its hash taken before waiting,
    which lets a caller that timed out come back later with lookup() instead
    of sending a second remark. While a submission is still in flight every
    other call is refused with ExternalUnavailable.
    """

    def __init__(self, rpc_url: str, seed: str, network: str = "paseo", mortality_period: int = 64) -> None:
        self.rpc_url = rpc_url
        self.network = network
        self.mortality_period = mortality_period
        self._seed = seed
        self._substrate = None
        self._keypair = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ledger-submit")
        self._lock = threading.Lock()
        self._in_flight: Optional[Future] = None

    def connect(self) -> bool:
        from substrateinterface import Keypair, SubstrateInterface

        try:
            self._substrate = SubstrateInterface(url=self.rpc_url)
            self._keypair = Keypair.create_from_uri(self._seed)
        except Exception as e:  # unreachable node, bad seed URI
            logger.error("Failed to connect to ledger node %s: %s", self.rpc_url, e)
            self._substrate = None
            self._keypair = None
            return False

        logger.info("Connected to %s, anchor account %s", self.rpc_url, self._keypair.ss58_address)
        return True

    def is_available(self) -> bool:
        return self._substrate is not None and self._keypair is not None

    def _ensure_idle(self) -> None:
        if self._in_flight is not None and not self._in_flight.done():
            raise ExternalUnavailable("A ledger submission is still in flight")

    def _sign(self, remark: str) -> Tuple[Any, str, int]:
        """Returns (extrinsic, tx hash, current head). Nothing is sent yet."""
        from substrateinterface.exceptions import SubstrateRequestException

        try:
            call = self._substrate.compose_call(
                call_module="System",
                call_function="remark",
                call_params={"remark": remark},
            )
            head = int(self._substrate.get_block_number(None))
            extrinsic = self._substrate.create_signed_extrinsic(
                call=call,
                keypair=self._keypair,
                era={"period": self.mortality_period},
            )
        except SubstrateRequestException as e:
            raise ExternalUnavailable(f"Could not sign remark: {e}") from e
        return extrinsic, "0x" + extrinsic.extrinsic_hash.hex(), head

    def _submit(self, extrinsic: Any, tx_hash: str) -> Inclusion:
        from substrateinterface.exceptions import SubstrateRequestException

        try:
            receipt = self._substrate.submit_extrinsic(extrinsic, wait_for_inclusion=True)
        except SubstrateRequestException as e:
            return Inclusion(InclusionOutcome.DROPPED, tx_hash=tx_hash, detail=str(e))

        if not receipt.is_success:
            return Inclusion(InclusionOutcome.DROPPED, tx_hash=tx_hash, detail=str(receipt.error_message))

        block_number = self._substrate.get_block_number(receipt.block_hash)
        return Inclusion(InclusionOutcome.INCLUDED, tx_hash=tx_hash, block_number=int(block_number))

    def submit_remark(self, remark: str, timeout: float) -> Inclusion:
        with self._lock:
            self._ensure_idle()
            extrinsic, tx_hash, head = self._sign(remark)
            future = self._executor.submit(self._submit, extrinsic, tx_hash)
            self._in_flight = future

        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            return Inclusion(
                InclusionOutcome.TIMED_OUT,
                tx_hash=tx_hash,
                detail=f"not included within {timeout:.0f}s",
                submitted_block=head,
                valid_until_block=head + self.mortality_period,
            )

    def _scan(self, tx_hash: str, from_block: int, valid_until_block: int) -> Tuple[int, Optional[Inclusion]]:
        """Search blocks from_block..min(head, valid_until_block). Returns (head, inclusion or None)."""
        from substrateinterface.exceptions import SubstrateRequestException

        try:
            head = int(self._substrate.get_block_number(None))
            for number in range(from_block, min(head, valid_until_block) + 1):
                extrinsics = self._substrate.get_extrinsics(block_number=number) or []
                if not any("0x" + e.extrinsic_hash.hex() == tx_hash for e in extrinsics):
                    continue
                receipt = self._substrate.retrieve_extrinsic_by_hash(self._substrate.get_block_hash(number), tx_hash)
                if receipt.is_success:
                    return head, Inclusion(InclusionOutcome.INCLUDED, tx_hash=tx_hash, block_number=number)
                return head, Inclusion(InclusionOutcome.DROPPED, tx_hash=tx_hash, detail=str(receipt.error_message))
        except SubstrateRequestException as e:
            raise ExternalUnavailable(f"Ledger lookup failed: {e}") from e
        return head, None

    def lookup(self, tx_hash: str, from_block: int, valid_until_block: int) -> Inclusion:
        """
        Where did an earlier, timed-out submission end up? TIMED_OUT means it
        can still land; DROPPED means it never will.
        """
        with self._lock:
            self._ensure_idle()
            head, found = self._scan(tx_hash, from_block, valid_until_block)

        if found is not None:
            return found
        if head > valid_until_block:
            return Inclusion(InclusionOutcome.DROPPED, tx_hash=tx_hash, detail="expired without inclusion")
        return Inclusion(
            InclusionOutcome.TIMED_OUT,
            tx_hash=tx_hash,
            detail="still pending",
            submitted_block=from_block,
            valid_until_block=valid_until_block,
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False)
        if self._substrate is not None:
            self._substrate.close()


def ledger_from_settings(settings: Settings) -> Optional[SubstrateLedger]:
    if not settings.chain_rpc_url or not settings.anchor_seed:
        logger.warning("CHAIN_RPC_URL/ANCHOR_SEED not set; anchoring disabled")
        return None
    ledger = SubstrateLedger(
        settings.chain_rpc_url,
        settings.anchor_seed,
        network=settings.chain_network,
        mortality_period=settings.anchor_mortality_blocks,
    )
    ledger.connect()
    return ledger


# ----------------------------
# Canonical proof
# ----------------------------

def format_verified_at(value: datetime) -> str:
    """UTC, millisecond precision, trailing Z: 2026-01-31T12:00:00.000Z"""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S") + f".{value.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class ProofFields:
    artifact_id: str
    title: str
    content_id: Optional[str]
    submitter_identity: str
    verified_at: str
    expert_identity: str

    def payload(self) -> Dict[str, Any]:
        # Key order is part of the hash.
        return {
            "artifactId": self.artifact_id,
            "title": self.title,
            "contentId": self.content_id or None,
            "submitterIdentity": self.submitter_identity,
            "verifiedAt": self.verified_at,
            "expertIdentity": self.expert_identity,
        }


@dataclass(frozen=True)
class ProofDigest:
    canonical: str
    hash: str


def verify_proof(fields: ProofFields) -> ProofDigest:
    """
    Recompute the anchored hash from public fields. Pure; no I/O.
    Equal hashes mean the on-chain remark commits to exactly these fields.
    """
    canonical = json.dumps(fields.payload(), separators=(",", ":"), ensure_ascii=False)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return ProofDigest(canonical=canonical, hash=digest)


def remark_for(prefix: str, proof_hash: str) -> str:
    return f"{prefix}:{PROOF_VERSION}:{proof_hash}"


# ----------------------------
# Operations
# ----------------------------

@dataclass(frozen=True)
class AnchorResult:
    tx_hash: str
    block_number: int
    proof_hash: str
    explorer_url: str


def explorer_url(settings: Settings, tx_hash: str) -> str:
    return f"{settings.chain_explorer_url}{tx_hash}"


def _pending_submission(events: List[AuditEvent]) -> Optional[AuditEvent]:
    """The last ANCHOR_SUBMITTED event, unless something settled it since."""
    for event in reversed(events):
        if event.type == EventType.ANCHOR_SUBMITTED:
            return event
        if event.type in (EventType.ANCHORED, EventType.ANCHOR_EXPIRED):
            return None
    return None


def _fields_from_payload(proof: Dict[str, Any]) -> ProofFields:
    return ProofFields(
        artifact_id=proof["artifactId"],
        title=proof["title"],
        content_id=proof["contentId"],
        submitter_identity=proof["submitterIdentity"],
        verified_at=proof["verifiedAt"],
        expert_identity=proof["expertIdentity"],
    )


def _record_anchor(
    ctx: "CurationContext",
    artifact_id: str,
    actor_id: str,
    inclusion: Inclusion,
    fields: ProofFields,
    remark: str,
    anchored_at: datetime,
    network: str,
) -> AnchorResult:
    digest = verify_proof(fields)
    with ctx.engine.begin() as conn:
        if not repo.set_anchor(conn, artifact_id, inclusion.tx_hash, inclusion.block_number, anchored_at, ctx.now()):
            logger.error("Artifact %s anchored concurrently; extra tx %s not recorded", artifact_id, inclusion.tx_hash)
            raise Conflict("Artifact was anchored concurrently")
        audit.emit(
            conn,
            artifact_id,
            actor_id,
            EventType.ANCHORED,
            {
                "txHash": inclusion.tx_hash,
                "blockNumber": inclusion.block_number,
                "proofHash": digest.hash,
                "canonical": digest.canonical,
                "proof": fields.payload(),
                "remark": remark,
                "network": network,
            },
            ctx.now(),
        )

    logger.info("Anchored %s: tx=%s block=%s", artifact_id, inclusion.tx_hash, inclusion.block_number)
    return AnchorResult(
        tx_hash=inclusion.tx_hash,
        block_number=inclusion.block_number,
        proof_hash=digest.hash,
        explorer_url=explorer_url(ctx.settings, inclusion.tx_hash),
    )


def _settle_pending(
    ctx: "CurationContext",
    ledger: Ledger,
    artifact_id: str,
    actor_id: str,
    pending: AuditEvent,
) -> Optional[AnchorResult]:
    """
    Resolve an earlier submission that timed out. Returns the anchor when it
    landed, None when it expired (a new submission may go out), and raises
    ExternalUnavailable while it can still land.
    """
    p = pending.payload
    inclusion = ledger.lookup(p["txHash"], p["submittedBlock"], p["validUntilBlock"])

    if inclusion.outcome == InclusionOutcome.INCLUDED:
        logger.info("Pending anchor tx %s for %s was included", p["txHash"], artifact_id)
        return _record_anchor(
            ctx,
            artifact_id,
            actor_id,
            inclusion,
            _fields_from_payload(p["proof"]),
            p["remark"],
            datetime.fromisoformat(p["anchoredAt"]),
            p["network"],
        )
    if inclusion.outcome == InclusionOutcome.TIMED_OUT:
        raise ExternalUnavailable(f"Anchor transaction {p['txHash']} for {artifact_id} is still pending")

    with ctx.engine.begin() as conn:
        audit.emit(
            conn,
            artifact_id,
            actor_id,
            EventType.ANCHOR_EXPIRED,
            {"txHash": p["txHash"], "detail": inclusion.detail},
            ctx.now(),
        )
    logger.warning("Pending anchor tx %s for %s never landed: %s", p["txHash"], artifact_id, inclusion.detail)
    return None


def anchor_proof(ctx: "CurationContext", artifact_id: str, expert_id: str) -> Optional[AnchorResult]:
    """
    Anchor a VERIFIED artifact. Returns None without side effects when no
    ledger is connected. Raises ExternalUnavailable when the transaction is
    dropped or not included in time.

    A submission that timed out is recorded as ANCHOR_SUBMITTED with its tx
    hash. The next call looks that transaction up first and only sends a new
    remark once the old one can no longer land.
    """
    ledger = ctx.ledger
    if ledger is None or not ledger.is_available():
        logger.warning("Ledger not connected; skipping anchor for %s", artifact_id)
        return None

    with ctx.engine.connect() as conn:
        artifact = repo.get_artifact(conn, artifact_id)
        if not artifact:
            raise NotFound("Artifact not found")
        expert = repo.get_user(conn, expert_id)
        if not expert:
            raise NotFound("Expert not found")
        if artifact.status != ArtifactStatus.VERIFIED:
            raise PreconditionFailed("Only VERIFIED artifacts can be anchored")
        if artifact.chain_tx_hash:
            raise PreconditionFailed("Artifact is already anchored on-chain")
        submitter = repo.get_user(conn, artifact.submitted_by_id)
        pending = _pending_submission(repo.list_events(conn, artifact_id))

    if pending is not None:
        settled = _settle_pending(ctx, ledger, artifact_id, expert_id, pending)
        if settled is not None:
            return settled

    now = ctx.now()
    anchored_at = now.replace(microsecond=(now.microsecond // 1000) * 1000)
    fields = ProofFields(
        artifact_id=artifact.id,
        title=artifact.title,
        content_id=artifact.content_id,
        submitter_identity=submitter.wallet if submitter else artifact.submitted_by_id,
        verified_at=format_verified_at(anchored_at),
        expert_identity=expert.wallet,
    )
    digest = verify_proof(fields)
    remark = remark_for(ctx.settings.anchor_remark_prefix, digest.hash)

    logger.info("Anchoring artifact %s, proof hash %s", artifact_id, digest.hash)
    inclusion = ledger.submit_remark(remark, ctx.settings.anchor_inclusion_timeout_seconds)

    if inclusion.outcome == InclusionOutcome.TIMED_OUT and inclusion.tx_hash:
        with ctx.engine.begin() as conn:
            audit.emit(
                conn,
                artifact_id,
                expert_id,
                EventType.ANCHOR_SUBMITTED,
                {
                    "txHash": inclusion.tx_hash,
                    "submittedBlock": inclusion.submitted_block,
                    "validUntilBlock": inclusion.valid_until_block,
                    "proofHash": digest.hash,
                    "proof": fields.payload(),
                    "remark": remark,
                    "anchoredAt": anchored_at.isoformat(),
                    "network": ledger.network,
                },
                ctx.now(),
            )
    if inclusion.outcome != InclusionOutcome.INCLUDED:
        raise ExternalUnavailable(
            f"Anchor transaction {inclusion.outcome.value.lower()} for {artifact_id}: {inclusion.detail}"
        )

    return _record_anchor(ctx, artifact_id, expert_id, inclusion, fields, remark, anchored_at, ledger.network)


@dataclass(frozen=True)
class ProofRecord:
    anchored: bool
    artifact_id: str
    status: ArtifactStatus
    network: Optional[str] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    anchored_at: Optional[datetime] = None
    explorer_url: Optional[str] = None
    proof_hash: Optional[str] = None
    proof_fields: Optional[ProofFields] = None

    def as_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["status"] = self.status.value
        return out


def read_proof(ctx: "CurationContext", artifact_id: str) -> ProofRecord:
    """Public proof view: what was anchored, and the fields needed to re-verify it."""
    with ctx.engine.connect() as conn:
        artifact = repo.get_artifact(conn, artifact_id)
        if not artifact:
            raise NotFound("Artifact not found")
        events = repo.list_events(conn, artifact_id)

    if not artifact.chain_tx_hash:
        return ProofRecord(anchored=False, artifact_id=artifact_id, status=artifact.status)

    anchored = [e for e in events if e.type == EventType.ANCHORED]
    payload = anchored[-1].payload if anchored else {}
    proof = payload.get("proof") or {}
    fields = _fields_from_payload(proof) if proof else None

    return ProofRecord(
        anchored=True,
        artifact_id=artifact_id,
        status=artifact.status,
        network=payload.get("network"),
        tx_hash=artifact.chain_tx_hash,
        block_number=artifact.chain_block,
        anchored_at=artifact.anchored_at,
        explorer_url=explorer_url(ctx.settings, artifact.chain_tx_hash),
        proof_hash=payload.get("proofHash"),
        proof_fields=fields,
    )
