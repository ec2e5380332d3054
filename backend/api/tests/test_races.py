"""Lost races: a second writer must end in Conflict with nothing recorded."""

from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError

from app import audit, lifecycle, repo
from app.anchoring import anchor_proof
from app.errors import Conflict
from app.expert import submit_decision
from app.flagging import create_flag, list_flags
from app.models import ArtifactStatus, Decision, EventType, FlagReason, VoteValue
from app.pinning import pin_artifact
from app.voting import cast_vote, get_summary
from app.workflow import Trigger


def _event_types(ctx, artifact_id):
    return [e.type for e in audit.list_by_artifact(ctx.engine, artifact_id)]


@pytest.fixture
def verified_unpublished(ctx, people, expert_review_artifact, content_store, ledger):
    def _make():
        artifact_id = expert_review_artifact()
        content_store.fail_json = True
        ledger.available = False
        submit_decision(ctx, artifact_id, people.expert.user_id, Decision.APPROVE)
        content_store.fail_json = False
        ledger.available = True
        return artifact_id

    return _make


def test_transition_from_stale_status_is_a_conflict(ctx, people, clock, make_artifact):
    stale = make_artifact()
    lifecycle.withdraw(ctx, stale.id, people.submitter)
    before = _event_types(ctx, stale.id)

    with pytest.raises(Conflict):
        with ctx.engine.begin() as conn:
            lifecycle.apply_transition(
                conn, stale, Trigger.REVIEW_WINDOW_CLOSE, ArtifactStatus.EXPERT_REVIEW, people.admin.user_id, clock()
            )

    assert lifecycle.get_visible(ctx, stale.id, people.admin).status == ArtifactStatus.WITHDRAWN
    assert _event_types(ctx, stale.id) == before


def test_duplicate_vote_past_the_lookup_is_a_conflict(ctx, people, make_artifact, monkeypatch):
    artifact = make_artifact()
    voter = people.voters[0].user_id
    cast_vote(ctx, artifact.id, voter, VoteValue.APPROVE)
    before = _event_types(ctx, artifact.id)

    monkeypatch.setattr(repo, "find_vote", lambda conn, artifact_id, voter_id: None)
    with pytest.raises(Conflict):
        cast_vote(ctx, artifact.id, voter, VoteValue.REJECT)
    monkeypatch.undo()

    assert _event_types(ctx, artifact.id) == before
    assert (get_summary(ctx, artifact.id).approve, get_summary(ctx, artifact.id).total) == (1, 1)


def test_duplicate_flag_past_the_lookup_is_a_conflict(ctx, people, make_artifact, monkeypatch):
    artifact = make_artifact()
    reporter = people.voters[0].user_id
    create_flag(ctx, artifact.id, reporter, FlagReason.DUPLICATE)
    before = _event_types(ctx, artifact.id)

    monkeypatch.setattr(repo, "find_flag", lambda conn, artifact_id, reporter_id: None)
    with pytest.raises(Conflict):
        create_flag(ctx, artifact.id, reporter, FlagReason.MISINFO)
    monkeypatch.undo()

    assert _event_types(ctx, artifact.id) == before
    assert len(list_flags(ctx, artifact.id)) == 1


def test_duplicate_review_past_the_lookup_is_a_conflict(
    ctx, people, clock, expert_review_artifact, content_store, monkeypatch
):
    artifact_id = expert_review_artifact()
    with ctx.engine.begin() as conn:
        repo.insert_review(conn, artifact_id, people.expert.user_id, Decision.REJECT, None, None, clock())
    before = _event_types(ctx, artifact_id)

    monkeypatch.setattr(repo, "find_review", lambda conn, artifact_id, expert_id: None)
    with pytest.raises(Conflict):
        submit_decision(ctx, artifact_id, people.expert.user_id, Decision.APPROVE)
    monkeypatch.undo()

    assert lifecycle.get_visible(ctx, artifact_id, people.admin).status == ArtifactStatus.EXPERT_REVIEW
    assert _event_types(ctx, artifact_id) == before
    assert content_store.documents == []


def test_other_integrity_errors_are_not_reported_as_duplicates(ctx, people, make_artifact, monkeypatch):
    artifact = make_artifact()

    def insert_with_unknown_voter(*args, **kwargs):
        raise IntegrityError("INSERT INTO votes", {}, Exception("FOREIGN KEY constraint failed"))

    monkeypatch.setattr(repo, "insert_vote", insert_with_unknown_voter)
    with pytest.raises(IntegrityError):
        cast_vote(ctx, artifact.id, people.voters[0].user_id, VoteValue.APPROVE)


class _PsycopgError(Exception):
    def __init__(self, constraint_name):
        super().__init__("integrity violation")
        self.diag = SimpleNamespace(constraint_name=constraint_name)


@pytest.mark.parametrize(
    "orig, expected",
    [
        (_PsycopgError("uq_votes_artifact_voter"), True),
        (_PsycopgError("votes_voter_id_fkey"), False),
        (Exception("UNIQUE constraint failed: votes.artifact_id, votes.voter_id"), True),
        (Exception("UNIQUE constraint failed: flags.artifact_id, flags.reporter_id"), False),
        (Exception("FOREIGN KEY constraint failed"), False),
    ],
)
def test_is_unique_violation(orig, expected):
    error = IntegrityError("INSERT INTO votes", {}, orig)
    assert repo.is_unique_violation(error, "uq_votes_artifact_voter") is expected


def test_pin_lost_to_a_concurrent_pin(ctx, people, clock, verified_unpublished, content_store, monkeypatch):
    artifact_id = verified_unpublished()
    publish_json = content_store.publish_json

    def publish_after_someone_else(document, name):
        with ctx.engine.begin() as conn:
            repo.set_content_id(conn, artifact_id, "bafyother", clock())
        return publish_json(document, name)

    monkeypatch.setattr(content_store, "publish_json", publish_after_someone_else)
    with pytest.raises(Conflict):
        pin_artifact(ctx, artifact_id, people.admin.user_id)

    assert lifecycle.get_visible(ctx, artifact_id, None).content_id == "bafyother"
    assert EventType.PINNED not in _event_types(ctx, artifact_id)


def test_anchor_lost_to_a_concurrent_anchor(ctx, people, clock, verified_unpublished, ledger, monkeypatch):
    artifact_id = verified_unpublished()
    submit_remark = ledger.submit_remark

    def submit_after_someone_else(remark, timeout):
        with ctx.engine.begin() as conn:
            repo.set_anchor(conn, artifact_id, "0xother", 7, clock(), clock())
        return submit_remark(remark, timeout)

    monkeypatch.setattr(ledger, "submit_remark", submit_after_someone_else)
    with pytest.raises(Conflict):
        anchor_proof(ctx, artifact_id, people.expert.user_id)

    assert lifecycle.get_visible(ctx, artifact_id, None).chain_tx_hash == "0xother"
    assert EventType.ANCHORED not in _event_types(ctx, artifact_id)
