from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy.exc import IntegrityError

from app import audit, repo
from app.errors import Conflict, PreconditionFailed
from app.lifecycle import require_artifact
from app.models import ArtifactStatus, EventType, Vote, VoteValue

if TYPE_CHECKING:
    from app.context import CurationContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VoteSummary:
    artifact_id: str
    approve: int
    reject: int
    total: int
    ratio: float
    status: ArtifactStatus
    review_ends_at: Optional[datetime]


def approval_ratio(approve: int, total: int) -> float:
    return approve / total if total > 0 else 0.0


def cast_vote(ctx: "CurationContext", artifact_id: str, voter_id: str, value: VoteValue) -> Vote:
    """
    One vote per (artifact, voter), only while the review window is open.

    The artifact row is locked for the duration, so a vote either lands
    before the sweeper reads the tally or is refused because the status
    already moved on.
    """
    now = ctx.now()
    try:
        with ctx.engine.begin() as conn:
            artifact = require_artifact(conn, artifact_id, for_update=True)

            if artifact.status != ArtifactStatus.COMMUNITY_REVIEW:
                raise PreconditionFailed("Voting is only allowed during community review")
            if artifact.review_ends_at is None or now >= artifact.review_ends_at:
                raise PreconditionFailed("Review window has closed")
            if artifact.submitted_by_id == voter_id:
                raise PreconditionFailed("Cannot vote on your own submission")
            if repo.find_vote(conn, artifact_id, voter_id):
                raise Conflict("You have already voted on this artifact")

            vote = repo.insert_vote(conn, artifact_id, voter_id, VoteValue(value), now)
            audit.emit(conn, artifact_id, voter_id, EventType.VOTED, {"value": vote.value.value}, now)
    except IntegrityError as e:
        if not repo.is_unique_violation(e, "uq_votes_artifact_voter"):
            raise
        raise Conflict("You have already voted on this artifact") from e

    logger.debug("Vote %s recorded on %s by %s", vote.value.value, artifact_id, voter_id)
    return vote


def get_summary(ctx: "CurationContext", artifact_id: str) -> VoteSummary:
    with ctx.engine.connect() as conn:
        artifact = require_artifact(conn, artifact_id)
        approve, reject = repo.vote_counts(conn, artifact_id)

    total = approve + reject
    return VoteSummary(
        artifact_id=artifact_id,
        approve=approve,
        reject=reject,
        total=total,
        ratio=round(approval_ratio(approve, total), 2),
        status=artifact.status,
        review_ends_at=artifact.review_ends_at,
    )


def get_user_vote(ctx: "CurationContext", artifact_id: str, voter_id: str) -> Optional[VoteValue]:
    with ctx.engine.connect() as conn:
        require_artifact(conn, artifact_id)
        vote = repo.find_vote(conn, artifact_id, voter_id)
    return vote.value if vote else None
