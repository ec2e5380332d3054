"""Expert review: the terminal decision on an artifact.

The review record, the status change and both audit events commit in one
transaction. Publication (pin, then anchor) runs afterwards as best-effort
follow-ups; their failures are logged and leave the artifact VERIFIED with
publication pending, to be retried through the manual pin/anchor calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from app import audit, repo
from app.anchoring import AnchorResult, anchor_proof
from app.errors import Conflict, CurationError, PreconditionFailed
from app.lifecycle import apply_transition, require_artifact
from app.models import Artifact, ArtifactStatus, Decision, EventType, ExpertReview
from app.pinning import PinResult, pin_artifact
from app.workflow import Trigger

if TYPE_CHECKING:
    from app.context import CurationContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecisionResult:
    review: ExpertReview
    new_status: ArtifactStatus
    pin: Optional[PinResult] = None
    anchor: Optional[AnchorResult] = None


@dataclass(frozen=True)
class QueueItem:
    artifact: Artifact
    approve: int
    reject: int
    flag_count: int


def _status_for(decision: Decision) -> ArtifactStatus:
    if decision == Decision.APPROVE:
        return ArtifactStatus.VERIFIED
    if decision == Decision.REJECT:
        return ArtifactStatus.REJECTED
    raise PreconditionFailed(f"Unknown decision: {decision}")


def _record_decision(
    ctx: "CurationContext",
    artifact_id: str,
    expert_id: str,
    decision: Decision,
    notes: Optional[str],
    checklist: Optional[Dict[str, bool]],
) -> Tuple[ExpertReview, ArtifactStatus]:
    now = ctx.now()
    try:
        with ctx.engine.begin() as conn:
            artifact = require_artifact(conn, artifact_id, for_update=True)

            if repo.find_review(conn, artifact_id, expert_id):
                raise Conflict("You have already reviewed this artifact")
            if artifact.status != ArtifactStatus.EXPERT_REVIEW:
                raise PreconditionFailed(f"Artifact is in {artifact.status.value}, not EXPERT_REVIEW")

            review = repo.insert_review(conn, artifact_id, expert_id, decision, notes, checklist, now)
            new_status = _status_for(decision)

            audit.emit(
                conn,
                artifact_id,
                expert_id,
                EventType.EXPERT_REVIEWED,
                {"decision": decision.value, "notes": notes, "checklist": checklist},
                now,
            )
            apply_transition(conn, artifact, Trigger.EXPERT_DECISION, new_status, expert_id, now)
    except IntegrityError as e:
        if not repo.is_unique_violation(e, "uq_expert_reviews_artifact_expert"):
            raise
        raise Conflict("You have already reviewed this artifact") from e

    return review, new_status


def publish(ctx: "CurationContext", artifact_id: str, actor_id: str) -> Tuple[Optional[PinResult], Optional[AnchorResult]]:
    """
    Pin then anchor, each best-effort. The anchor picks up the content id
    when the pin succeeded.
    """
    pin: Optional[PinResult] = None
    anchor: Optional[AnchorResult] = None

    try:
        pin = pin_artifact(ctx, artifact_id, actor_id)
        logger.info("Auto-pinned %s: %s", artifact_id, pin.content_id)
    except CurationError as e:
        logger.error("Auto-pin failed for %s: %s", artifact_id, e)
    except Exception:
        logger.exception("Auto-pin failed for %s", artifact_id)

    try:
        anchor = anchor_proof(ctx, artifact_id, actor_id)
        if anchor:
            logger.info("Auto-anchored %s: tx=%s", artifact_id, anchor.tx_hash)
    except CurationError as e:
        logger.error("Auto-anchor failed for %s: %s", artifact_id, e)
    except Exception:
        logger.exception("Auto-anchor failed for %s", artifact_id)

    return pin, anchor


def submit_decision(
    ctx: "CurationContext",
    artifact_id: str,
    expert_id: str,
    decision: Decision,
    notes: Optional[str] = None,
    checklist: Optional[Dict[str, bool]] = None,
) -> DecisionResult:
    review, new_status = _record_decision(ctx, artifact_id, expert_id, Decision(decision), notes, checklist)

    if new_status != ArtifactStatus.VERIFIED:
        return DecisionResult(review=review, new_status=new_status)

    pin, anchor = publish(ctx, artifact_id, expert_id)
    return DecisionResult(review=review, new_status=new_status, pin=pin, anchor=anchor)


def get_queue(ctx: "CurationContext", page: int = 1, limit: int = 20) -> Tuple[List[QueueItem], int]:
    """EXPERT_REVIEW artifacts, oldest first, with their tallies."""
    with ctx.engine.connect() as conn:
        items, total = repo.list_artifacts(
            conn,
            status=ArtifactStatus.EXPERT_REVIEW,
            limit=limit,
            offset=(page - 1) * limit,
            sort="created_at_asc",
        )
        enriched = []
        for artifact in items:
            approve, reject = repo.vote_counts(conn, artifact.id)
            enriched.append(
                QueueItem(
                    artifact=artifact,
                    approve=approve,
                    reject=reject,
                    flag_count=repo.count_flags(conn, artifact.id),
                )
            )
    return enriched, total


def list_reviews(ctx: "CurationContext", artifact_id: str) -> List[ExpertReview]:
    with ctx.engine.connect() as conn:
        require_artifact(conn, artifact_id)
        return repo.list_reviews(conn, artifact_id)

