"""Review-window sweeper.

Closes community review for every artifact whose deadline has passed.
Each artifact is evaluated in its own transaction; a failure on one is
logged and the sweep moves on. Running it twice is harmless: anything
already moved out of COMMUNITY_REVIEW is skipped by the same precondition
that selected it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional

from app import repo
from app.lifecycle import apply_transition, require_artifact
from app.models import ArtifactStatus
from app.voting import approval_ratio
from app.workflow import Trigger

if TYPE_CHECKING:
    from app.context import CurationContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewOutcome:
    status: ArtifactStatus
    reason: str
    approve: int
    reject: int
    total: int
    ratio: float

    def as_payload(self) -> Dict[str, object]:
        return {
            "reason": self.reason,
            "votes": {"approve": self.approve, "reject": self.reject, "total": self.total},
            "ratio": round(self.ratio, 4),
        }


@dataclass
class SweepReport:
    transitioned: Dict[str, ArtifactStatus] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def decide(approve: int, reject: int, min_votes: int, approve_ratio: float) -> ReviewOutcome:
    """Quorum first, then ratio. Ties below the ratio reject."""
    total = approve + reject
    ratio = approval_ratio(approve, total)
    pct = round(ratio * 100)

    if total < min_votes:
        status = ArtifactStatus.REJECTED
        reason = f"insufficient votes: {total}/{min_votes} minimum"
    elif ratio >= approve_ratio:
        status = ArtifactStatus.EXPERT_REVIEW
        reason = f"approved by community: {approve}/{total} ({pct}%) meets {approve_ratio:.0%} threshold"
    else:
        status = ArtifactStatus.REJECTED
        reason = f"rejected by community: {approve}/{total} ({pct}%) below {approve_ratio:.0%} threshold"

    return ReviewOutcome(status=status, reason=reason, approve=approve, reject=reject, total=total, ratio=ratio)


def evaluate_artifact(ctx: "CurationContext", artifact_id: str, system_actor_id: str) -> Optional[ReviewOutcome]:
    """
    Close the review window for one artifact. Returns None when the
    artifact is no longer eligible (already moved, or deadline not reached).
    """
    now = ctx.now()
    with ctx.engine.begin() as conn:
        artifact = require_artifact(conn, artifact_id, for_update=True)
        if artifact.status != ArtifactStatus.COMMUNITY_REVIEW:
            return None
        if artifact.review_ends_at is None or artifact.review_ends_at > now:
            return None

        approve, reject = repo.vote_counts(conn, artifact_id)
        outcome = decide(approve, reject, ctx.settings.min_votes, ctx.settings.approve_ratio)

        apply_transition(
            conn,
            artifact,
            Trigger.REVIEW_WINDOW_CLOSE,
            outcome.status,
            system_actor_id,
            now,
            payload=outcome.as_payload(),
        )

    logger.info("Artifact %s -> %s: %s", artifact_id, outcome.status.value, outcome.reason)
    return outcome


def sweep_expired_reviews(ctx: "CurationContext", system_actor_id: str) -> SweepReport:
    report = SweepReport()

    with ctx.engine.connect() as conn:
        expired = repo.list_expired_review_ids(conn, ctx.now())

    if not expired:
        logger.info("No expired reviews found.")
        return report

    logger.info("Found %d expired review(s). Processing...", len(expired))

    for artifact_id in expired:
        try:
            outcome = evaluate_artifact(ctx, artifact_id, system_actor_id)
        except Exception:
            logger.exception("Failed to evaluate artifact %s", artifact_id)
            report.failed.append(artifact_id)
            continue

        if outcome is None:
            report.skipped.append(artifact_id)
        else:
            report.transitioned[artifact_id] = outcome.status

    return report
