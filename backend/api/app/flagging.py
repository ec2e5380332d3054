from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy.exc import IntegrityError

from app import audit, repo
from app.errors import Conflict
from app.lifecycle import apply_transition, require_artifact
from app.models import ArtifactStatus, EventType, Flag, FlagReason
from app.workflow import Trigger, can_transition

if TYPE_CHECKING:
    from app.context import CurationContext

logger = logging.getLogger(__name__)


def create_flag(
    ctx: "CurationContext",
    artifact_id: str,
    reporter_id: str,
    reason: FlagReason,
    details: Optional[str] = None,
) -> Flag:
    """
    Record one report per (artifact, reporter), then auto-escalate.

    The count is taken after the insert, on the same locked transaction, so
    exactly one flag crosses the threshold. Flags on VERIFIED/REJECTED/
    WITHDRAWN artifacts are kept but never change status.
    """
    threshold = ctx.settings.flag_threshold
    now = ctx.now()
    try:
        with ctx.engine.begin() as conn:
            artifact = require_artifact(conn, artifact_id, for_update=True)
            if repo.find_flag(conn, artifact_id, reporter_id):
                raise Conflict("You have already flagged this artifact")

            flag = repo.insert_flag(conn, artifact_id, reporter_id, FlagReason(reason), details, now)
            audit.emit(
                conn,
                artifact_id,
                reporter_id,
                EventType.FLAGGED,
                {"reason": flag.reason.value, "details": details},
                now,
            )

            count = repo.count_flags(conn, artifact_id)
            if (
                count >= threshold
                and artifact.status != ArtifactStatus.FLAGGED
                and can_transition(Trigger.FLAG_THRESHOLD, artifact.status, ArtifactStatus.FLAGGED)
            ):
                apply_transition(
                    conn,
                    artifact,
                    Trigger.FLAG_THRESHOLD,
                    ArtifactStatus.FLAGGED,
                    reporter_id,
                    now,
                    payload={
                        "reason": f"auto-flagged: {count} flags reached threshold of {threshold}",
                        "flagCount": count,
                        "threshold": threshold,
                    },
                )
                logger.warning("Artifact %s auto-flagged after %d flags", artifact_id, count)
    except IntegrityError as e:
        if not repo.is_unique_violation(e, "uq_flags_artifact_reporter"):
            raise
        raise Conflict("You have already flagged this artifact") from e

    return flag


def list_flags(ctx: "CurationContext", artifact_id: str) -> List[Flag]:
    with ctx.engine.connect() as conn:
        require_artifact(conn, artifact_id)
        return repo.list_flags(conn, artifact_id)
