"""Artifact lifecycle orchestrator.

This module owns the status column. Every status change in the system goes
through apply_transition(), which validates the edge against app.workflow,
writes the new status conditionally, and emits the audit event on the same
connection. Callers hold the transaction; nothing here commits on its own.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from sqlalchemy.engine import Connection

from app import audit, repo
from app.errors import Conflict, Forbidden, NotFound, PreconditionFailed
from app.models import (
    Artifact,
    ArtifactStatus,
    ArtifactType,
    AuditEvent,
    EventType,
    Principal,
    Role,
)
from app.pinning import is_storage_reference
from app.workflow import INITIAL_STATUS, Trigger, validate_transition

if TYPE_CHECKING:
    from app.context import CurationContext

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "description", "source_url", "language", "license", "tags")


# ----------------------------
# Transition core
# ----------------------------

def require_artifact(conn: Connection, artifact_id: str, for_update: bool = False) -> Artifact:
    artifact = repo.get_artifact(conn, artifact_id, for_update=for_update)
    if not artifact:
        raise NotFound("Artifact not found")
    return artifact


def apply_transition(
    conn: Connection,
    artifact: Artifact,
    trigger: Trigger,
    to_status: ArtifactStatus,
    actor_id: str,
    now: datetime,
    payload: Optional[Dict[str, Any]] = None,
    event_type: EventType = EventType.STATUS_CHANGE,
) -> Tuple[Artifact, AuditEvent]:
    """
    Move `artifact` from its current status to `to_status` and emit one event.

    `artifact` must have been read on `conn` (ideally FOR UPDATE). If the row
    changed status since then, the conditional write matches nothing and
    Conflict is raised; the caller's transaction then rolls back whole.
    """
    from_status = artifact.status
    validate_transition(trigger, from_status, to_status)

    if not repo.write_status(conn, artifact.id, from_status, to_status, now):
        raise Conflict(f"Artifact {artifact.id} changed status concurrently")

    body = {"from": from_status.value, "to": to_status.value}
    body.update(payload or {})
    event = audit.emit(conn, artifact.id, actor_id, event_type, body, now)

    updated = repo.get_artifact(conn, artifact.id)
    logger.info("Artifact %s %s -> %s (%s)", artifact.id, from_status.value, to_status.value, trigger.value)
    return updated, event


# ----------------------------
# Submit / edit / withdraw
# ----------------------------

def submit(
    ctx: "CurationContext",
    principal: Principal,
    title: str,
    description: str,
    type: ArtifactType,
    source_url: Optional[str] = None,
    language: str = "en",
    license: Optional[str] = None,
    tags: Optional[List[str]] = None,
) -> Artifact:
    now = ctx.now()
    review_ends_at = now + timedelta(days=ctx.settings.review_window_days)

    with ctx.engine.begin() as conn:
        artifact = repo.insert_artifact(
            conn,
            {
                "id": repo.new_id(),
                "title": title,
                "description": description,
                "type": ArtifactType(type).value,
                "status": INITIAL_STATUS.value,
                "review_ends_at": review_ends_at,
                "submitted_by_id": principal.user_id,
                "source_url": source_url,
                "language": language,
                "license": license,
                "tags": list(tags or []),
                "created_at": now,
                "updated_at": now,
            },
        )
        audit.emit(
            conn,
            artifact.id,
            principal.user_id,
            EventType.SUBMITTED,
            {"title": artifact.title, "type": artifact.type.value},
            now,
        )

    logger.info("Artifact %s submitted by %s", artifact.id, principal.user_id)
    return artifact


def _require_open_review(artifact: Artifact, now: datetime) -> None:
    if artifact.status != ArtifactStatus.COMMUNITY_REVIEW:
        raise PreconditionFailed("Artifact can only be changed during community review")
    if artifact.review_ends_at is None or now >= artifact.review_ends_at:
        raise PreconditionFailed("Review window has closed")


def edit(ctx: "CurationContext", artifact_id: str, principal: Principal, changes: Dict[str, Any]) -> Artifact:
    """Submitter-only edit of descriptive fields while the review window is open."""
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise PreconditionFailed(f"Fields not editable: {sorted(unknown)}")

    now = ctx.now()
    with ctx.engine.begin() as conn:
        artifact = require_artifact(conn, artifact_id, for_update=True)
        if artifact.submitted_by_id != principal.user_id:
            raise Forbidden("Only the submitter can edit")
        _require_open_review(artifact, now)

        updated = repo.update_artifact_fields(conn, artifact_id, dict(changes), now)
        audit.emit(conn, artifact_id, principal.user_id, EventType.UPDATED, {"fields": sorted(changes)}, now)

    return updated


def withdraw(ctx: "CurationContext", artifact_id: str, principal: Principal) -> Artifact:
    now = ctx.now()
    with ctx.engine.begin() as conn:
        artifact = require_artifact(conn, artifact_id, for_update=True)

        if artifact.submitted_by_id != principal.user_id and principal.role != Role.ADMIN:
            raise Forbidden("Only the submitter or an admin can withdraw")
        if artifact.status.is_terminal:
            raise PreconditionFailed(f"Cannot withdraw artifact with status {artifact.status.value}")

        updated, _ = apply_transition(
            conn,
            artifact,
            Trigger.WITHDRAW,
            ArtifactStatus.WITHDRAWN,
            principal.user_id,
            now,
            payload={"previousStatus": artifact.status.value},
            event_type=EventType.WITHDRAWN,
        )

    return updated


def record_file(
    ctx: "CurationContext",
    artifact_id: str,
    principal: Principal,
    file_reference: str,
    content_type: Optional[str] = None,
) -> Artifact:
    """
    Attach the storage URL of a file uploaded by the intake service.
    The upload itself happens elsewhere; only URLs under
    FILE_STORAGE_BASE_URL are accepted, since they are fetched on publish.
    """
    now = ctx.now()
    with ctx.engine.begin() as conn:
        artifact = require_artifact(conn, artifact_id, for_update=True)
        if artifact.submitted_by_id != principal.user_id:
            raise Forbidden("Only the submitter can attach a file")
        _require_open_review(artifact, now)
        if not is_storage_reference(file_reference, ctx.settings.file_storage_base_url):
            raise PreconditionFailed("File reference must point into the configured file storage")

        updated = repo.update_artifact_fields(
            conn,
            artifact_id,
            {"file_reference": file_reference, "file_content_type": content_type},
            now,
        )
        audit.emit(
            conn,
            artifact_id,
            principal.user_id,
            EventType.FILE_UPLOADED,
            {"fileReference": file_reference, "contentType": content_type},
            now,
        )

    return updated


# ----------------------------
# Reads
# ----------------------------

def _visible(artifact: Artifact, principal: Optional[Principal]) -> bool:
    if artifact.status == ArtifactStatus.VERIFIED:
        return True
    if principal is None:
        return False
    return artifact.submitted_by_id == principal.user_id or principal.is_privileged


def get_visible(ctx: "CurationContext", artifact_id: str, principal: Optional[Principal]) -> Artifact:
    """VERIFIED artifacts are public; anything else only to its submitter and experts/admins."""
    with ctx.engine.connect() as conn:
        artifact = repo.get_artifact(conn, artifact_id)
    if not artifact or not _visible(artifact, principal):
        raise NotFound("Artifact not found")
    return artifact


def list_artifacts(
    ctx: "CurationContext",
    principal: Optional[Principal],
    page: int = 1,
    limit: int = 20,
    mine: bool = False,
    status: Optional[str] = None,
) -> Tuple[List[Artifact], int]:
    offset = (page - 1) * limit

    if status:
        if principal is None or not principal.is_privileged:
            raise Forbidden("Status filter requires EXPERT or ADMIN role")
        try:
            wanted = None if status.upper() == "ALL" else ArtifactStatus(status.upper())
        except ValueError:
            raise PreconditionFailed(f"Unknown status: {status}")
        with ctx.engine.connect() as conn:
            return repo.list_artifacts(conn, status=wanted, limit=limit, offset=offset)

    if mine:
        if principal is None:
            return [], 0
        with ctx.engine.connect() as conn:
            return repo.list_artifacts(conn, submitted_by_id=principal.user_id, limit=limit, offset=offset)

    with ctx.engine.connect() as conn:
        return repo.list_artifacts(conn, status=ArtifactStatus.VERIFIED, limit=limit, offset=offset)


def activity(ctx: "CurationContext", artifact_id: str, principal: Optional[Principal]) -> List[AuditEvent]:
    get_visible(ctx, artifact_id, principal)
    return audit.list_by_artifact(ctx.engine, artifact_id)
