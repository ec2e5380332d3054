"""Append-only audit trail.

Events are written on the caller's connection, inside the same transaction
as the change they describe. If the insert fails the whole operation rolls
back, so an event exists exactly when its mutation committed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.engine import Connection, Engine

from app import repo
from app.models import AuditEvent, EventType


def emit(
    conn: Connection,
    artifact_id: str,
    actor_id: str,
    event_type: EventType,
    payload: Optional[Dict[str, Any]],
    now: datetime,
) -> AuditEvent:
    return repo.insert_event(conn, artifact_id, actor_id, event_type, payload or {}, now)


def list_by_artifact(engine: Engine, artifact_id: str) -> List[AuditEvent]:
    """Events for one artifact, oldest first."""
    with engine.connect() as conn:
        return repo.list_events(conn, artifact_id)


def recent(engine: Engine, limit: int = 50) -> List[AuditEvent]:
    with engine.connect() as conn:
        return repo.recent_events(conn, limit)
