from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import UniqueConstraint, and_, func, insert, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from app.models import (
    Artifact,
    ArtifactStatus,
    ArtifactType,
    AuditEvent,
    Comment,
    Decision,
    EventType,
    ExpertReview,
    Flag,
    FlagReason,
    Role,
    User,
    Vote,
    VoteValue,
    as_utc,
)
from app.tables import artifact_events, artifacts, comments, expert_reviews, flags, metadata, users, votes


# ----------------------------
# Helpers (safe + deterministic)
# ----------------------------

def new_id() -> str:
    return str(uuid.uuid4())


def is_unique_violation(error: IntegrityError, constraint_name: str) -> bool:
    """
    Did `error` come from the named unique constraint? psycopg reports the
    constraint name; SQLite only lists the columns ("UNIQUE constraint
    failed: votes.artifact_id, votes.voter_id").
    """
    diag = getattr(error.orig, "diag", None)
    reported = getattr(diag, "constraint_name", None)
    if reported:
        return reported == constraint_name

    for table in metadata.tables.values():
        for constraint in table.constraints:
            if isinstance(constraint, UniqueConstraint) and constraint.name == constraint_name:
                columns = ", ".join(f"{table.name}.{c.name}" for c in constraint.columns)
                return f"UNIQUE constraint failed: {columns}" in str(error.orig)
    return False


def _sort_to_order_by(sort: str):
    """
    Allowed sort values (explicit allow-list):
      - created_at_desc (default)
      - created_at_asc
      - updated_at_desc
      - title_asc
    """
    s = (sort or "").strip().lower()
    if s == "created_at_asc":
        return artifacts.c.created_at.asc()
    if s == "updated_at_desc":
        return artifacts.c.updated_at.desc()
    if s == "title_asc":
        return artifacts.c.title.asc()
    return artifacts.c.created_at.desc()


def _to_artifact(row: Mapping[str, Any]) -> Artifact:
    return Artifact(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        type=ArtifactType(row["type"]),
        status=ArtifactStatus(row["status"]),
        submitted_by_id=row["submitted_by_id"],
        created_at=as_utc(row["created_at"]),
        updated_at=as_utc(row["updated_at"]),
        review_ends_at=as_utc(row["review_ends_at"]),
        source_url=row["source_url"],
        language=row["language"],
        license=row["license"],
        tags=list(row["tags"] or []),
        file_reference=row["file_reference"],
        file_content_type=row["file_content_type"],
        content_id=row["content_id"],
        chain_tx_hash=row["chain_tx_hash"],
        chain_block=row["chain_block"],
        anchored_at=as_utc(row["anchored_at"]),
    )


def _to_user(row: Mapping[str, Any]) -> User:
    return User(id=row["id"], wallet=row["wallet"], role=Role(row["role"]), created_at=as_utc(row["created_at"]))


def _to_vote(row: Mapping[str, Any]) -> Vote:
    return Vote(
        id=row["id"],
        artifact_id=row["artifact_id"],
        voter_id=row["voter_id"],
        value=VoteValue(row["value"]),
        created_at=as_utc(row["created_at"]),
    )


def _to_flag(row: Mapping[str, Any]) -> Flag:
    return Flag(
        id=row["id"],
        artifact_id=row["artifact_id"],
        reporter_id=row["reporter_id"],
        reason=FlagReason(row["reason"]),
        details=row["details"],
        created_at=as_utc(row["created_at"]),
    )


def _to_review(row: Mapping[str, Any]) -> ExpertReview:
    return ExpertReview(
        id=row["id"],
        artifact_id=row["artifact_id"],
        expert_id=row["expert_id"],
        decision=Decision(row["decision"]),
        notes=row["notes"],
        checklist=row["checklist"],
        created_at=as_utc(row["created_at"]),
    )


def _to_comment(row: Mapping[str, Any]) -> Comment:
    return Comment(
        id=row["id"],
        artifact_id=row["artifact_id"],
        author_id=row["author_id"],
        body=row["body"],
        created_at=as_utc(row["created_at"]),
    )


def _to_event(row: Mapping[str, Any]) -> AuditEvent:
    return AuditEvent(
        seq=int(row["seq"]),
        artifact_id=row["artifact_id"],
        actor_id=row["actor_id"],
        type=EventType(row["type"]),
        payload=dict(row["payload"] or {}),
        created_at=as_utc(row["created_at"]),
    )


# ----------------------------
# Users
# ----------------------------

def get_user(conn: Connection, user_id: str) -> Optional[User]:
    row = conn.execute(select(users).where(users.c.id == user_id)).mappings().first()
    return _to_user(row) if row else None


def get_user_by_wallet(conn: Connection, wallet: str) -> Optional[User]:
    row = conn.execute(select(users).where(users.c.wallet == wallet)).mappings().first()
    return _to_user(row) if row else None


def insert_user(conn: Connection, wallet: str, role: Role, now: datetime) -> User:
    values = {"id": new_id(), "wallet": wallet, "role": role.value, "created_at": now}
    conn.execute(insert(users).values(**values))
    return _to_user(values)


def set_user_role(conn: Connection, user_id: str, role: Role) -> None:
    conn.execute(update(users).where(users.c.id == user_id).values(role=role.value))


# ----------------------------
# Artifacts
# ----------------------------

def get_artifact(conn: Connection, artifact_id: str, for_update: bool = False) -> Optional[Artifact]:
    """
    for_update=True takes a row lock on backends that support it, so the
    caller's precondition check and its writes see the same status.
    """
    stmt = select(artifacts).where(artifacts.c.id == artifact_id)
    if for_update:
        stmt = stmt.with_for_update()
    row = conn.execute(stmt).mappings().first()
    return _to_artifact(row) if row else None


def insert_artifact(conn: Connection, values: Dict[str, Any]) -> Artifact:
    conn.execute(insert(artifacts).values(**values))
    return get_artifact(conn, values["id"])


def update_artifact_fields(conn: Connection, artifact_id: str, values: Dict[str, Any], now: datetime) -> Artifact:
    """Descriptive fields only. Status goes through write_status."""
    if "status" in values:
        raise ValueError("status is written by write_status only")
    conn.execute(
        update(artifacts).where(artifacts.c.id == artifact_id).values(updated_at=now, **values)
    )
    return get_artifact(conn, artifact_id)


def write_status(
    conn: Connection,
    artifact_id: str,
    expected: ArtifactStatus,
    new: ArtifactStatus,
    now: datetime,
    review_ends_at: Optional[datetime] = None,
) -> bool:
    """
    Conditional status write. Returns False when the row is no longer in
    `expected` (another writer got there first).
    """
    result = conn.execute(
        update(artifacts)
        .where(and_(artifacts.c.id == artifact_id, artifacts.c.status == expected.value))
        .values(status=new.value, review_ends_at=review_ends_at, updated_at=now)
    )
    return result.rowcount == 1


def set_content_id(conn: Connection, artifact_id: str, content_id: str, now: datetime) -> bool:
    result = conn.execute(
        update(artifacts)
        .where(
            and_(
                artifacts.c.id == artifact_id,
                artifacts.c.status == ArtifactStatus.VERIFIED.value,
                artifacts.c.content_id.is_(None),
            )
        )
        .values(content_id=content_id, updated_at=now)
    )
    return result.rowcount == 1


def set_anchor(
    conn: Connection,
    artifact_id: str,
    tx_hash: str,
    block_number: int,
    anchored_at: datetime,
    now: datetime,
) -> bool:
    result = conn.execute(
        update(artifacts)
        .where(
            and_(
                artifacts.c.id == artifact_id,
                artifacts.c.status == ArtifactStatus.VERIFIED.value,
                artifacts.c.chain_tx_hash.is_(None),
            )
        )
        .values(chain_tx_hash=tx_hash, chain_block=block_number, anchored_at=anchored_at, updated_at=now)
    )
    return result.rowcount == 1


def list_artifacts(
    conn: Connection,
    status: Optional[ArtifactStatus] = None,
    submitted_by_id: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
    sort: str = "created_at_desc",
) -> Tuple[List[Artifact], int]:
    where_parts = []
    if status is not None:
        where_parts.append(artifacts.c.status == status.value)
    if submitted_by_id is not None:
        where_parts.append(artifacts.c.submitted_by_id == submitted_by_id)

    items_stmt = select(artifacts).order_by(_sort_to_order_by(sort)).limit(int(limit)).offset(int(offset))
    total_stmt = select(func.count()).select_from(artifacts)
    if where_parts:
        items_stmt = items_stmt.where(and_(*where_parts))
        total_stmt = total_stmt.where(and_(*where_parts))

    rows = conn.execute(items_stmt).mappings().all()
    total = conn.execute(total_stmt).scalar_one()
    return [_to_artifact(r) for r in rows], int(total)


def list_expired_review_ids(conn: Connection, now: datetime) -> List[str]:
    stmt = (
        select(artifacts.c.id)
        .where(
            and_(
                artifacts.c.status == ArtifactStatus.COMMUNITY_REVIEW.value,
                artifacts.c.review_ends_at <= now,
            )
        )
        .order_by(artifacts.c.review_ends_at.asc())
    )
    return list(conn.execute(stmt).scalars().all())


def count_artifacts_by_status(conn: Connection) -> Dict[str, int]:
    rows = conn.execute(
        select(artifacts.c.status, func.count()).group_by(artifacts.c.status)
    ).all()
    counts = {s.value: 0 for s in ArtifactStatus}
    for status, n in rows:
        counts[status] = int(n)
    return counts


def count_published(conn: Connection) -> Tuple[int, int]:
    pinned = conn.execute(
        select(func.count()).select_from(artifacts).where(artifacts.c.content_id.is_not(None))
    ).scalar_one()
    anchored = conn.execute(
        select(func.count()).select_from(artifacts).where(artifacts.c.chain_tx_hash.is_not(None))
    ).scalar_one()
    return int(pinned), int(anchored)


def count_rows(conn: Connection, table) -> int:
    return int(conn.execute(select(func.count()).select_from(table)).scalar_one())


# ----------------------------
# Votes
# ----------------------------

def find_vote(conn: Connection, artifact_id: str, voter_id: str) -> Optional[Vote]:
    row = conn.execute(
        select(votes).where(and_(votes.c.artifact_id == artifact_id, votes.c.voter_id == voter_id))
    ).mappings().first()
    return _to_vote(row) if row else None


def insert_vote(conn: Connection, artifact_id: str, voter_id: str, value: VoteValue, now: datetime) -> Vote:
    values = {
        "id": new_id(),
        "artifact_id": artifact_id,
        "voter_id": voter_id,
        "value": value.value,
        "created_at": now,
    }
    conn.execute(insert(votes).values(**values))
    return _to_vote(values)


def vote_counts(conn: Connection, artifact_id: str) -> Tuple[int, int]:
    """(approve, reject) for one artifact."""
    rows = conn.execute(
        select(votes.c.value, func.count())
        .where(votes.c.artifact_id == artifact_id)
        .group_by(votes.c.value)
    ).all()
    counts = {value: int(n) for value, n in rows}
    return counts.get(VoteValue.APPROVE.value, 0), counts.get(VoteValue.REJECT.value, 0)


# ----------------------------
# Flags
# ----------------------------

def find_flag(conn: Connection, artifact_id: str, reporter_id: str) -> Optional[Flag]:
    row = conn.execute(
        select(flags).where(and_(flags.c.artifact_id == artifact_id, flags.c.reporter_id == reporter_id))
    ).mappings().first()
    return _to_flag(row) if row else None


def insert_flag(
    conn: Connection,
    artifact_id: str,
    reporter_id: str,
    reason: FlagReason,
    details: Optional[str],
    now: datetime,
) -> Flag:
    values = {
        "id": new_id(),
        "artifact_id": artifact_id,
        "reporter_id": reporter_id,
        "reason": reason.value,
        "details": details,
        "created_at": now,
    }
    conn.execute(insert(flags).values(**values))
    return _to_flag(values)


def count_flags(conn: Connection, artifact_id: str) -> int:
    return int(
        conn.execute(
            select(func.count()).select_from(flags).where(flags.c.artifact_id == artifact_id)
        ).scalar_one()
    )


def list_flags(conn: Connection, artifact_id: str) -> List[Flag]:
    rows = conn.execute(
        select(flags).where(flags.c.artifact_id == artifact_id).order_by(flags.c.created_at.desc())
    ).mappings().all()
    return [_to_flag(r) for r in rows]


# ----------------------------
# Expert reviews
# ----------------------------

def find_review(conn: Connection, artifact_id: str, expert_id: str) -> Optional[ExpertReview]:
    row = conn.execute(
        select(expert_reviews).where(
            and_(expert_reviews.c.artifact_id == artifact_id, expert_reviews.c.expert_id == expert_id)
        )
    ).mappings().first()
    return _to_review(row) if row else None


def insert_review(
    conn: Connection,
    artifact_id: str,
    expert_id: str,
    decision: Decision,
    notes: Optional[str],
    checklist: Optional[Dict[str, bool]],
    now: datetime,
) -> ExpertReview:
    values = {
        "id": new_id(),
        "artifact_id": artifact_id,
        "expert_id": expert_id,
        "decision": decision.value,
        "notes": notes,
        "checklist": checklist,
        "created_at": now,
    }
    conn.execute(insert(expert_reviews).values(**values))
    return _to_review(values)


def list_reviews(conn: Connection, artifact_id: str, decision: Optional[Decision] = None) -> List[ExpertReview]:
    stmt = select(expert_reviews).where(expert_reviews.c.artifact_id == artifact_id)
    if decision is not None:
        stmt = stmt.where(expert_reviews.c.decision == decision.value)
    rows = conn.execute(stmt.order_by(expert_reviews.c.created_at.desc())).mappings().all()
    return [_to_review(r) for r in rows]


# ----------------------------
# Comments
# ----------------------------

def insert_comment(conn: Connection, artifact_id: str, author_id: str, body: str, now: datetime) -> Comment:
    values = {
        "id": new_id(),
        "artifact_id": artifact_id,
        "author_id": author_id,
        "body": body,
        "created_at": now,
    }
    conn.execute(insert(comments).values(**values))
    return _to_comment(values)


def list_comments(conn: Connection, artifact_id: str, limit: int, offset: int) -> Tuple[List[Comment], int]:
    rows = conn.execute(
        select(comments)
        .where(comments.c.artifact_id == artifact_id)
        .order_by(comments.c.created_at.asc())
        .limit(int(limit))
        .offset(int(offset))
    ).mappings().all()
    total = conn.execute(
        select(func.count()).select_from(comments).where(comments.c.artifact_id == artifact_id)
    ).scalar_one()
    return [_to_comment(r) for r in rows], int(total)


# ----------------------------
# Audit events (append-only)
# ----------------------------

def insert_event(
    conn: Connection,
    artifact_id: str,
    actor_id: str,
    event_type: EventType,
    payload: Dict[str, Any],
    now: datetime,
) -> AuditEvent:
    result = conn.execute(
        insert(artifact_events).values(
            artifact_id=artifact_id,
            actor_id=actor_id,
            type=event_type.value,
            payload=payload,
            created_at=now,
        )
    )
    seq = result.inserted_primary_key[0]
    return AuditEvent(
        seq=int(seq),
        artifact_id=artifact_id,
        actor_id=actor_id,
        type=event_type,
        payload=dict(payload),
        created_at=now,
    )


def list_events(conn: Connection, artifact_id: str) -> List[AuditEvent]:
    rows = conn.execute(
        select(artifact_events)
        .where(artifact_events.c.artifact_id == artifact_id)
        .order_by(artifact_events.c.created_at.asc(), artifact_events.c.seq.asc())
    ).mappings().all()
    return [_to_event(r) for r in rows]


def recent_events(conn: Connection, limit: int) -> List[AuditEvent]:
    rows = conn.execute(
        select(artifact_events)
        .order_by(artifact_events.c.created_at.desc(), artifact_events.c.seq.desc())
        .limit(int(limit))
    ).mappings().all()
    return [_to_event(r) for r in rows]
