from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


class ArtifactStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMMUNITY_REVIEW = "COMMUNITY_REVIEW"
    EXPERT_REVIEW = "EXPERT_REVIEW"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    FLAGGED = "FLAGGED"
    WITHDRAWN = "WITHDRAWN"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ArtifactStatus.VERIFIED, ArtifactStatus.REJECTED, ArtifactStatus.WITHDRAWN}
)


class ArtifactType(str, enum.Enum):
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"
    TEXT = "text"


class Role(str, enum.Enum):
    MEMBER = "MEMBER"
    EXPERT = "EXPERT"
    ADMIN = "ADMIN"


class VoteValue(str, enum.Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class FlagReason(str, enum.Enum):
    MISINFO = "MISINFO"
    COPYRIGHT = "COPYRIGHT"
    DUPLICATE = "DUPLICATE"
    OTHER = "OTHER"


class Decision(str, enum.Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class EventType(str, enum.Enum):
    SUBMITTED = "SUBMITTED"
    UPDATED = "UPDATED"
    WITHDRAWN = "WITHDRAWN"
    FILE_UPLOADED = "FILE_UPLOADED"
    VOTED = "VOTED"
    FLAGGED = "FLAGGED"
    COMMENTED = "COMMENTED"
    STATUS_CHANGE = "STATUS_CHANGE"
    EXPERT_REVIEWED = "EXPERT_REVIEWED"
    PINNED = "PINNED"
    ANCHOR_SUBMITTED = "ANCHOR_SUBMITTED"
    ANCHORED = "ANCHORED"
    ANCHOR_EXPIRED = "ANCHOR_EXPIRED"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: Role

    @property
    def is_privileged(self) -> bool:
        return self.role in (Role.EXPERT, Role.ADMIN)


@dataclass(frozen=True)
class User:
    id: str
    wallet: str
    role: Role
    created_at: datetime


@dataclass(frozen=True)
class Artifact:
    id: str
    title: str
    description: str
    type: ArtifactType
    status: ArtifactStatus
    submitted_by_id: str
    created_at: datetime
    updated_at: datetime
    review_ends_at: Optional[datetime] = None
    source_url: Optional[str] = None
    language: str = "en"
    license: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    file_reference: Optional[str] = None
    file_content_type: Optional[str] = None
    content_id: Optional[str] = None
    chain_tx_hash: Optional[str] = None
    chain_block: Optional[int] = None
    anchored_at: Optional[datetime] = None


@dataclass(frozen=True)
class Vote:
    id: str
    artifact_id: str
    voter_id: str
    value: VoteValue
    created_at: datetime


@dataclass(frozen=True)
class Flag:
    id: str
    artifact_id: str
    reporter_id: str
    reason: FlagReason
    details: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class ExpertReview:
    id: str
    artifact_id: str
    expert_id: str
    decision: Decision
    notes: Optional[str]
    checklist: Optional[dict[str, bool]]
    created_at: datetime


@dataclass(frozen=True)
class Comment:
    id: str
    artifact_id: str
    author_id: str
    body: str
    created_at: datetime


@dataclass(frozen=True)
class AuditEvent:
    seq: int
    artifact_id: str
    actor_id: str
    type: EventType
    payload: dict[str, Any]
    created_at: datetime
