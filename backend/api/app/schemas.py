from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models import ArtifactStatus, ArtifactType, Decision, EventType, FlagReason, Role, VoteValue

# -----------------------------
# Artifacts
# -----------------------------
class ArtifactCreateIn(BaseModel):
    title: str = Field(..., min_length=3, max_length=256)
    description: str = Field(..., min_length=10, max_length=5000)
    type: ArtifactType
    source_url: Optional[str] = Field(None, max_length=2048)
    language: str = Field("en", min_length=2, max_length=10)
    license: Optional[str] = Field(None, max_length=128)
    tags: List[str] = Field(default_factory=list, max_length=20)


class ArtifactUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, min_length=3, max_length=256)
    description: Optional[str] = Field(None, min_length=10, max_length=5000)
    source_url: Optional[str] = Field(None, max_length=2048)
    language: Optional[str] = Field(None, min_length=2, max_length=10)
    license: Optional[str] = Field(None, max_length=128)
    tags: Optional[List[str]] = Field(None, max_length=20)


class FileReferenceIn(BaseModel):
    file_reference: str = Field(..., min_length=1, max_length=2048)
    content_type: Optional[str] = Field(None, max_length=128)


class ArtifactOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str
    type: ArtifactType
    status: ArtifactStatus
    review_ends_at: Optional[datetime] = None
    submitted_by_id: str
    source_url: Optional[str] = None
    language: str
    license: Optional[str] = None
    tags: List[str]
    file_reference: Optional[str] = None
    file_content_type: Optional[str] = None
    content_id: Optional[str] = None
    chain_tx_hash: Optional[str] = None
    chain_block: Optional[int] = None
    anchored_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ArtifactListOut(BaseModel):
    items: List[ArtifactOut]
    page: int
    limit: int
    total: int


class EventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    seq: int
    artifact_id: str
    actor_id: str
    type: EventType
    payload: Dict[str, Any]
    created_at: datetime


# -----------------------------
# Votes / flags / comments
# -----------------------------
class VoteIn(BaseModel):
    value: VoteValue


class VoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    artifact_id: str
    voter_id: str
    value: VoteValue
    created_at: datetime


class VoteSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    artifact_id: str
    approve: int
    reject: int
    total: int
    ratio: float
    status: ArtifactStatus
    review_ends_at: Optional[datetime] = None


class MyVoteOut(BaseModel):
    value: Optional[VoteValue] = None


class FlagIn(BaseModel):
    reason: FlagReason
    details: Optional[str] = Field(None, max_length=2000)


class FlagOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    artifact_id: str
    reporter_id: str
    reason: FlagReason
    details: Optional[str] = None
    created_at: datetime


class CommentIn(BaseModel):
    body: str = Field(..., min_length=1, max_length=2000)


class CommentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    artifact_id: str
    author_id: str
    body: str
    created_at: datetime


class CommentListOut(BaseModel):
    items: List[CommentOut]
    page: int
    limit: int
    total: int


# -----------------------------
# Expert review + publication
# -----------------------------
class ExpertReviewIn(BaseModel):
    decision: Decision
    notes: Optional[str] = Field(None, max_length=5000)
    checklist: Optional[Dict[str, bool]] = None


class ExpertReviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    artifact_id: str
    expert_id: str
    decision: Decision
    notes: Optional[str] = None
    checklist: Optional[Dict[str, bool]] = None
    created_at: datetime


class PinOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    content_id: str
    file_content_id: Optional[str] = None
    gateway_url: str


class AnchorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tx_hash: str
    block_number: int
    proof_hash: str
    explorer_url: str


class AnchorAttemptOut(BaseModel):
    anchored: bool
    anchor: Optional[AnchorOut] = None
    detail: Optional[str] = None


class DecisionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    review: ExpertReviewOut
    new_status: ArtifactStatus
    pin: Optional[PinOut] = None
    anchor: Optional[AnchorOut] = None


class QueueItemOut(BaseModel):
    artifact: ArtifactOut
    approve: int
    reject: int
    total: int
    flag_count: int


class QueueOut(BaseModel):
    items: List[QueueItemOut]
    page: int
    limit: int
    total: int


class ProofFieldsIn(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    artifact_id: str
    title: str
    content_id: Optional[str] = None
    submitter_identity: str
    verified_at: str
    expert_identity: str


class ProofOut(BaseModel):
    anchored: bool
    artifact_id: str
    status: ArtifactStatus
    network: Optional[str] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    anchored_at: Optional[datetime] = None
    explorer_url: Optional[str] = None
    proof_hash: Optional[str] = None
    proof_fields: Optional[ProofFieldsIn] = None


class VerifyIn(ProofFieldsIn):
    expected_hash: Optional[str] = None


class VerifyOut(BaseModel):
    canonical: str
    hash: str
    matches: Optional[bool] = None


# -----------------------------
# Admin
# -----------------------------
class RoleIn(BaseModel):
    role: Role


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    wallet: str
    role: Role
    created_at: datetime
