from __future__ import annotations

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

# Enum-valued columns are stored as plain strings; the allowed values live in
# app.models and are enforced in Python, which keeps the schema portable
# between Postgres and the SQLite engine used in tests.

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("wallet", String(128), nullable=False, unique=True),
    Column("role", String(16), nullable=False, server_default="MEMBER"),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

artifacts = Table(
    "artifacts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("title", String(256), nullable=False),
    Column("description", Text, nullable=False),
    Column("type", String(16), nullable=False),
    Column("status", String(32), nullable=False),
    Column("review_ends_at", DateTime(timezone=True), nullable=True),
    Column("submitted_by_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("source_url", Text, nullable=True),
    Column("language", String(10), nullable=False, server_default="en"),
    Column("license", String(128), nullable=True),
    Column("tags", JSON, nullable=False),
    Column("file_reference", Text, nullable=True),
    Column("file_content_type", String(128), nullable=True),
    Column("content_id", String(128), nullable=True),
    Column("chain_tx_hash", String(128), nullable=True),
    Column("chain_block", Integer, nullable=True),
    Column("anchored_at", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Index("ix_artifacts_status_review_ends_at", "status", "review_ends_at"),
    Index("ix_artifacts_submitted_by_id", "submitted_by_id"),
)

votes = Table(
    "votes",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("artifact_id", String(36), ForeignKey("artifacts.id"), nullable=False),
    Column("voter_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("value", String(16), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("artifact_id", "voter_id", name="uq_votes_artifact_voter"),
)

flags = Table(
    "flags",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("artifact_id", String(36), ForeignKey("artifacts.id"), nullable=False),
    Column("reporter_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("reason", String(16), nullable=False),
    Column("details", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("artifact_id", "reporter_id", name="uq_flags_artifact_reporter"),
)

expert_reviews = Table(
    "expert_reviews",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("artifact_id", String(36), ForeignKey("artifacts.id"), nullable=False),
    Column("expert_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("decision", String(16), nullable=False),
    Column("notes", Text, nullable=True),
    Column("checklist", JSON, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("artifact_id", "expert_id", name="uq_expert_reviews_artifact_expert"),
)

comments = Table(
    "comments",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("artifact_id", String(36), ForeignKey("artifacts.id"), nullable=False),
    Column("author_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("body", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("ix_comments_artifact_id", "artifact_id"),
)

artifact_events = Table(
    "artifact_events",
    metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("artifact_id", String(36), ForeignKey("artifacts.id"), nullable=False),
    Column("actor_id", String(36), nullable=False),
    Column("type", String(32), nullable=False),
    Column("payload", JSON, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("ix_artifact_events_artifact_id_created_at", "artifact_id", "created_at", "seq"),
)
