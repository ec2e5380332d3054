"""Curation schema: users, artifacts and their review records

- users (wallet unique, role)
- artifacts (status + review deadline, publication columns)
- votes / flags / expert_reviews (one row per artifact and participant)
- comments
- artifact_events (append-only audit log, ordered by seq)
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261019_0001_curation_schema"
down_revision = None
branch_labels = None
depends_on = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("wallet", sa.String(128), nullable=False, unique=True),
        sa.Column("role", sa.String(16), nullable=False, server_default="MEMBER"),
        _created_at(),
    )

    op.create_table(
        "artifacts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("review_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("submitted_by_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("source_url", sa.Text, nullable=True),
        sa.Column("language", sa.String(10), nullable=False, server_default="en"),
        sa.Column("license", sa.String(128), nullable=True),
        sa.Column("tags", sa.JSON, nullable=False),
        sa.Column("file_reference", sa.Text, nullable=True),
        sa.Column("file_content_type", sa.String(128), nullable=True),
        sa.Column("content_id", sa.String(128), nullable=True),
        sa.Column("chain_tx_hash", sa.String(128), nullable=True),
        sa.Column("chain_block", sa.Integer, nullable=True),
        sa.Column("anchored_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    # The sweeper's scan: status = COMMUNITY_REVIEW AND review_ends_at <= now
    op.create_index("ix_artifacts_status_review_ends_at", "artifacts", ["status", "review_ends_at"])
    op.create_index("ix_artifacts_submitted_by_id", "artifacts", ["submitted_by_id"])

    op.create_table(
        "votes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("artifact_id", sa.String(36), sa.ForeignKey("artifacts.id"), nullable=False),
        sa.Column("voter_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("value", sa.String(16), nullable=False),
        _created_at(),
        sa.UniqueConstraint("artifact_id", "voter_id", name="uq_votes_artifact_voter"),
    )

    op.create_table(
        "flags",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("artifact_id", sa.String(36), sa.ForeignKey("artifacts.id"), nullable=False),
        sa.Column("reporter_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reason", sa.String(16), nullable=False),
        sa.Column("details", sa.Text, nullable=True),
        _created_at(),
        sa.UniqueConstraint("artifact_id", "reporter_id", name="uq_flags_artifact_reporter"),
    )

    op.create_table(
        "expert_reviews",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("artifact_id", sa.String(36), sa.ForeignKey("artifacts.id"), nullable=False),
        sa.Column("expert_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("decision", sa.String(16), nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("checklist", sa.JSON, nullable=True),
        _created_at(),
        sa.UniqueConstraint("artifact_id", "expert_id", name="uq_expert_reviews_artifact_expert"),
    )

    op.create_table(
        "comments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("artifact_id", sa.String(36), sa.ForeignKey("artifacts.id"), nullable=False),
        sa.Column("author_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("body", sa.Text, nullable=False),
        _created_at(),
    )
    op.create_index("ix_comments_artifact_id", "comments", ["artifact_id"])

    op.create_table(
        "artifact_events",
        sa.Column("seq", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("artifact_id", sa.String(36), sa.ForeignKey("artifacts.id"), nullable=False),
        sa.Column("actor_id", sa.String(36), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("payload", sa.JSON, nullable=False),
        _created_at(),
    )
    op.create_index(
        "ix_artifact_events_artifact_id_created_at",
        "artifact_events",
        ["artifact_id", "created_at", "seq"],
    )


def downgrade() -> None:
    # The audit log is append-only; dropping it is not a supported path.
    raise NotImplementedError("Downgrade not supported for curation schema")
