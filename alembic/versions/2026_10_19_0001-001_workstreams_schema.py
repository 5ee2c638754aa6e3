"""workstreams schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

All 5 tables as defined in app/models/database_models.py:
users, projects, workstreams, achievements, workstream_metadata.
"""
from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None

VECTOR_DIM = 1536


def upgrade() -> None:
    # pgvector extension
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # ── users ─────────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # ── projects ──────────────────────────────────────────────────────────
    op.create_table(
        "projects",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(255), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # ── workstreams ───────────────────────────────────────────────────────
    op.create_table(
        "workstreams",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(255), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("color", sa.String(7), nullable=True),
        sa.Column("centroid_embedding", Vector(VECTOR_DIM), nullable=True),
        sa.Column("centroid_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("achievement_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_archived", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # ── achievements ──────────────────────────────────────────────────────
    op.create_table(
        "achievements",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(255), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("project_id", sa.String(36), sa.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("summary", sa.Text, nullable=True),
        sa.Column("details", sa.Text, nullable=True),
        sa.Column("event_start", sa.DateTime(timezone=True), nullable=True, index=True),
        sa.Column("event_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("event_duration", sa.String(32), nullable=True),
        sa.Column("impact", sa.Integer, nullable=True),
        sa.Column("impact_source", sa.String(16), nullable=True),
        sa.Column("source", sa.String(16), nullable=True),
        sa.Column("is_archived", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("embedding", Vector(VECTOR_DIM), nullable=True),
        sa.Column("embedding_model", sa.String(128), nullable=True),
        sa.Column("embedding_generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "workstream_id", sa.String(36),
            sa.ForeignKey("workstreams.id", ondelete="SET NULL"), nullable=True, index=True,
        ),
        sa.Column("workstream_source", sa.String(16), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("impact IS NULL OR (impact >= 1 AND impact <= 10)", name="ck_achievement_impact"),
        sa.CheckConstraint(
            "workstream_source IS NULL OR workstream_source IN ('ai', 'user')",
            name="ck_achievement_workstream_source",
        ),
    )

    # ── workstream_metadata ───────────────────────────────────────────────
    op.create_table(
        "workstream_metadata",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id", sa.String(255), sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False, unique=True, index=True,
        ),
        sa.Column("last_full_clustering_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("achievement_count_at_last_clustering", sa.Integer, nullable=False, server_default="0"),
        sa.Column("epsilon", sa.Float, nullable=False),
        sa.Column("min_pts", sa.Integer, nullable=False),
        sa.Column("workstream_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("outlier_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("workstream_metadata")
    op.drop_table("achievements")
    op.drop_table("workstreams")
    op.drop_table("projects")
    op.drop_table("users")
