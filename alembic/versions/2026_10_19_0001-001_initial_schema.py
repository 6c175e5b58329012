"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

All 4 tables as defined in waypoint/models/database_models.py:
learning_modules, learning_resources, hands_on_tasks, learning_path_templates.
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


def _embedding_columns():
    return [
        sa.Column("content_embedding", Vector(VECTOR_DIM), nullable=True),
        sa.Column("embedding_model", sa.String(100), nullable=True),
        sa.Column("embedded_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # pgvector extension
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # ── learning_modules ──────────────────────────────────────────────────
    op.create_table(
        "learning_modules",
        sa.Column("module_id", sa.Integer, primary_key=True, index=True),
        sa.Column("module_name", sa.String(255), nullable=False),
        sa.Column("module_description", sa.Text, nullable=True),
        sa.Column("skills_covered", sa.JSON, nullable=True),
        sa.Column("prerequisites", sa.JSON, nullable=True),
        sa.Column("difficulty", sa.String(50), nullable=True),
        sa.Column("estimated_hours", sa.Float, nullable=True),
        *_timestamps(),
        *_embedding_columns(),
    )

    # ── learning_resources ────────────────────────────────────────────────
    op.create_table(
        "learning_resources",
        sa.Column("resource_id", sa.Integer, primary_key=True, index=True),
        sa.Column("resource_title", sa.String(255), nullable=False),
        sa.Column("resource_type", sa.String(50), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("url", sa.String(1024), nullable=True),
        *_timestamps(),
        *_embedding_columns(),
    )

    # ── hands_on_tasks ────────────────────────────────────────────────────
    op.create_table(
        "hands_on_tasks",
        sa.Column("task_id", sa.Integer, primary_key=True, index=True),
        sa.Column("task_title", sa.String(255), nullable=False),
        sa.Column("task_description", sa.Text, nullable=True),
        sa.Column("task_type", sa.String(50), nullable=True),
        sa.Column("instructions", sa.Text, nullable=True),
        sa.Column("estimated_minutes", sa.Integer, nullable=True),
        *_timestamps(),
        *_embedding_columns(),
    )

    # ── learning_path_templates ───────────────────────────────────────────
    op.create_table(
        "learning_path_templates",
        sa.Column("template_id", sa.String(36), primary_key=True),
        sa.Column("template_name", sa.String(255), nullable=False),
        sa.Column("template_description", sa.Text, nullable=True),
        sa.Column("difficulty_level", sa.String(50), nullable=False, server_default="beginner"),
        sa.Column("estimated_duration_weeks", sa.Integer, nullable=False, server_default="12"),
        sa.Column("target_skills", sa.JSON, nullable=False),
        sa.Column("target_goals", sa.JSON, nullable=False),
        sa.Column("usage_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("path_data", sa.JSON, nullable=False),
        sa.Column("path_embedding", Vector(VECTOR_DIM), nullable=True),
        sa.Column("embedding_model", sa.String(100), nullable=True, index=True),
        *_timestamps(),
    )
    op.create_check_constraint(
        "ck_learning_path_templates_usage_count", "learning_path_templates", "usage_count >= 0"
    )

    # Approximate nearest-neighbour index for cosine distance
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_learning_path_templates_path_embedding "
        "ON learning_path_templates USING hnsw (path_embedding vector_cosine_ops)"
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_learning_path_templates_path_embedding")
    op.drop_table("learning_path_templates")
    op.drop_table("hands_on_tasks")
    op.drop_table("learning_resources")
    op.drop_table("learning_modules")
