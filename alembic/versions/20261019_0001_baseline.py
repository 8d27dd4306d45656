"""baseline: tags, tag history, tag requests, job status

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _has_table(table_name: str) -> bool:
    bind = op.get_bind()
    insp = sa.inspect(bind)
    return table_name in set(insp.get_table_names())


def _existing_indexes(table_name: str) -> set[str]:
    bind = op.get_bind()
    insp = sa.inspect(bind)
    try:
        return {str(i.get("name", "")) for i in insp.get_indexes(table_name)}
    except Exception:
        return set()


def _create_index_if_missing(name: str, table_name: str, cols: list[str]) -> None:
    if name in _existing_indexes(table_name):
        return
    op.create_index(name, table_name, cols, unique=False)


def upgrade() -> None:
    if not _has_table("tags"):
        op.create_table(
            "tags",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("tag", sa.String(), nullable=False),
            sa.Column("view_count", sa.Integer(), nullable=False),
            sa.Column("rank", sa.Integer(), nullable=True),
            sa.Column("platform_created_at", sa.String(), nullable=False),
            sa.Column("last_checked_at", sa.String(), nullable=True),
            sa.Column("last_used_for_discovery", sa.String(), nullable=True),
            sa.Column("created_at", sa.String(), nullable=False),
            sa.Column("updated_at", sa.String(), nullable=False),
            sa.UniqueConstraint("tag", name="uq_tags_tag"),
        )
    _create_index_if_missing("idx_tags_view_count", "tags", ["view_count"])
    _create_index_if_missing("idx_tags_rank", "tags", ["rank"])

    if not _has_table("tag_history"):
        op.create_table(
            "tag_history",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("tag_id", sa.String(), sa.ForeignKey("tags.id"), nullable=False),
            sa.Column("view_count", sa.Integer(), nullable=False),
            sa.Column("change", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("created_at", sa.String(), nullable=False),
        )
    _create_index_if_missing("idx_tag_history_tag_created", "tag_history", ["tag_id", "created_at"])
    _create_index_if_missing("idx_tag_history_created_at", "tag_history", ["created_at"])

    if not _has_table("tag_requests"):
        op.create_table(
            "tag_requests",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("tag", sa.String(), nullable=False),
            sa.Column("status", sa.String(), nullable=False, server_default="pending"),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("created_at", sa.String(), nullable=False),
            sa.Column("updated_at", sa.String(), nullable=False),
        )

    if not _has_table("job_status"):
        op.create_table(
            "job_status",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("last_run_at", sa.String(), nullable=True),
            sa.Column("next_run_at", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=False, server_default="idle"),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("success_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("failure_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("is_enabled", sa.Integer(), nullable=False, server_default=sa.text("1")),
            sa.Column("created_at", sa.String(), nullable=False),
            sa.Column("updated_at", sa.String(), nullable=False),
            sa.UniqueConstraint("name", name="uq_job_status_name"),
        )
    _create_index_if_missing("idx_job_status_status", "job_status", ["status", "name"])


def downgrade() -> None:
    for table in ("job_status", "tag_requests", "tag_history", "tags"):
        if _has_table(table):
            op.drop_table(table)
