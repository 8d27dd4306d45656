from __future__ import annotations

from typing import Optional

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tagtracker.db.base import Base


class Tag(Base):
    __tablename__ = "tags"

    # Identifier assigned by the platform, not generated locally.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    tag: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    view_count: Mapped[int] = mapped_column(Integer, nullable=False)
    rank: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    platform_created_at: Mapped[str] = mapped_column(String, nullable=False)
    last_checked_at: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    last_used_for_discovery: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        Index("idx_tags_view_count", "view_count"),
        Index("idx_tags_rank", "rank"),
    )


class TagHistory(Base):
    __tablename__ = "tag_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tag_id: Mapped[str] = mapped_column(String, ForeignKey("tags.id"), nullable=False)
    view_count: Mapped[int] = mapped_column(Integer, nullable=False)
    change: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        Index("idx_tag_history_tag_created", "tag_id", "created_at"),
        Index("idx_tag_history_created_at", "created_at"),
    )


class TagRequest(Base):
    __tablename__ = "tag_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tag: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")  # pending|completed|failed
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[str] = mapped_column(String, nullable=False)
