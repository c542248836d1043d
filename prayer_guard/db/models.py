from __future__ import annotations

import datetime as dt
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Integer,
    String,
    Text,
    JSON,
)
from sqlalchemy.orm import declarative_base, Mapped, mapped_column

Base = declarative_base()


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class ModerationLog(Base):
    """Append-only audit row, one per moderation decision."""

    __tablename__ = "moderation_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    content_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    content_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    # text | audio | video
    modality: Mapped[str] = mapped_column(String(16), nullable=False, index=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    flags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    raw_scores: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    processing_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    model_version: Mapped[str] = mapped_column(String(64), nullable=False)

    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    # media url, reviewer, notes
    meta: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )


class ModerationTask(Base):
    """Async provider job, currently only video."""

    __tablename__ = "moderation_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)

    content_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    content_kind: Mapped[str] = mapped_column(String(32), nullable=False, default="video_response")
    media_url: Mapped[str] = mapped_column(Text, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # pending | processing | completed | failed
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", index=True)
    result: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    completed_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))


class ModerationConfig(Base):
    __tablename__ = "moderation_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    config_name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, default="default")

    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    strict_mode: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_reject: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    thresholds: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
    updated_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)


class ContentItem(Base):
    """Visibility record for a published prayer, response or message."""

    __tablename__ = "content_items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # pending | approved | rejected | review
    moderation_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    is_visible: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
