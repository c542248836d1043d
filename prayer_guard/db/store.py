import datetime as dt
import logging
from collections import Counter
from contextlib import contextmanager
from typing import Iterator, Optional, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from prayer_guard.db import models as db
from prayer_guard.db.session import session_scope
from prayer_guard.moderation.errors import PersistenceError
from prayer_guard.moderation.schemas import (
    ModerationLogEntry,
    ModerationResult,
    ModerationStats,
    ModerationTaskRecord,
    PolicyConfig,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "default"
TASK_TTL = dt.timedelta(minutes=10)


@contextmanager
def _persisting(factory, action: str) -> Iterator[Session]:
    try:
        with session_scope(factory) as session:
            yield session
    except SQLAlchemyError as exc:
        logger.error("Failed to %s: %s", action, exc, exc_info=True)
        raise PersistenceError(f"Failed to {action}") from exc


class ModerationStore:
    """moderation_logs, moderation_tasks and moderation_config access."""

    def __init__(self, session_factory=None):
        self._factory = session_factory

    # -- logs ----------------------------------------------------------------

    def append_log(self, entry: ModerationLogEntry) -> int:
        with _persisting(self._factory, "write moderation log") as session:
            row = db.ModerationLog(
                content_id=entry.content_id,
                content_kind=entry.content_kind,
                modality=entry.modality,
                status=entry.status,
                flags=[f.model_dump(mode="json") for f in entry.flags],
                raw_scores=dict(entry.raw_scores),
                processing_time_ms=entry.processing_time_ms,
                model_version=entry.model_version,
                user_id=entry.user_id,
                meta=entry.meta,
                created_at=entry.created_at or db.utcnow(),
            )
            session.add(row)
            session.flush()
            return row.id

    def logs_for_content(self, content_id: str) -> list[ModerationLogEntry]:
        with _persisting(self._factory, "read moderation logs") as session:
            rows = (
                session.execute(
                    select(db.ModerationLog)
                    .where(db.ModerationLog.content_id == content_id)
                    .order_by(db.ModerationLog.id)
                )
                .scalars()
                .all()
            )
            return [ModerationLogEntry.model_validate(r) for r in rows]

    def recent_logs(
        self, limit: int = 10, statuses: tuple[str, ...] = ("rejected", "review")
    ) -> list[ModerationLogEntry]:
        with _persisting(self._factory, "read recent moderation logs") as session:
            rows = (
                session.execute(
                    select(db.ModerationLog)
                    .where(db.ModerationLog.status.in_(statuses))
                    .order_by(db.ModerationLog.created_at.desc(), db.ModerationLog.id.desc())
                    .limit(limit)
                )
                .scalars()
                .all()
            )
            return [ModerationLogEntry.model_validate(r) for r in rows]

    def stats(self, since: dt.datetime) -> ModerationStats:
        with _persisting(self._factory, "compute moderation stats") as session:
            window = db.ModerationLog.created_at >= since

            by_status = dict(
                session.execute(
                    select(db.ModerationLog.status, func.count(db.ModerationLog.id))
                    .where(window)
                    .group_by(db.ModerationLog.status)
                ).all()
            )
            by_modality = dict(
                session.execute(
                    select(db.ModerationLog.modality, func.count(db.ModerationLog.id))
                    .where(window)
                    .group_by(db.ModerationLog.modality)
                ).all()
            )
            avg_ms = session.execute(
                select(func.avg(db.ModerationLog.processing_time_ms)).where(window)
            ).scalar_one()

            categories: Counter = Counter()
            for flags in session.execute(select(db.ModerationLog.flags).where(window)).scalars():
                for flag in flags or []:
                    category = flag.get("category") if isinstance(flag, dict) else None
                    if category:
                        categories[category] += 1

        total = sum(by_status.values())
        approved = by_status.get("approved", 0)
        return ModerationStats(
            total=total,
            approved=approved,
            rejected=by_status.get("rejected", 0),
            approval_rate=round(approved / total * 100, 2) if total else 0.0,
            avg_processing_time_ms=round(float(avg_ms or 0), 2),
            by_modality=by_modality,
            by_category=dict(categories),
        )

    # -- tasks ---------------------------------------------------------------

    def create_task(self, record: ModerationTaskRecord) -> None:
        created_at = record.created_at or db.utcnow()
        with _persisting(self._factory, f"create moderation task {record.task_id}") as session:
            session.add(
                db.ModerationTask(
                    task_id=record.task_id,
                    content_id=record.content_id,
                    content_kind=record.content_kind,
                    media_url=record.media_url,
                    user_id=record.user_id,
                    status=record.status,
                    created_at=created_at,
                    expires_at=record.expires_at or created_at + TASK_TTL,
                )
            )

    def get_task(self, task_id: str) -> Optional[ModerationTaskRecord]:
        with _persisting(self._factory, f"read moderation task {task_id}") as session:
            row = session.execute(
                select(db.ModerationTask).where(db.ModerationTask.task_id == task_id)
            ).scalar_one_or_none()
            if row is None:
                return None
            return ModerationTaskRecord.model_validate(row)

    def complete_task(self, task_id: str, result: ModerationResult) -> bool:
        """Move a live task to ``completed``. False if it was already terminal."""
        return self._finish_task(
            task_id,
            status="completed",
            result=result.model_dump(mode="json"),
        )

    def fail_task(self, task_id: str, error: str) -> bool:
        return self._finish_task(task_id, status="failed", error_message=error)

    def _finish_task(self, task_id: str, **values) -> bool:
        stmt = (
            update(db.ModerationTask)
            .where(
                db.ModerationTask.task_id == task_id,
                db.ModerationTask.status.in_(("pending", "processing")),
            )
            .values(completed_at=db.utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        with _persisting(self._factory, f"finish moderation task {task_id}") as session:
            return session.execute(stmt).rowcount == 1

    def expire_stale_tasks(self, now: Optional[dt.datetime] = None) -> int:
        now = now or db.utcnow()
        stmt = (
            update(db.ModerationTask)
            .where(
                db.ModerationTask.status.in_(("pending", "processing")),
                db.ModerationTask.expires_at < now,
            )
            .values(
                status="failed",
                error_message="Task timed out after 10 minutes",
                completed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        with _persisting(self._factory, "expire stale moderation tasks") as session:
            return session.execute(stmt).rowcount or 0

    # -- config --------------------------------------------------------------

    def read_policy(self, name: str = DEFAULT_CONFIG_NAME) -> Optional[PolicyConfig]:
        with _persisting(self._factory, "read moderation config") as session:
            row = session.execute(
                select(db.ModerationConfig).where(db.ModerationConfig.config_name == name)
            ).scalar_one_or_none()
            if row is None:
                return None
            return PolicyConfig(
                enabled=row.enabled,
                strict_mode=row.strict_mode,
                auto_reject=row.auto_reject,
                thresholds=row.thresholds or {},
            )

    def write_policy(
        self,
        policy: PolicyConfig,
        name: str = DEFAULT_CONFIG_NAME,
        updated_by: Optional[str] = None,
    ) -> None:
        with _persisting(self._factory, "write moderation config") as session:
            row = session.execute(
                select(db.ModerationConfig).where(db.ModerationConfig.config_name == name)
            ).scalar_one_or_none()
            if row is None:
                row = db.ModerationConfig(config_name=name)
                session.add(row)
            row.enabled = policy.enabled
            row.strict_mode = policy.strict_mode
            row.auto_reject = policy.auto_reject
            row.thresholds = dict(policy.thresholds)
            row.updated_by = updated_by


class ContentRepository(Protocol):
    def set_visibility(self, content_id: str, moderation_status: str, is_visible: bool) -> bool:
        ...


class SqlContentRepository:
    """Flips ``moderation_status``/``is_visible`` on ``content_items``."""

    def __init__(self, session_factory=None):
        self._factory = session_factory

    def set_visibility(self, content_id: str, moderation_status: str, is_visible: bool) -> bool:
        with _persisting(self._factory, f"update visibility of {content_id}") as session:
            item = session.get(db.ContentItem, content_id)
            if item is None:
                logger.warning("Content item %s not found, visibility unchanged", content_id)
                return False
            item.moderation_status = moderation_status
            item.is_visible = is_visible
            return True
