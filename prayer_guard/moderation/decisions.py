import logging
from typing import Optional, Sequence

from .errors import PersistenceError
from .schemas import (
    ModerationFlag,
    ModerationLogEntry,
    ModerationResult,
    PolicyConfig,
)

logger = logging.getLogger(__name__)

PRE_FILTER_MODEL_VERSION = "pre-filter"
ERROR_FALLBACK_MODEL_VERSION = "error-fallback"
ADMIN_REVIEW_MODEL_VERSION = "admin-review"


def decision_status(result: ModerationResult, policy: PolicyConfig) -> str:
    if result.approved:
        return "approved"
    return "rejected" if policy.auto_reject else "review"


def fallback_status(policy: PolicyConfig) -> str:
    """Status for a decision made while the provider is unavailable."""
    return "pending" if policy.strict_mode else "approved"


def error_fallback_result() -> ModerationResult:
    return ModerationResult(model_version=ERROR_FALLBACK_MODEL_VERSION)


def validation_rejection(description: str, model_version: str) -> ModerationResult:
    return ModerationResult(
        flags=[
            ModerationFlag(
                category="spam",
                severity="low",
                score=1.0,
                description=description,
            )
        ],
        processing_time_ms=0,
        model_version=model_version,
    )


def primary_flag(flags: Sequence[ModerationFlag]) -> Optional[ModerationFlag]:
    if not flags:
        return None
    return max(flags, key=lambda f: f.score)


def pick_message(
    flags: Sequence[ModerationFlag],
    messages: dict[str, str],
    default: str,
) -> str:
    flag = primary_flag(flags)
    if flag is None:
        return default
    return messages.get(flag.category, default)


def record_decision(
    store,
    *,
    content_id: str,
    content_kind: str,
    modality: str,
    status: str,
    result: ModerationResult,
    user_id: Optional[str] = None,
    meta: Optional[dict] = None,
) -> Optional[int]:
    """Append an audit row. A failed write is logged and never undoes the decision."""
    if store is None:
        return None
    entry = ModerationLogEntry(
        content_id=content_id,
        content_kind=content_kind,
        modality=modality,
        status=status,
        flags=list(result.flags),
        raw_scores=dict(result.raw_scores),
        processing_time_ms=result.processing_time_ms,
        model_version=result.model_version,
        user_id=user_id,
        meta=meta,
    )
    try:
        return store.append_log(entry)
    except PersistenceError as exc:
        logger.error(
            "Moderation decision for content_id=%s (%s) not logged: %s",
            content_id,
            status,
            exc,
        )
        return None
