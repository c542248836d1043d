"""
Single entry point for moderating text, audio and video.

The orchestrator owns the provider client, the policy cache and the three
modality moderators. Callers build one with ``build_orchestrator`` and share it.
"""
import asyncio
import datetime as dt
import logging
import time
from typing import Any, Mapping, Optional, Protocol, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from .classification import HiveClient
from .decisions import ADMIN_REVIEW_MODEL_VERSION, record_decision
from .errors import PersistenceError
from .policy import PolicyCache
from .schemas import (
    AudioContent,
    ConfigUpdateResult,
    ModerationLogEntry,
    ModerationResponse,
    ModerationResult,
    ModerationStats,
    TextContent,
    VideoContent,
    VideoTaskStatus,
    WebhookOutcome,
    content_adapter,
)
from .audio import AudioModerator
from .text import TextModerator, looks_suspicious
from .video import VideoModerator

logger = logging.getLogger(__name__)


class DecisionNotifier(Protocol):
    async def notify(self, response: ModerationResponse) -> None:
        ...


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class ModerationOrchestrator:
    def __init__(
        self,
        client,
        store,
        content_repo,
        *,
        webhook_url: Optional[str] = None,
        config_ttl: float = 60.0,
        batch_size: int = 10,
        notifier: Optional[DecisionNotifier] = None,
    ):
        self.client = client
        self.store = store
        self.content_repo = content_repo
        self.notifier = notifier
        # Admin deliveries in flight; kept referenced until they finish.
        self._notifications: set[asyncio.Task] = set()
        self.policy = PolicyCache(store, ttl=config_ttl)

        self.text = TextModerator(client, store, batch_size=batch_size)
        self.audio = AudioModerator(client, store)
        self.video = VideoModerator(
            client,
            store,
            content_repo,
            webhook_url=webhook_url,
            on_decision=self._notify,
        )

    # -- moderation ----------------------------------------------------------

    async def moderate(self, content: Any) -> ModerationResponse:
        """Moderate one item; ``content`` is a content model or its dict form."""
        started = time.monotonic()
        if isinstance(content, Mapping):
            content = content_adapter.validate_python(content)
        if not isinstance(content, (TextContent, AudioContent, VideoContent)):
            raise TypeError(f"Unsupported content type: {type(content).__name__}")

        policy = self.policy.get()
        if not policy.enabled:
            return ModerationResponse(
                content_id=content.content_id,
                modality=content.type,
                status="approved",
                approved=True,
                processing_time_ms=_elapsed_ms(started),
            )

        if isinstance(content, TextContent):
            output = await self.text.moderate(
                content.text,
                content.content_id,
                content.content_kind,
                content.user_id,
                policy=policy,
            )
            response = ModerationResponse(
                content_id=content.content_id,
                modality="text",
                status=output.status,
                approved=output.status == "approved",
                message=output.message,
                result=output.result,
                processing_time_ms=_elapsed_ms(started),
            )
        elif isinstance(content, AudioContent):
            output = await self.audio.moderate(
                content.audio_url,
                content.content_id,
                content.content_kind,
                content.user_id,
                content.duration_seconds,
                policy=policy,
            )
            response = ModerationResponse(
                content_id=content.content_id,
                modality="audio",
                status=output.status,
                approved=output.status == "approved",
                message=output.message,
                result=output.result,
                processing_time_ms=_elapsed_ms(started),
            )
        else:
            output = await self.video.submit_video_for_moderation(
                content.video_url,
                content.content_id,
                content.user_id,
                content.duration_seconds,
                content.content_kind,
            )
            response = ModerationResponse(
                content_id=content.content_id,
                modality="video",
                status=output.status,
                # pending is "not yet approved", never approved
                approved=False,
                task_id=output.task_id,
                message=output.message,
                result=output.result,
                processing_time_ms=_elapsed_ms(started),
            )

        if response.status in ("rejected", "review"):
            await self._notify(response)
        return response

    async def moderate_text_batch(
        self, items: Sequence[Union[TextContent, Mapping[str, Any]]]
    ) -> dict[str, ModerationResponse]:
        """Moderate many texts under one policy read, keyed by content_id."""
        started = time.monotonic()
        contents = [
            TextContent.model_validate(item) if isinstance(item, Mapping) else item
            for item in items
        ]

        policy = self.policy.get()
        if not policy.enabled:
            return {
                content.content_id: ModerationResponse(
                    content_id=content.content_id,
                    modality="text",
                    status="approved",
                    approved=True,
                    processing_time_ms=_elapsed_ms(started),
                )
                for content in contents
            }

        outputs = await self.text.moderate_batch(contents, policy=policy)

        responses: dict[str, ModerationResponse] = {}
        for content_id, output in outputs.items():
            response = ModerationResponse(
                content_id=content_id,
                modality="text",
                status=output.status,
                approved=output.status == "approved",
                message=output.message,
                result=output.result,
                processing_time_ms=output.result.processing_time_ms,
            )
            if response.status in ("rejected", "review"):
                await self._notify(response)
            responses[content_id] = response
        return responses

    def quick_check(self, text: str) -> bool:
        """True when text passes the local pre-check."""
        return not looks_suspicious(text)

    # -- video passthroughs --------------------------------------------------

    async def check_video_status(self, task_id: str) -> VideoTaskStatus:
        return await self.video.check_video_task(task_id, policy=self.policy.get())

    async def process_video_webhook(self, task_id: str, payload: Any) -> WebhookOutcome:
        return await self.video.process_webhook_result(task_id, payload, policy=self.policy.get())

    def expire_stale_tasks(self) -> int:
        try:
            return self.video.expire_stale_tasks()
        except PersistenceError:
            return 0

    # -- admin ---------------------------------------------------------------

    def get_moderation_stats(self, days: int = 30) -> ModerationStats:
        since = dt.datetime.now(dt.timezone.utc) - dt.timedelta(days=days)
        try:
            return self.store.stats(since)
        except PersistenceError:
            return ModerationStats()

    def update_moderation_config(
        self, updates: Mapping[str, Any], updated_by: Optional[str] = None
    ) -> ConfigUpdateResult:
        """Admin only. Writes through to the store and drops the cached policy."""
        try:
            policy = self.policy.update(updates, updated_by=updated_by)
        except KeyError as exc:
            return ConfigUpdateResult(success=False, error=f"Unknown config field: {exc.args[0]}")
        except PydanticValidationError as exc:
            logger.warning("Rejected moderation config update %r: %s", dict(updates), exc)
            return ConfigUpdateResult(success=False, error="Invalid moderation config")
        except PersistenceError:
            return ConfigUpdateResult(success=False, error="Failed to update moderation config")

        logger.info(
            "Moderation config updated by %s: enabled=%s strict_mode=%s auto_reject=%s",
            updated_by,
            policy.enabled,
            policy.strict_mode,
            policy.auto_reject,
        )
        return ConfigUpdateResult(success=True)

    def recent_rejections(self, limit: int = 10) -> list[ModerationLogEntry]:
        try:
            return self.store.recent_logs(limit=limit)
        except PersistenceError:
            return []

    def review_decision(
        self,
        content_id: str,
        approve: bool,
        reviewer: str,
        notes: Optional[str] = None,
    ) -> bool:
        """Human override. Appends a review row; earlier rows stay untouched."""
        status = "approved" if approve else "rejected"
        try:
            history = self.store.logs_for_content(content_id)
        except PersistenceError:
            history = []
        previous = history[-1] if history else None

        result = ModerationResult(
            flags=[] if approve or previous is None else list(previous.flags),
            raw_scores=dict(previous.raw_scores) if previous else {},
            model_version=ADMIN_REVIEW_MODEL_VERSION,
        )
        record_decision(
            self.store,
            content_id=content_id,
            content_kind=previous.content_kind if previous else "unknown",
            modality=previous.modality if previous else "text",
            status=status,
            result=result,
            user_id=previous.user_id if previous else None,
            meta={"reviewed_by": reviewer, "review_notes": notes},
        )

        try:
            updated = self.content_repo.set_visibility(content_id, status, approve)
        except PersistenceError:
            return False
        logger.info("Content %s %s by reviewer %s", content_id, status, reviewer)
        return bool(updated)

    # -- notifications -------------------------------------------------------

    async def _notify(self, response: ModerationResponse) -> None:
        """Schedule admin delivery; the caller never waits on Telegram."""
        if self.notifier is None or response.approved:
            return
        task = asyncio.create_task(self._deliver(response))
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def wait_for_notifications(self, timeout: Optional[float] = None) -> None:
        """Let in-flight admin deliveries finish, e.g. before shutdown."""
        if self._notifications:
            await asyncio.wait(set(self._notifications), timeout=timeout)

    async def _deliver(self, response: ModerationResponse) -> None:
        try:
            await self.notifier.notify(response)
        except Exception as exc:
            logger.error(
                "Failed to notify admins about content_id=%s: %s",
                response.content_id,
                exc,
                exc_info=True,
            )


def build_orchestrator(settings, store, content_repo, notifier: Optional[DecisionNotifier] = None) -> ModerationOrchestrator:
    client = HiveClient(
        settings.hive_api_key,
        base_url=settings.hive_base_url,
        timeout=settings.hive_timeout_seconds,
    )
    return ModerationOrchestrator(
        client,
        store,
        content_repo,
        webhook_url=settings.moderation_webhook_url,
        config_ttl=settings.config_cache_ttl_seconds,
        batch_size=settings.text_batch_size,
        notifier=notifier,
    )
