"""
Video moderation for video prayer responses.

Video is moderated asynchronously: frames and the audio track are analysed
by Hive out of band.

    submit -> task stored as ``pending`` -> webhook or poll -> ``completed``
                                         -> provider failure / expiry -> ``failed``

Poll and webhook both finish a task through ``_finalize``; the store only
lets one of them move the task out of ``pending``, so the audit row and the
visibility update happen once.
"""
import logging
from typing import Any, Awaitable, Callable, Optional

from .classification import parse_video_payload
from .decisions import decision_status, error_fallback_result, record_decision, validation_rejection
from .errors import ModerationError, PersistenceError, ProviderError, ProviderTaskFailed, ValidationError
from .media import check_media, validate_upload
from .schemas import (
    DEFAULT_POLICY,
    FileValidation,
    ModerationResponse,
    ModerationResult,
    ModerationTaskRecord,
    PolicyConfig,
    VideoModerationOutput,
    VideoTaskStatus,
    WebhookOutcome,
)

logger = logging.getLogger(__name__)

SUPPORTED_VIDEO_FORMATS = ("mp4", "mov", "webm", "avi", "m4v")
MAX_VIDEO_DURATION = 180  # seconds
MAX_VIDEO_SIZE = 100 * 1024 * 1024

VIDEO_FORMAT_MESSAGE = f"Please upload video in {', '.join(SUPPORTED_VIDEO_FORMATS)} format."
VIDEO_DURATION_MESSAGE = "Video responses must be under 3 minutes. Please record a shorter video."
VIDEO_DELAYED_MESSAGE = (
    "Video review is temporarily delayed. Your video will be reviewed shortly, "
    "usually within a few minutes."
)

DecisionHook = Callable[[ModerationResponse], Awaitable[None]]


def estimated_moderation_time(duration_seconds: Optional[float]) -> str:
    if duration_seconds is None:
        return "less than a minute"
    if duration_seconds < 30:
        return "less than 30 seconds"
    if duration_seconds < 60:
        return "about 30 seconds"
    if duration_seconds < 120:
        return "about 1 minute"
    return "about 2 minutes"


def validate_video_file(filename: str, size_bytes: int) -> FileValidation:
    return validate_upload(
        filename,
        size_bytes,
        formats=SUPPORTED_VIDEO_FORMATS,
        max_size=MAX_VIDEO_SIZE,
        format_error=f"Please use: {', '.join(SUPPORTED_VIDEO_FORMATS)}",
        size_error="Video too large. Maximum size is 100MB.",
    )


class VideoModerator:
    def __init__(
        self,
        client,
        store,
        content_repo,
        webhook_url: Optional[str] = None,
        on_decision: Optional[DecisionHook] = None,
    ):
        self.client = client
        self.store = store
        self.content_repo = content_repo
        self.webhook_url = webhook_url
        self.on_decision = on_decision

    # -- submit --------------------------------------------------------------

    async def submit_video_for_moderation(
        self,
        video_url: str,
        content_id: str,
        user_id: Optional[str] = None,
        duration_seconds: Optional[float] = None,
        content_kind: str = "video_response",
    ) -> VideoModerationOutput:
        meta = {"video_url": video_url}

        try:
            check_media(
                video_url,
                formats=SUPPORTED_VIDEO_FORMATS,
                max_duration=MAX_VIDEO_DURATION,
                duration_seconds=duration_seconds,
                format_message=VIDEO_FORMAT_MESSAGE,
                duration_message=VIDEO_DURATION_MESSAGE,
            )
        except ValidationError as exc:
            logger.info("Video rejected before submission: content_id=%s check=%s", content_id, exc.check)
            description = "Unsupported video format" if exc.check == "format" else "Video too long"
            result = validation_rejection(description, exc.model_version)
            record_decision(
                self.store,
                content_id=content_id,
                content_kind=content_kind,
                modality="video",
                status="rejected",
                result=result,
                user_id=user_id,
                meta=meta,
            )
            return VideoModerationOutput(status="rejected", result=result, message=str(exc))

        try:
            task_id = await self.client.submit_video(video_url, webhook_url=self.webhook_url)
        except ProviderError as exc:
            logger.error("Video submission failed for content_id=%s: %s", content_id, exc)
            record_decision(
                self.store,
                content_id=content_id,
                content_kind=content_kind,
                modality="video",
                status="pending",
                result=error_fallback_result(),
                user_id=user_id,
                meta=meta,
            )
            return VideoModerationOutput(status="pending", message=VIDEO_DELAYED_MESSAGE)

        try:
            self.store.create_task(
                ModerationTaskRecord(
                    task_id=task_id,
                    content_id=content_id,
                    content_kind=content_kind,
                    media_url=video_url,
                    user_id=user_id,
                    status="pending",
                )
            )
        except PersistenceError as exc:
            # Hive still calls back; the webhook will report the task as unknown.
            logger.error("Pending task %s for content_id=%s not stored: %s", task_id, content_id, exc)

        logger.info("Video submitted: content_id=%s task_id=%s", content_id, task_id)
        return VideoModerationOutput(
            status="pending",
            task_id=task_id,
            message=(
                "Your video is being reviewed. "
                f"This usually takes {estimated_moderation_time(duration_seconds)}."
            ),
        )

    # -- poll ----------------------------------------------------------------

    async def check_video_task(
        self, task_id: str, policy: Optional[PolicyConfig] = None
    ) -> VideoTaskStatus:
        policy = policy or DEFAULT_POLICY

        try:
            task = self.store.get_task(task_id)
        except PersistenceError:
            return VideoTaskStatus(task_id=task_id, status="failed", error="Failed to check moderation status")

        if task is None:
            logger.warning("Poll for unknown moderation task %s", task_id)
            return VideoTaskStatus(task_id=task_id, status="failed", error="Moderation task not found")

        if task.is_terminal:
            return self._stored_status(task)

        try:
            result = await self.client.poll_task(task_id, thresholds=policy.thresholds)
        except ProviderTaskFailed as exc:
            try:
                self._fail(task, str(exc))
            except PersistenceError:
                logger.error("Task %s could not be marked failed", task_id)
            return VideoTaskStatus(task_id=task_id, status="failed", error="Video could not be processed")
        except ProviderError as exc:
            logger.error("Failed to poll moderation task %s: %s", task_id, exc)
            return VideoTaskStatus(task_id=task_id, status="failed", error="Failed to check moderation status")

        if result is None:
            return VideoTaskStatus(task_id=task_id, status="processing")

        try:
            won = await self._finalize(task, result, policy)
            if not won:
                # The webhook got there first; report what it stored.
                latest = self.store.get_task(task_id)
                if latest is not None:
                    return self._stored_status(latest)
        except PersistenceError:
            return VideoTaskStatus(task_id=task_id, status="failed", error="Failed to store moderation result")

        return VideoTaskStatus(task_id=task_id, status="completed", result=result)

    # -- webhook -------------------------------------------------------------

    async def process_webhook_result(
        self,
        task_id: str,
        payload: Any,
        policy: Optional[PolicyConfig] = None,
    ) -> WebhookOutcome:
        """Finish a task from a Hive callback. Never raises."""
        policy = policy or DEFAULT_POLICY
        logger.debug("Webhook payload for task %s: %r", task_id, payload)

        try:
            task = self.store.get_task(task_id)
            if task is None:
                logger.error("Webhook for unknown moderation task %s", task_id)
                return WebhookOutcome(success=False)

            if task.is_terminal:
                logger.info("Duplicate webhook for %s task %s ignored", task.status, task_id)
                return WebhookOutcome(
                    success=True,
                    content_id=task.content_id,
                    result=task.result,
                    duplicate=True,
                )

            try:
                result = parse_video_payload(payload, thresholds=policy.thresholds)
            except ProviderTaskFailed as exc:
                finished = self._fail(task, str(exc))
                return WebhookOutcome(success=True, content_id=task.content_id, duplicate=not finished)

            won = await self._finalize(task, result, policy)
            return WebhookOutcome(
                success=True,
                content_id=task.content_id,
                result=result,
                duplicate=not won,
            )
        except ModerationError as exc:
            logger.error("Webhook processing failed for task %s: %s", task_id, exc, exc_info=True)
            return WebhookOutcome(success=False)

    # -- maintenance ---------------------------------------------------------

    def expire_stale_tasks(self) -> int:
        """Fail tasks Hive never answered; their content stays hidden."""
        expired = self.store.expire_stale_tasks()
        if expired:
            logger.warning("Expired %s stale video moderation task(s)", expired)
        return expired

    # -- terminal transitions -----------------------------------------------

    async def _finalize(
        self,
        task: ModerationTaskRecord,
        result: ModerationResult,
        policy: PolicyConfig,
    ) -> bool:
        if not self.store.complete_task(task.task_id, result):
            logger.info("Task %s already finished, result discarded", task.task_id)
            return False

        status = decision_status(result, policy)
        record_decision(
            self.store,
            content_id=task.content_id,
            content_kind=task.content_kind,
            modality="video",
            status=status,
            result=result,
            user_id=task.user_id,
            meta={"video_url": task.media_url, "task_id": task.task_id},
        )

        try:
            self.content_repo.set_visibility(task.content_id, status, result.approved)
        except PersistenceError as exc:
            logger.error("Visibility of content_id=%s not updated: %s", task.content_id, exc)

        logger.info("Video task %s completed: content_id=%s status=%s", task.task_id, task.content_id, status)

        if self.on_decision is not None:
            await self.on_decision(
                ModerationResponse(
                    content_id=task.content_id,
                    modality="video",
                    status=status,
                    approved=result.approved,
                    task_id=task.task_id,
                    result=result,
                    processing_time_ms=result.processing_time_ms,
                )
            )
        return True

    def _fail(self, task: ModerationTaskRecord, error: str) -> bool:
        finished = self.store.fail_task(task.task_id, error)
        if finished:
            logger.warning("Video task %s failed: %s", task.task_id, error)
        return finished

    @staticmethod
    def _stored_status(task: ModerationTaskRecord) -> VideoTaskStatus:
        return VideoTaskStatus(
            task_id=task.task_id,
            status=task.status,
            result=task.result,
            error=task.error_message,
        )
