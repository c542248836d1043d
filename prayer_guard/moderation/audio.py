"""
Audio moderation for audio prayers and voice responses.

Hive transcribes the recording and scores both the transcript and the audio
itself in one synchronous call. Format and duration are checked first so a
bad upload never costs a classification.
"""
import logging
from typing import Optional

from .decisions import (
    decision_status,
    error_fallback_result,
    fallback_status,
    pick_message,
    record_decision,
    validation_rejection,
)
from .errors import ProviderError, ValidationError
from .media import check_media, validate_upload
from .schemas import (
    DEFAULT_POLICY,
    AudioModerationOutput,
    FileValidation,
    PolicyConfig,
)

logger = logging.getLogger(__name__)

SUPPORTED_AUDIO_FORMATS = ("mp3", "wav", "m4a", "ogg", "webm", "aac")
MAX_AUDIO_DURATION = 600  # seconds
MAX_AUDIO_SIZE = 50 * 1024 * 1024

AUDIO_FORMAT_MESSAGE = "Please upload audio in MP3, WAV, M4A, OGG, WEBM or AAC format."
AUDIO_DURATION_MESSAGE = "Audio prayers must be under 10 minutes. Please record a shorter prayer."

AUDIO_MESSAGES: dict[str, str] = {
    "hate_speech": "Your audio contains language that may be hurtful. Please re-record with kindness.",
    "harassment": "Your audio may contain targeting language. Please re-record with compassion.",
    "violence": "Your audio contains content not appropriate for this space. Please re-record.",
    "self_harm": "We care about you. If you're struggling, please reach out to someone who can help.",
    "sexual_content": "Your audio contains content not appropriate for this space. Please re-record.",
    "spam": "Your audio appears to be spam. Please share genuine prayer requests.",
    "profanity": "Please use respectful language in this sacred space.",
    "illegal_activity": "Your audio contains references that aren't allowed. Please re-record.",
}
DEFAULT_AUDIO_MESSAGE = "Your audio prayer could not be posted. Please review our community guidelines."
HELD_AUDIO_MESSAGE = "Thank you for your audio prayer. It will appear once it has been reviewed, usually within a few minutes."


def validate_audio_file(filename: str, size_bytes: int) -> FileValidation:
    """Pre-upload check so obviously bad files are never transmitted."""
    return validate_upload(
        filename,
        size_bytes,
        formats=SUPPORTED_AUDIO_FORMATS,
        max_size=MAX_AUDIO_SIZE,
        format_error=f"Unsupported format. Please use: {', '.join(SUPPORTED_AUDIO_FORMATS)}",
        size_error="Audio file too large. Maximum size is 50MB.",
    )


class AudioModerator:
    def __init__(self, client, store=None):
        self.client = client
        self.store = store

    async def moderate(
        self,
        audio_url: str,
        content_id: str,
        content_kind: str = "audio_prayer",
        user_id: Optional[str] = None,
        duration_seconds: Optional[float] = None,
        policy: Optional[PolicyConfig] = None,
    ) -> AudioModerationOutput:
        policy = policy or DEFAULT_POLICY
        meta = {"audio_url": audio_url}

        try:
            check_media(
                audio_url,
                formats=SUPPORTED_AUDIO_FORMATS,
                max_duration=MAX_AUDIO_DURATION,
                duration_seconds=duration_seconds,
                format_message=AUDIO_FORMAT_MESSAGE,
                duration_message=AUDIO_DURATION_MESSAGE,
            )
        except ValidationError as exc:
            logger.info("Audio rejected before classification: content_id=%s check=%s", content_id, exc.check)
            description = "Unsupported audio format" if exc.check == "format" else "Audio too long"
            result = validation_rejection(description, exc.model_version)
            record_decision(
                self.store,
                content_id=content_id,
                content_kind=content_kind,
                modality="audio",
                status="rejected",
                result=result,
                user_id=user_id,
                meta=meta,
            )
            return AudioModerationOutput(status="rejected", result=result, message=str(exc))

        try:
            result = await self.client.classify_media(audio_url, thresholds=policy.thresholds)
        except ProviderError as exc:
            logger.warning(
                "Audio classification unavailable for content_id=%s, falling back: %s",
                content_id,
                exc,
            )
            status = fallback_status(policy)
            result = error_fallback_result()
            record_decision(
                self.store,
                content_id=content_id,
                content_kind=content_kind,
                modality="audio",
                status=status,
                result=result,
                user_id=user_id,
                meta=meta,
            )
            return AudioModerationOutput(
                status=status,
                result=result,
                message=HELD_AUDIO_MESSAGE if status == "pending" else None,
            )

        status = decision_status(result, policy)
        logger.info(
            "Audio moderated: content_id=%s status=%s flags=%s",
            content_id,
            status,
            [f.category for f in result.flags],
        )
        record_decision(
            self.store,
            content_id=content_id,
            content_kind=content_kind,
            modality="audio",
            status=status,
            result=result,
            user_id=user_id,
            meta=meta,
        )

        return AudioModerationOutput(
            status=status,
            result=result,
            transcription=result.transcription,
            message=None if result.approved else pick_message(result.flags, AUDIO_MESSAGES, DEFAULT_AUDIO_MESSAGE),
        )
