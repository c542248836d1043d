"""
Hive moderation API client.

Hive answers text, image and audio synchronously and video through an async
task (submit, then webhook or poll). Every answer is normalised into a
``ModerationResult`` using the category map and threshold table below.

API docs: https://docs.thehive.ai/docs/api-reference
"""
import asyncio
import logging
import time
from typing import Any, Iterable, Mapping, Optional

import httpx

from .errors import ProviderError, ProviderTaskFailed
from .schemas import DEFAULT_THRESHOLDS, ModerationFlag, ModerationResult

logger = logging.getLogger(__name__)


DEFAULT_BASE_URL = "https://api.thehive.ai/api/v2"
DEFAULT_TIMEOUT = 10.0

TEXT_MODEL_VERSION = "hive-text-v2"
MEDIA_MODEL_VERSION = "hive-media-v2"
VIDEO_MODEL_VERSION = "hive-video-v2"

# Provider class -> internal category. Anything missing here is audit-only.
CATEGORY_MAP: dict[str, str] = {
    "hate": "hate_speech",
    "hate_speech": "hate_speech",
    "harassment": "harassment",
    "bullying": "harassment",
    "violence": "violence",
    "gore": "violence",
    "self_harm": "self_harm",
    "self-harm": "self_harm",
    "sexual": "sexual_content",
    "sexual_content": "sexual_content",
    "nudity": "sexual_content",
    "spam": "spam",
    "profanity": "profanity",
    "drugs": "illegal_activity",
    "weapons": "illegal_activity",
}

_PENDING_STATES = {"pending", "processing", "queued", "in_progress"}
_FAILED_STATES = {"failed", "error"}


def map_class_to_category(provider_class: str) -> Optional[str]:
    return CATEGORY_MAP.get(provider_class.lower())


def severity_for_score(score: float) -> str:
    if score >= 0.9:
        return "critical"
    if score >= 0.75:
        return "high"
    if score >= 0.5:
        return "medium"
    return "low"


def _iter_outputs(data: Any) -> list:
    """Find the list of output blocks wherever this response shape keeps it."""
    if not isinstance(data, Mapping):
        return []

    output = data.get("output")
    if isinstance(output, list):
        return output

    for key in ("response", "result"):
        nested = data.get(key)
        if isinstance(nested, Mapping):
            found = _iter_outputs(nested)
            if found:
                return found

    # Hive v2 sync answers: {"status": [{"response": {"output": [...]}}]}
    status = data.get("status")
    if isinstance(status, list):
        outputs: list = []
        for entry in status:
            outputs.extend(_iter_outputs(entry))
        return outputs

    return []


def _iter_predictions(output: Any) -> Iterable[tuple[str, float]]:
    if not isinstance(output, Mapping):
        return
    predictions = output.get("predictions")
    if predictions is None:
        predictions = output.get("classes")
    for prediction in predictions or []:
        try:
            name = str(prediction["class"])
            score = float(prediction["score"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping malformed prediction: %r", prediction)
            continue
        yield name, score


def reduce_max_scores(outputs: Iterable[Any]) -> dict[str, float]:
    """Max score per class across frames/chunks; one bad frame is enough."""
    raw_scores: dict[str, float] = {}
    for output in outputs:
        for name, score in _iter_predictions(output):
            raw_scores[name] = max(raw_scores.get(name, 0.0), score)
    return raw_scores


def extract_transcription(data: Any) -> Optional[str]:
    for output in _iter_outputs(data):
        if not isinstance(output, Mapping):
            continue
        for key in ("transcription", "transcript"):
            value = output.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        text_data = output.get("text_data")
        if isinstance(text_data, Mapping) and isinstance(text_data.get("text"), str):
            return text_data["text"]
    return None


def build_flags(
    raw_scores: Mapping[str, float],
    thresholds: Optional[Mapping[str, float]] = None,
    description_prefix: str = "Content flagged for",
) -> list[ModerationFlag]:
    table = dict(DEFAULT_THRESHOLDS)
    if thresholds:
        table.update(thresholds)

    best: dict[str, tuple[str, float]] = {}
    for provider_class, score in raw_scores.items():
        category = map_class_to_category(provider_class)
        if category is None:
            continue
        if category not in best or score > best[category][1]:
            best[category] = (provider_class, score)

    flags = [
        ModerationFlag(
            category=category,
            severity=severity_for_score(score),
            score=score,
            description=f"{description_prefix} {provider_class}",
        )
        for category, (provider_class, score) in best.items()
        if score >= table[category]
    ]
    flags.sort(key=lambda f: f.score, reverse=True)
    return flags


def build_result(
    raw_scores: Mapping[str, float],
    *,
    model_version: str,
    processing_time_ms: int = 0,
    thresholds: Optional[Mapping[str, float]] = None,
    transcription: Optional[str] = None,
    description_prefix: str = "Content flagged for",
) -> ModerationResult:
    return ModerationResult(
        flags=build_flags(raw_scores, thresholds, description_prefix),
        raw_scores=dict(raw_scores),
        processing_time_ms=processing_time_ms,
        model_version=model_version,
        transcription=transcription,
    )


def parse_text_response(
    data: Any,
    *,
    thresholds: Optional[Mapping[str, float]] = None,
    processing_time_ms: int = 0,
) -> ModerationResult:
    outputs = _iter_outputs(data)
    # Text answers carry a single output block.
    raw_scores = reduce_max_scores(outputs[:1])
    return build_result(
        raw_scores,
        model_version=TEXT_MODEL_VERSION,
        processing_time_ms=processing_time_ms,
        thresholds=thresholds,
    )


def parse_media_response(
    data: Any,
    *,
    thresholds: Optional[Mapping[str, float]] = None,
    processing_time_ms: int = 0,
    model_version: str = MEDIA_MODEL_VERSION,
    description_prefix: str = "Content flagged for",
) -> ModerationResult:
    return build_result(
        reduce_max_scores(_iter_outputs(data)),
        model_version=model_version,
        processing_time_ms=processing_time_ms,
        thresholds=thresholds,
        transcription=extract_transcription(data),
        description_prefix=description_prefix,
    )


def parse_video_scores(
    data: Any,
    *,
    thresholds: Optional[Mapping[str, float]] = None,
    processing_time_ms: int = 0,
) -> ModerationResult:
    """Finished video task -> result. A body without any score is a failure, never a pass."""
    raw_scores = reduce_max_scores(_iter_outputs(data))
    if not raw_scores:
        logger.warning("Hive video result carried no scores: %r", data)
        raise ProviderTaskFailed("Hive video result carried no scores")
    return build_result(
        raw_scores,
        model_version=VIDEO_MODEL_VERSION,
        processing_time_ms=processing_time_ms,
        thresholds=thresholds,
        description_prefix="Video flagged for",
    )


def _task_state(data: Any) -> Optional[str]:
    if not isinstance(data, Mapping):
        return None
    status = data.get("status")
    if isinstance(status, str):
        return status.lower()
    return None


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class HiveClient:
    """Stateless adapter over the Hive HTTP API.

    The API key is fixed at construction; tests pass an ``httpx.MockTransport``
    through ``transport``.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        thresholds: Optional[Mapping[str, float]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.thresholds = dict(DEFAULT_THRESHOLDS)
        if thresholds:
            self.thresholds.update(thresholds)
        self._transport = transport

    def _thresholds(self, override: Optional[Mapping[str, float]]) -> dict[str, float]:
        table = dict(self.thresholds)
        if override:
            table.update(override)
        return table

    # -- transport -----------------------------------------------------------

    async def _request(self, method: str, endpoint: str, body: Optional[dict] = None) -> Any:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        async def send() -> httpx.Response:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                return await client.request(method, endpoint, headers=headers, json=body)

        try:
            # wait_for bounds the whole exchange and cancels it on expiry
            resp = await asyncio.wait_for(send(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("Hive request timed out after %.1fs: %s %s", self.timeout, method, endpoint)
            raise ProviderError(f"Hive request timed out: {endpoint}") from exc
        except httpx.HTTPError as exc:
            logger.error("HTTP error during Hive call %s %s: %s", method, endpoint, exc, exc_info=True)
            raise ProviderError(f"Hive transport error: {exc}") from exc

        if resp.status_code >= 400:
            logger.error(
                "Hive API error %s for %s %s: %s",
                resp.status_code,
                method,
                endpoint,
                resp.text[:500],
            )
            raise ProviderError(f"Hive API error {resp.status_code}", status_code=resp.status_code)

        try:
            return resp.json()
        except ValueError as exc:
            logger.error("Failed to decode Hive response: %r", resp.text[:500])
            raise ProviderError("Hive returned a non-JSON body") from exc

    # -- sync endpoints ------------------------------------------------------

    async def classify_text(
        self, text: str, thresholds: Optional[Mapping[str, float]] = None
    ) -> ModerationResult:
        started = time.monotonic()
        data = await self._request("POST", "/task/sync/text_moderation", {"text_data": text})
        return parse_text_response(
            data,
            thresholds=self._thresholds(thresholds),
            processing_time_ms=_elapsed_ms(started),
        )

    async def classify_media(
        self, url: str, thresholds: Optional[Mapping[str, float]] = None
    ) -> ModerationResult:
        """Audio: transcribed and scored by the provider in one call."""
        started = time.monotonic()
        data = await self._request("POST", "/task/sync/audio_moderation", {"url": url})
        return parse_media_response(
            data,
            thresholds=self._thresholds(thresholds),
            processing_time_ms=_elapsed_ms(started),
        )

    async def classify_image(
        self, url: str, thresholds: Optional[Mapping[str, float]] = None
    ) -> ModerationResult:
        started = time.monotonic()
        data = await self._request("POST", "/task/sync/image_moderation", {"url": url})
        return parse_media_response(
            data,
            thresholds=self._thresholds(thresholds),
            processing_time_ms=_elapsed_ms(started),
        )

    # -- async (video) -------------------------------------------------------

    async def submit_video(self, url: str, webhook_url: Optional[str] = None) -> str:
        body: dict[str, Any] = {"url": url}
        if webhook_url:
            body["callback_url"] = webhook_url
        data = await self._request("POST", "/task/async/video_moderation", body)

        task_id = data.get("task_id") if isinstance(data, Mapping) else None
        if not task_id:
            logger.error("Hive video submission returned no task_id: %r", data)
            raise ProviderError("Hive video submission returned no task_id")
        return str(task_id)

    async def poll_task(
        self, task_id: str, thresholds: Optional[Mapping[str, float]] = None
    ) -> Optional[ModerationResult]:
        """Return the task result, or None while Hive is still working on it."""
        started = time.monotonic()
        data = await self._request("GET", f"/task/{task_id}")

        state = _task_state(data)
        if state in _PENDING_STATES:
            return None
        if state in _FAILED_STATES:
            raise ProviderTaskFailed(f"Hive reports task {task_id} failed")

        return parse_video_scores(
            data,
            thresholds=self._thresholds(thresholds),
            processing_time_ms=_elapsed_ms(started),
        )


def parse_video_payload(
    payload: Any, thresholds: Optional[Mapping[str, float]] = None
) -> ModerationResult:
    """Webhook body -> result. Hive does not guarantee this shape."""
    if isinstance(payload, Mapping) and _task_state(payload) in _FAILED_STATES:
        raise ProviderTaskFailed("Hive webhook reports the task failed")

    processing_time_ms = 0
    if isinstance(payload, Mapping):
        try:
            processing_time_ms = int(payload.get("processing_time") or 0)
        except (TypeError, ValueError):
            processing_time_ms = 0

    return parse_video_scores(
        payload,
        thresholds=thresholds,
        processing_time_ms=processing_time_ms,
    )
