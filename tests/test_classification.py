"""
Tests for the Hive client and result normalisation.

Covers:
- severity buckets and threshold boundaries
- category mapping and max-per-class reduction
- HTTP behaviour through httpx.MockTransport (auth, errors, timeouts)
- async task submit/poll and webhook payload parsing
"""

import asyncio
import json

import httpx
import pytest

from prayer_guard.moderation.classification import (
    CATEGORY_MAP,
    HiveClient,
    build_flags,
    build_result,
    parse_text_response,
    parse_video_payload,
    reduce_max_scores,
    severity_for_score,
)
from prayer_guard.moderation.errors import ProviderError, ProviderTaskFailed
from prayer_guard.moderation.schemas import CATEGORIES, DEFAULT_THRESHOLDS


def hive_client(handler, **kwargs) -> HiveClient:
    return HiveClient("secret-key", base_url="https://hive.test/api/v2", transport=httpx.MockTransport(handler), **kwargs)


class TestSeverity:
    @pytest.mark.parametrize(
        "score,expected",
        [
            (0.0, "low"),
            (0.49, "low"),
            (0.5, "medium"),
            (0.74, "medium"),
            (0.75, "high"),
            (0.89, "high"),
            (0.9, "critical"),
            (1.0, "critical"),
        ],
    )
    def test_buckets(self, score, expected):
        assert severity_for_score(score) == expected

    def test_stable_under_reclassification(self):
        first = build_result({"violence": 0.8}, model_version="v")
        second = build_result(dict(first.raw_scores), model_version="v")
        assert first.flags == second.flags


class TestThresholds:
    def test_default_table(self):
        assert set(DEFAULT_THRESHOLDS) == set(CATEGORIES)
        assert DEFAULT_THRESHOLDS["self_harm"] == min(DEFAULT_THRESHOLDS.values())
        assert DEFAULT_THRESHOLDS["spam"] == max(DEFAULT_THRESHOLDS.values())

    @pytest.mark.parametrize("category", CATEGORIES)
    def test_flag_iff_score_meets_threshold(self, category):
        provider_class = next(k for k, v in CATEGORY_MAP.items() if v == category)
        threshold = DEFAULT_THRESHOLDS[category]

        assert build_flags({provider_class: threshold})[0].category == category
        assert build_flags({provider_class: round(threshold - 0.01, 2)}) == []

    def test_override_thresholds(self):
        assert build_flags({"spam": 0.5}) == []
        assert build_flags({"spam": 0.5}, {"spam": 0.5})[0].category == "spam"

    def test_unmapped_classes_kept_for_audit(self):
        result = build_result({"yes_alcohol": 0.99}, model_version="v")
        assert result.approved
        assert result.raw_scores == {"yes_alcohol": 0.99}

    def test_one_flag_per_category(self):
        flags = build_flags({"hate": 0.6, "hate_speech": 0.95})
        assert len(flags) == 1
        assert flags[0].score == 0.95
        assert flags[0].severity == "critical"

    def test_flags_ordered_by_score(self):
        flags = build_flags({"violence": 0.7, "self_harm": 0.95, "spam": 0.8})
        assert [f.category for f in flags] == ["self_harm", "spam", "violence"]

    def test_approved_is_derived_from_flags(self):
        for scores in ({}, {"violence": 0.1}, {"violence": 0.7}, {"nudity": 0.9, "spam": 0.1}):
            result = build_result(scores, model_version="v")
            assert result.approved == (len(result.flags) == 0)

    def test_mapping_is_case_insensitive(self):
        assert build_flags({"GORE": 0.7})[0].category == "violence"


class TestParsing:
    def test_max_not_average_across_frames(self):
        outputs = [
            {"time": 0, "predictions": [{"class": "violence", "score": 0.1}]},
            {"time": 1, "predictions": [{"class": "violence", "score": 0.95}]},
            {"time": 2, "predictions": [{"class": "violence", "score": 0.1}]},
        ]
        assert reduce_max_scores(outputs) == {"violence": 0.95}

    def test_malformed_predictions_skipped(self):
        outputs = [{"predictions": [{"class": "hate"}, {"score": 0.3}, {"class": "spam", "score": "x"}, {"class": "hate", "score": 0.2}]}]
        assert reduce_max_scores(outputs) == {"hate": 0.2}

    def test_text_response_nested_under_status(self):
        data = {
            "status": [
                {
                    "status": {"code": 0, "message": "SUCCESS"},
                    "response": {"output": [{"classes": [{"class": "violence", "score": 0.8}]}]},
                }
            ]
        }
        result = parse_text_response(data)
        assert not result.approved
        assert result.model_version == "hive-text-v2"

    def test_empty_response_is_approved(self):
        result = parse_text_response({})
        assert result.approved
        assert result.raw_scores == {}

    def test_webhook_payload(self):
        payload = {
            "processing_time": 4200,
            "output": [
                {"predictions": [{"class": "hate", "score": 0.3}]},
                {"predictions": [{"class": "hate", "score": 0.95}]},
            ],
        }
        result = parse_video_payload(payload)
        assert result.model_version == "hive-video-v2"
        assert result.processing_time_ms == 4200
        assert result.flags[0].category == "hate_speech"
        assert result.flags[0].description == "Video flagged for hate"

    def test_webhook_payload_reporting_failure(self):
        with pytest.raises(ProviderTaskFailed):
            parse_video_payload({"status": "failed"})

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            None,
            ["not", "a", "dict"],
            {"task_id": "task-1", "message": "oops"},
            {"output": [{"time": 0}]},
        ],
    )
    def test_webhook_payload_without_scores_fails(self, payload):
        with pytest.raises(ProviderTaskFailed):
            parse_video_payload(payload)


class TestHiveClient:
    @pytest.mark.asyncio
    async def test_classify_text(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={"output": [{"predictions": [{"class": "violence", "score": 0.8}]}]},
            )

        result = await hive_client(handler).classify_text("I will hurt you")

        assert seen["auth"] == "Bearer secret-key"
        assert seen["path"] == "/api/v2/task/sync/text_moderation"
        assert seen["body"] == {"text_data": "I will hurt you"}
        assert [(f.category, f.severity) for f in result.flags] == [("violence", "high")]

    @pytest.mark.asyncio
    async def test_classify_media_picks_up_transcription(self):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "output": [
                        {"transcription": "Lord, hear our prayer", "predictions": [{"class": "spam", "score": 0.1}]},
                        {"predictions": [{"class": "spam", "score": 0.2}]},
                    ]
                },
            )

        result = await hive_client(handler).classify_media("https://cdn.test/a.mp3")
        assert result.transcription == "Lord, hear our prayer"
        assert result.raw_scores == {"spam": 0.2}
        assert result.model_version == "hive-media-v2"

    @pytest.mark.asyncio
    async def test_non_2xx_raises_provider_error(self):
        client = hive_client(lambda request: httpx.Response(503, text="down"))
        with pytest.raises(ProviderError) as exc_info:
            await client.classify_text("hello there")
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_transport_error_raises_provider_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ProviderError):
            await hive_client(handler).classify_text("hello there")

    @pytest.mark.asyncio
    async def test_slow_provider_is_cancelled(self):
        async def handler(request):
            await asyncio.sleep(1)
            return httpx.Response(200, json={})

        with pytest.raises(ProviderError):
            await hive_client(handler, timeout=0.05).classify_text("hello there")

    @pytest.mark.asyncio
    async def test_non_json_body_raises_provider_error(self):
        client = hive_client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(ProviderError):
            await client.classify_text("hello there")

    @pytest.mark.asyncio
    async def test_submit_video(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"task_id": "abc-123"})

        task_id = await hive_client(handler).submit_video("https://cdn.test/v.mp4", webhook_url="https://hooks.test/m")
        assert task_id == "abc-123"
        assert seen["body"] == {"url": "https://cdn.test/v.mp4", "callback_url": "https://hooks.test/m"}

    @pytest.mark.asyncio
    async def test_submit_video_without_task_id(self):
        with pytest.raises(ProviderError):
            await hive_client(lambda request: httpx.Response(200, json={})).submit_video("https://cdn.test/v.mp4")

    @pytest.mark.asyncio
    async def test_poll_pending_returns_none(self):
        client = hive_client(lambda request: httpx.Response(200, json={"status": "pending"}))
        assert await client.poll_task("abc") is None

    @pytest.mark.asyncio
    async def test_poll_failed_raises(self):
        client = hive_client(lambda request: httpx.Response(200, json={"status": "failed"}))
        with pytest.raises(ProviderTaskFailed):
            await client.poll_task("abc")

    @pytest.mark.asyncio
    async def test_poll_completed(self):
        def handler(request):
            assert request.method == "GET"
            assert request.url.path.endswith("/task/abc")
            return httpx.Response(
                200,
                json={"status": "completed", "output": [{"predictions": [{"class": "hate", "score": 0.95}]}]},
            )

        result = await hive_client(handler).poll_task("abc")
        assert not result.approved
        assert result.model_version == "hive-video-v2"

    @pytest.mark.asyncio
    async def test_poll_completed_without_scores_raises(self):
        client = hive_client(lambda request: httpx.Response(200, json={"status": "completed"}))
        with pytest.raises(ProviderTaskFailed):
            await client.poll_task("abc")

    @pytest.mark.asyncio
    async def test_policy_thresholds_override_client_table(self):
        def handler(request):
            return httpx.Response(200, json={"output": [{"predictions": [{"class": "profanity", "score": 0.3}]}]})

        client = hive_client(handler)
        assert (await client.classify_text("darn it all")).approved
        assert not (await client.classify_text("darn it all", thresholds={"profanity": 0.25})).approved
