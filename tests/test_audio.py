import pytest

from conftest import scored
from prayer_guard.moderation.audio import (
    AUDIO_MESSAGES,
    AudioModerator,
    validate_audio_file,
)
from prayer_guard.moderation.errors import ProviderError
from prayer_guard.moderation.schemas import PolicyConfig

AUDIO_URL = "https://cdn.example/prayers/p-1.mp3"


class TestValidation:
    @pytest.mark.asyncio
    async def test_unsupported_format_rejected_without_provider_call(self, client, store):
        output = await AudioModerator(client, store).moderate("https://cdn.example/p-1.xyz", "p-1")

        assert output.status == "rejected"
        assert "MP3" in output.message
        assert output.result.model_version == "format-validation"
        client.classify_media.assert_not_called()

        [log] = store.logs_for_content("p-1")
        assert log.status == "rejected"
        assert log.meta == {"audio_url": "https://cdn.example/p-1.xyz"}

    @pytest.mark.asyncio
    async def test_too_long_rejected_without_provider_call(self, client):
        output = await AudioModerator(client).moderate(AUDIO_URL, "p-1", duration_seconds=601)

        assert output.status == "rejected"
        assert output.result.model_version == "duration-validation"
        assert "10 minutes" in output.message
        client.classify_media.assert_not_called()

    @pytest.mark.asyncio
    async def test_query_string_ignored_for_format(self, client):
        output = await AudioModerator(client).moderate(AUDIO_URL + "?token=abc", "p-1", duration_seconds=600)

        assert output.status == "approved"
        client.classify_media.assert_awaited_once()

    def test_validate_audio_file(self):
        assert validate_audio_file("prayer.M4A", 1024).valid
        assert not validate_audio_file("prayer", 1024).valid

        too_big = validate_audio_file("prayer.mp3", 50 * 1024 * 1024 + 1)
        assert not too_big.valid
        assert "50MB" in too_big.error

        wrong = validate_audio_file("prayer.flac", 10)
        assert "mp3" in wrong.error


class TestClassification:
    @pytest.mark.asyncio
    async def test_transcription_passed_through(self, client, store):
        client.classify_media.return_value = scored(
            {"spam": 0.1}, model_version="hive-media-v2"
        ).model_copy(update={"transcription": "Lord, hear our prayer"})

        output = await AudioModerator(client, store).moderate(AUDIO_URL, "p-1", user_id="u-1")

        assert output.status == "approved"
        assert output.transcription == "Lord, hear our prayer"
        [log] = store.logs_for_content("p-1")
        assert log.modality == "audio"
        assert log.content_kind == "audio_prayer"

    @pytest.mark.asyncio
    async def test_flagged_audio(self, client):
        client.classify_media.return_value = scored({"hate": 0.92}, model_version="hive-media-v2")

        output = await AudioModerator(client).moderate(AUDIO_URL, "p-1", content_kind="audio_response")

        assert output.status == "rejected"
        assert output.should_block
        assert output.message == AUDIO_MESSAGES["hate_speech"]

    @pytest.mark.asyncio
    async def test_fails_open(self, client, store):
        client.classify_media.side_effect = ProviderError("timeout")

        output = await AudioModerator(client, store).moderate(AUDIO_URL, "p-1")

        assert output.status == "approved"
        assert output.result.model_version == "error-fallback"
        assert store.logs_for_content("p-1")[0].model_version == "error-fallback"

    @pytest.mark.asyncio
    async def test_strict_mode_holds(self, client):
        client.classify_media.side_effect = ProviderError("timeout")

        output = await AudioModerator(client).moderate(AUDIO_URL, "p-1", policy=PolicyConfig(strict_mode=True))

        assert output.status == "pending"
        assert output.message is not None
