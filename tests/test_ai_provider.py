"""
Tests for the Gemini provider wiring and the startup migration runner.

The google-genai client and Alembic's command API are mocked; no network
or database is touched.
"""

import base64
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from manabee.config import Settings
from manabee.db.migration_runner import build_alembic_config, run_migrations
from manabee.models.api import LessonSummary
from manabee.services.ai_provider import (
    GeminiProvider,
    StructuredRequest,
    VisionRequest,
    build_ai_provider,
)


def _provider_with_response(text: str | None) -> tuple[GeminiProvider, AsyncMock]:
    with patch("manabee.services.ai_provider.genai.Client") as client_cls:
        generate = AsyncMock(return_value=MagicMock(text=text))
        client_cls.return_value.aio.models.generate_content = generate
        provider = GeminiProvider(api_key="key", model="gemini-2.5-flash")
    return provider, generate


class TestBuildAiProvider:
    def test_none_without_api_key(self) -> None:
        assert build_ai_provider(Settings(storage_backend="memory", gemini_api_key="")) is None

    def test_gemini_with_api_key(self) -> None:
        with patch("manabee.services.ai_provider.genai.Client") as client_cls:
            provider = build_ai_provider(
                Settings(storage_backend="memory", gemini_api_key="key", gemini_model="m")
            )

        assert isinstance(provider, GeminiProvider)
        assert provider.model == "m"
        client_cls.assert_called_once_with(api_key="key")


class TestGeminiProvider:
    async def test_structured_request_uses_json_schema(self) -> None:
        provider, generate = _provider_with_response('{"lesson_goal": "g"}')

        text = await provider.generate_structured(
            StructuredRequest(
                name="summary", prompt="summarize", schema=LessonSummary, temperature=0.3
            )
        )

        assert text == '{"lesson_goal": "g"}'
        kwargs = generate.await_args.kwargs
        assert kwargs["model"] == "gemini-2.5-flash"
        assert kwargs["contents"] == "summarize"
        assert kwargs["config"].response_mime_type == "application/json"
        assert kwargs["config"].temperature == 0.3

    async def test_image_request_sends_decoded_bytes(self) -> None:
        provider, generate = _provider_with_response("hint")
        image = base64.b64encode(b"png-bytes").decode()

        text = await provider.analyze_image(
            VisionRequest(prompt="analyze", image_base64=image, mime_type="image/png")
        )

        assert text == "hint"
        kwargs = generate.await_args.kwargs
        parts = kwargs["contents"][0].parts
        assert parts[0].text == "analyze"
        assert parts[1].inline_data.data == b"png-bytes"
        assert parts[1].inline_data.mime_type == "image/png"
        assert kwargs["config"].max_output_tokens == 500

    async def test_empty_response(self) -> None:
        provider, _ = _provider_with_response(None)

        assert (
            await provider.analyze_image(
                VisionRequest(prompt="p", image_base64="aGk=", mime_type="image/png")
            )
            is None
        )


class TestMigrationRunner:
    def test_config_points_at_database(self) -> None:
        cfg = build_alembic_config("postgresql+asyncpg://u:p%40ss@db/manabee")

        assert cfg.get_main_option("sqlalchemy.url") == "postgresql+asyncpg://u:p%40ss@db/manabee"
        assert cfg.get_main_option("script_location").endswith("alembic")

    def test_failure_is_wrapped(self) -> None:
        with patch(
            "manabee.db.migration_runner.command.upgrade", side_effect=Exception("boom")
        ):
            with pytest.raises(RuntimeError, match="Database migration failed: boom"):
                run_migrations("sqlite+aiosqlite://")

    def test_upgrades_to_head(self) -> None:
        with patch("manabee.db.migration_runner.command.upgrade") as upgrade:
            run_migrations("sqlite+aiosqlite://")

        assert upgrade.call_args.args[1] == "head"
