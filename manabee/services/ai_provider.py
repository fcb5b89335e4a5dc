"""
AI Provider - Gemini access through the google-genai SDK.

The rest of the service depends only on the ``GenerationProvider`` protocol,
so tests and alternative backends can stand in for Gemini.
"""

import base64
from dataclasses import dataclass
from typing import Protocol

from google import genai
from google.genai import types
from pydantic import BaseModel
from structlog import get_logger

from manabee.config import Settings

logger = get_logger(__name__)


@dataclass(frozen=True)
class StructuredRequest:
    """A schema-constrained generation request."""

    name: str
    prompt: str
    schema: type[BaseModel]
    temperature: float


@dataclass(frozen=True)
class VisionRequest:
    """A single-image analysis request."""

    prompt: str
    image_base64: str
    mime_type: str
    temperature: float = 0.3
    max_output_tokens: int = 500


class GenerationProvider(Protocol):
    """
    Generative AI provider protocol.

    Implementations return the raw response text (None or empty when the
    model produced nothing) and raise on transport or API failure.
    """

    async def generate_structured(self, request: StructuredRequest) -> str | None: ...

    async def analyze_image(self, request: VisionRequest) -> str | None: ...


class GeminiProvider:
    """GenerationProvider backed by Gemini via the async google-genai client."""

    def __init__(self, api_key: str, model: str) -> None:
        self.model = model
        self._client = genai.Client(api_key=api_key)

    async def generate_structured(self, request: StructuredRequest) -> str | None:
        response = await self._client.aio.models.generate_content(
            model=self.model,
            contents=request.prompt,
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=request.schema,
                temperature=request.temperature,
            ),
        )
        return response.text

    async def analyze_image(self, request: VisionRequest) -> str | None:
        response = await self._client.aio.models.generate_content(
            model=self.model,
            contents=[
                types.Content(
                    role="user",
                    parts=[
                        types.Part.from_text(text=request.prompt),
                        types.Part.from_bytes(
                            data=base64.b64decode(request.image_base64),
                            mime_type=request.mime_type,
                        ),
                    ],
                )
            ],
            config=types.GenerateContentConfig(
                temperature=request.temperature,
                max_output_tokens=request.max_output_tokens,
            ),
        )
        return response.text


def build_ai_provider(settings: Settings) -> GenerationProvider | None:
    """Create the Gemini provider, or None when no API key is configured."""
    if not settings.gemini_api_key:
        logger.warning("gemini_api_key_missing")
        return None
    return GeminiProvider(api_key=settings.gemini_api_key, model=settings.gemini_model)
