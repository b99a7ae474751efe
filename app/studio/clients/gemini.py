"""
Gemini Generator for the character studio.
Uses the google-genai SDK streaming API with image + text response modalities.

Required Environment Variables:
    GEMINI_API_KEY: Google AI Studio API key
    GEMINI_MODEL: Model name (default: gemini-2.5-flash-image-preview)
"""
import logging
import os
from typing import Iterator, List

import httpx
from google import genai
from google.genai import errors, types

from ..errors import InvalidRequest, RateLimited, TransportError
from ..models import Descriptor, EmptyChunk, ImageChunk, ResponseFragment, TextChunk
from .base import BaseGenerator

logger = logging.getLogger(__name__)


def map_api_error(e: errors.APIError):
    """Translate an SDK error into the generator error taxonomy."""
    code = getattr(e, "code", None)
    message = f"Gemini API error {code}: {getattr(e, 'message', None) or e}"
    if code == 429:
        return RateLimited(message)
    if isinstance(e, errors.ClientError):
        return InvalidRequest(message)
    return TransportError(message)


def fragments_from_chunk(chunk) -> Iterator[ResponseFragment]:
    """Yield one fragment per part of a streamed GenerateContentResponse."""
    candidates = getattr(chunk, "candidates", None)
    content = candidates[0].content if candidates else None
    parts = getattr(content, "parts", None) if content is not None else None
    if not parts:
        yield EmptyChunk()
        return

    for part in parts:
        inline_data = getattr(part, "inline_data", None)
        if inline_data is not None and inline_data.data:
            yield ImageChunk(inline_data.data, inline_data.mime_type or "image/png")
        elif getattr(part, "text", None):
            yield TextChunk(part.text)
        else:
            yield EmptyChunk()


class GeminiGenerator(BaseGenerator):
    """Gemini image generator using the google-genai SDK."""

    name = "gemini"

    ENV_API_KEY = "GEMINI_API_KEY"
    ENV_MODEL = "GEMINI_MODEL"

    DEFAULT_MODEL = "gemini-2.5-flash-image-preview"
    RESPONSE_MODALITIES = ["IMAGE", "TEXT"]

    def __init__(self, client=None):
        self.api_key = os.getenv(self.ENV_API_KEY)
        self.model = os.getenv(self.ENV_MODEL, self.DEFAULT_MODEL)
        self._client = client

    def get_missing_config(self) -> List[str]:
        if self._client is None and not self.api_key:
            return [self.ENV_API_KEY]
        return []

    @property
    def client(self):
        if self._client is None:
            if not self.api_key:
                raise InvalidRequest(f"Missing required environment variables: {self.ENV_API_KEY}")
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def build_contents(self, descriptor: Descriptor) -> List[types.Content]:
        # Reference images first, then the instruction
        parts = [
            types.Part.from_bytes(data=asset.data, mime_type=asset.mime_type)
            for asset in descriptor.reference_assets
        ]
        parts.append(types.Part.from_text(text=descriptor.instruction_text))
        return [types.Content(role="user", parts=parts)]

    def build_config(self, descriptor: Descriptor) -> types.GenerateContentConfig:
        if descriptor.aspect_ratio:
            return types.GenerateContentConfig(
                response_modalities=self.RESPONSE_MODALITIES,
                image_config=types.ImageConfig(aspect_ratio=descriptor.aspect_ratio),
            )
        return types.GenerateContentConfig(response_modalities=self.RESPONSE_MODALITIES)

    def stream(self, descriptor: Descriptor) -> Iterator[ResponseFragment]:
        """Stream one generation call. Nothing is sent until the first fragment is requested."""
        config = self.build_config(descriptor)

        logger.info(f"Submitting Gemini request for {descriptor.id} (model {self.model})...")
        try:
            response = self.client.models.generate_content_stream(
                model=self.model,
                contents=self.build_contents(descriptor),
                config=config,
            )
            for chunk in response:
                yield from fragments_from_chunk(chunk)
        except errors.APIError as e:
            raise map_api_error(e) from e
        except httpx.TimeoutException as e:
            raise TransportError(f"Gemini request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Gemini connection error: {e}") from e
