"""
Gemini REST Generator for the character studio.
Calls the streamGenerateContent endpoint directly over server-sent events,
for deployments that cannot install the SDK's transport stack.

Required Environment Variables:
    GEMINI_API_KEY: Google AI Studio API key
    GEMINI_MODEL: Model name (default: gemini-2.5-flash-image-preview)
    GEMINI_API_BASE: API root (default: https://generativelanguage.googleapis.com/v1beta)
    GEMINI_TIMEOUT_SECONDS: Read timeout per chunk (default: 120)
"""
import base64
import binascii
import json
import logging
import os
from typing import Any, Dict, Iterator, List

import requests

from ..errors import InvalidRequest, RateLimited, TransportError
from ..models import Descriptor, EmptyChunk, ImageChunk, ResponseFragment, TextChunk
from .base import BaseGenerator

logger = logging.getLogger(__name__)


def fragments_from_payload(payload: Dict[str, Any]) -> Iterator[ResponseFragment]:
    """Yield fragments for one decoded SSE event."""
    candidates = payload.get("candidates") or []
    parts = (candidates[0].get("content") or {}).get("parts") if candidates else None
    if not parts:
        yield EmptyChunk()
        return

    for part in parts:
        inline = part.get("inlineData") or part.get("inline_data")
        if inline and inline.get("data"):
            try:
                data = base64.b64decode(inline["data"])
            except (binascii.Error, ValueError) as e:
                raise TransportError(f"Malformed inline image data: {e}") from e
            yield ImageChunk(data, inline.get("mimeType") or inline.get("mime_type") or "image/png")
        elif part.get("text"):
            yield TextChunk(part["text"])
        else:
            yield EmptyChunk()


class GeminiRestGenerator(BaseGenerator):
    """Gemini image generator over plain HTTPS streaming."""

    name = "gemini-rest"

    ENV_API_KEY = "GEMINI_API_KEY"
    ENV_MODEL = "GEMINI_MODEL"
    ENV_API_BASE = "GEMINI_API_BASE"
    ENV_TIMEOUT = "GEMINI_TIMEOUT_SECONDS"

    DEFAULT_MODEL = "gemini-2.5-flash-image-preview"
    DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
    DEFAULT_TIMEOUT = 120

    def __init__(self, session: requests.Session = None):
        self.api_key = os.getenv(self.ENV_API_KEY)
        self.model = os.getenv(self.ENV_MODEL, self.DEFAULT_MODEL)
        self.api_base = os.getenv(self.ENV_API_BASE, self.DEFAULT_API_BASE).rstrip("/")
        self.timeout = float(os.getenv(self.ENV_TIMEOUT, self.DEFAULT_TIMEOUT))
        self.session = session or requests.Session()

    def get_missing_config(self) -> List[str]:
        return [] if self.api_key else [self.ENV_API_KEY]

    @property
    def url(self) -> str:
        return f"{self.api_base}/models/{self.model}:streamGenerateContent?alt=sse"

    def build_body(self, descriptor: Descriptor) -> Dict[str, Any]:
        parts = [
            {"inlineData": {"mimeType": asset.mime_type, "data": asset.to_base64()}}
            for asset in descriptor.reference_assets
        ]
        parts.append({"text": descriptor.instruction_text})
        generation_config = {"responseModalities": ["IMAGE", "TEXT"]}
        if descriptor.aspect_ratio:
            generation_config["imageConfig"] = {"aspectRatio": descriptor.aspect_ratio}
        return {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
        }

    def stream(self, descriptor: Descriptor) -> Iterator[ResponseFragment]:
        if not self.api_key:
            raise InvalidRequest(f"Missing required environment variables: {self.ENV_API_KEY}")

        headers = {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
        }

        logger.info(f"Submitting Gemini REST request for {descriptor.id}...")
        try:
            response = self.session.post(
                self.url,
                headers=headers,
                json=self.build_body(descriptor),
                stream=True,
                timeout=(10, self.timeout),
            )
        except requests.exceptions.Timeout as e:
            raise TransportError(f"Gemini request timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Gemini connection error: {e}") from e

        with response:
            if response.status_code == 429:
                raise RateLimited(f"HTTP 429: {response.text[:500]}")
            if 400 <= response.status_code < 500:
                raise InvalidRequest(f"HTTP {response.status_code}: {response.text[:500]}")
            if response.status_code >= 500:
                raise TransportError(f"HTTP {response.status_code}: {response.text[:500]}")

            # event-stream bodies are UTF-8 whether or not a charset is declared
            response.encoding = "utf-8"
            try:
                for line in response.iter_lines(decode_unicode=True):
                    if not line or not line.startswith("data:"):
                        # Blank separators and SSE comments carry nothing
                        continue
                    data = line[len("data:"):].strip()
                    try:
                        payload = json.loads(data)
                    except json.JSONDecodeError as e:
                        raise TransportError(f"Malformed stream event: {data[:200]}") from e
                    if "error" in payload:
                        raise TransportError(f"Stream error: {payload['error']}")
                    yield from fragments_from_payload(payload)
            except requests.exceptions.RequestException as e:
                raise TransportError(f"Stream interrupted: {e}") from e
