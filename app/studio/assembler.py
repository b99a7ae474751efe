"""
ResponseAssembler
Reduces the fragment stream of one generation call to a single outcome.
"""
import logging
from typing import Iterable

from .errors import GenerationError
from .models import (
    BinaryAsset,
    EmptyChunk,
    ErrorKind,
    Failure,
    GenerationOutcome,
    ImageChunk,
    ResponseFragment,
    Success,
    TextChunk,
)

logger = logging.getLogger(__name__)

NO_IMAGE_DETAIL = "No image in response"


class ResponseAssembler:
    """
    Turns a lazy sequence of ResponseFragments into one GenerationOutcome.

    The first ImageChunk wins and ends consumption; any trailing fragments are
    never pulled from the backend. Text is kept only to explain a response
    that ended without an image.
    """

    def reduce(self, descriptor_id: str, fragments: Iterable[ResponseFragment]) -> GenerationOutcome:
        """
        Args:
            descriptor_id: Id of the descriptor the stream belongs to
            fragments: Single-pass fragment iterator from a generator client

        Returns:
            Success with the first image, or Failure with the reason and any text
        """
        texts = []
        iterator = iter(fragments)
        try:
            for fragment in iterator:
                if isinstance(fragment, ImageChunk):
                    if not fragment.data:
                        continue
                    logger.info(f"Image received for {descriptor_id} ({len(fragment.data)} bytes)")
                    return Success(descriptor_id, BinaryAsset(fragment.data, fragment.mime_type))
                if isinstance(fragment, TextChunk):
                    logger.debug(f"Text fragment for {descriptor_id}: {fragment.text}")
                    texts.append(fragment.text)
                elif not isinstance(fragment, EmptyChunk):
                    logger.warning(f"Ignoring unknown fragment type {type(fragment).__name__}")
        except GenerationError as e:
            logger.warning(f"Generation failed for {descriptor_id}: {e}")
            return Failure(descriptor_id, e.kind, str(e))
        except Exception as e:
            logger.warning(f"Unexpected error while reading stream for {descriptor_id}: {e}")
            return Failure(descriptor_id, ErrorKind.TRANSPORT_ERROR, f"{type(e).__name__}: {e}")
        finally:
            close = getattr(iterator, "close", None)
            if close is not None:
                close()

        detail = "".join(texts) or NO_IMAGE_DETAIL
        logger.warning(f"No image produced for {descriptor_id}: {detail[:200]}")
        return Failure(descriptor_id, ErrorKind.NO_IMAGE_PRODUCED, detail)
