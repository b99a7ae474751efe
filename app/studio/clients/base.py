"""
Base Generator class for the character studio.
"""
from typing import Iterator, List

from ..models import Descriptor, ResponseFragment


class BaseGenerator:
    """Abstract base class for streaming image generators."""

    name = "base"
    model = ""

    def is_configured(self) -> bool:
        return not self.get_missing_config()

    def get_missing_config(self) -> List[str]:
        """Return list of missing configuration variables."""
        return []

    def stream(self, descriptor: Descriptor) -> Iterator[ResponseFragment]:
        """
        Issue one generation call and return its reply as fragments.
        Must be implemented by subclasses.

        The iterator is single-pass and not restartable; a retry needs a new
        call. It raises TransportError, RateLimited or InvalidRequest for
        terminal failures, and simply ends when the backend finishes.

        Args:
            descriptor: Instruction text and reference images for this call

        Returns:
            Lazy iterator of ImageChunk / TextChunk / EmptyChunk
        """
        raise NotImplementedError("Subclasses must implement stream")
