"""
Data model for the character studio generation core.
"""
import base64
import binascii
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


DEFAULT_FREE_LIMIT = 50


class SubscriptionTier(str, Enum):
    NONE = "none"
    STARTER = "starter"
    PRO = "pro"


class ErrorKind(str, Enum):
    QUOTA_EXCEEDED = "quota_exceeded"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    TRANSPORT_ERROR = "transport_error"
    RATE_LIMITED = "rate_limited"
    INVALID_REQUEST = "invalid_request"
    NO_IMAGE_PRODUCED = "no_image_produced"
    ABORTED = "aborted"


class BatchStatus(str, Enum):
    COMPLETED = "completed"
    QUOTA_EXCEEDED = "quota_exceeded"
    ABORTED = "aborted"


@dataclass(frozen=True)
class BinaryAsset:
    """Raw image bytes with their MIME type."""
    data: bytes
    mime_type: str = "image/png"

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"

    @classmethod
    def from_data_url(cls, url: str, mime_type: str = "image/jpeg") -> "BinaryAsset":
        """
        Decode a `data:<mime>;base64,<payload>` URL. `mime_type` is used only
        when the URL does not declare one.

        Raises:
            ValueError: not a base64 data URL, or the payload is not valid base64
        """
        header, sep, payload = url.partition(",")
        if not header.startswith("data:") or not sep:
            raise ValueError("Not a data URL")
        params = header[len("data:"):].split(";")
        if "base64" not in params[1:]:
            raise ValueError("Only base64 data URLs are supported")
        return cls._decode(payload, params[0] or mime_type)

    @classmethod
    def from_base64(cls, value: str, mime_type: str = "image/jpeg") -> "BinaryAsset":
        """
        Decode a base64 string or a data URL.

        A data URL carries its own MIME type, which wins over `mime_type`.

        Raises:
            ValueError: if the payload is not valid base64
        """
        if value.startswith("data:"):
            return cls.from_data_url(value, mime_type)
        return cls._decode(value, mime_type)

    @classmethod
    def _decode(cls, value: str, mime_type: str) -> "BinaryAsset":
        try:
            data = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid base64 image data: {e}") from e
        return cls(data=data, mime_type=mime_type)


@dataclass(frozen=True)
class Descriptor:
    """One requested variation: an instruction plus its reference images."""
    id: str
    instruction_text: str
    reference_assets: Tuple[BinaryAsset, ...] = ()
    # e.g. "16:9"; None leaves the output shape to the model
    aspect_ratio: Optional[str] = None


@dataclass
class QuotaRecord:
    """Usage and subscription state for one user."""
    user_id: str
    free_used: int = 0
    free_limit: int = DEFAULT_FREE_LIMIT
    subscription_tier: SubscriptionTier = SubscriptionTier.NONE
    subscription_expiry: Optional[datetime] = None
    total_generations: int = 0
    last_generation_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def copy(self, **changes) -> "QuotaRecord":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "free_used": self.free_used,
            "free_limit": self.free_limit,
            "subscription_tier": self.subscription_tier.value,
            "subscription_expiry": _iso(self.subscription_expiry),
            "total_generations": self.total_generations,
            "last_generation_date": _iso(self.last_generation_date),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuotaRecord":
        return cls(
            user_id=data["user_id"],
            free_used=int(data.get("free_used", 0)),
            free_limit=int(data.get("free_limit", DEFAULT_FREE_LIMIT)),
            subscription_tier=SubscriptionTier(data.get("subscription_tier") or "none"),
            subscription_expiry=_parse(data.get("subscription_expiry")),
            total_generations=int(data.get("total_generations", 0)),
            last_generation_date=_parse(data.get("last_generation_date")),
            created_at=_parse(data.get("created_at")),
            updated_at=_parse(data.get("updated_at")),
        )


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    # Stored timestamps are UTC; older records may lack the offset
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# Response fragments

@dataclass(frozen=True)
class ImageChunk:
    data: bytes
    mime_type: str = "image/png"


@dataclass(frozen=True)
class TextChunk:
    text: str


@dataclass(frozen=True)
class EmptyChunk:
    """Fragment carrying neither image nor text, e.g. a keep-alive."""


ResponseFragment = Union[ImageChunk, TextChunk, EmptyChunk]


# Outcomes

@dataclass(frozen=True)
class Success:
    descriptor_id: str
    image: BinaryAsset

    @property
    def succeeded(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    descriptor_id: str
    reason: ErrorKind
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return False


GenerationOutcome = Union[Success, Failure]


@dataclass(frozen=True)
class BatchResult:
    """Per-descriptor outcomes of one batch, in submission order."""
    outcomes: Tuple[GenerationOutcome, ...] = ()
    status: BatchStatus = BatchStatus.COMPLETED

    @property
    def successes(self) -> Tuple[Success, ...]:
        return tuple(o for o in self.outcomes if o.succeeded)

    @property
    def failures(self) -> Tuple[Failure, ...]:
        return tuple(o for o in self.outcomes if not o.succeeded)

    @property
    def succeeded_count(self) -> int:
        return len(self.successes)

    @property
    def failed_count(self) -> int:
        return len(self.failures)


@dataclass
class BatchResultBuilder:
    """Mutable accumulator used while a batch is running."""
    outcomes: list = field(default_factory=list)

    def add(self, outcome: GenerationOutcome) -> None:
        self.outcomes.append(outcome)

    def fail_remaining(self, descriptors, reason: ErrorKind, detail: str) -> List[Failure]:
        failures = [Failure(descriptor.id, reason, detail) for descriptor in descriptors]
        self.outcomes.extend(failures)
        return failures

    def build(self, status: BatchStatus = BatchStatus.COMPLETED) -> BatchResult:
        return BatchResult(outcomes=tuple(self.outcomes), status=status)
