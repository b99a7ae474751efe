"""
Quota state for generation admission.

The functions at module level are pure: they take a QuotaRecord and return a
new one. QuotaStore wraps a StorageService and is the only place records are
read or written.
"""
import json
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from azure.core.exceptions import AzureError

from .errors import StorageUnavailable
from .models import DEFAULT_FREE_LIMIT, QuotaRecord, SubscriptionTier

logger = logging.getLogger(__name__)


def _now(now: Optional[datetime]) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


def has_active_subscription(record: QuotaRecord, now: Optional[datetime] = None) -> bool:
    if record.subscription_tier == SubscriptionTier.NONE:
        return False
    return record.subscription_expiry is not None and record.subscription_expiry > _now(now)


def can_generate(record: QuotaRecord, now: Optional[datetime] = None) -> bool:
    """Admission check. Subscribers are unlimited until expiry, free users are capped."""
    if has_active_subscription(record, now):
        return True
    return record.free_used < record.free_limit


def remaining_generations(record: QuotaRecord, now: Optional[datetime] = None) -> Optional[int]:
    """Free generations left, or None while a subscription is active."""
    if has_active_subscription(record, now):
        return None
    return max(0, record.free_limit - record.free_used)


def record_generation(record: QuotaRecord, now: Optional[datetime] = None) -> QuotaRecord:
    # Not clamped: a record already at its limit still counts the success.
    now = _now(now)
    return record.copy(
        free_used=record.free_used + 1,
        total_generations=record.total_generations + 1,
        last_generation_date=now,
        updated_at=now,
    )


def upgrade_subscription(
    record: QuotaRecord,
    tier: SubscriptionTier,
    duration_days: int,
    now: Optional[datetime] = None,
) -> QuotaRecord:
    tier = SubscriptionTier(tier)
    if tier == SubscriptionTier.NONE:
        raise ValueError("Cannot upgrade to tier 'none'; use cancel_subscription")
    if duration_days <= 0:
        raise ValueError(f"duration_days must be positive, got {duration_days}")
    now = _now(now)
    return record.copy(
        subscription_tier=tier,
        subscription_expiry=now + timedelta(days=duration_days),
        updated_at=now,
    )


def cancel_subscription(record: QuotaRecord, now: Optional[datetime] = None) -> QuotaRecord:
    return record.copy(
        subscription_tier=SubscriptionTier.NONE,
        subscription_expiry=None,
        updated_at=_now(now),
    )


def reset_usage(record: QuotaRecord, now: Optional[datetime] = None) -> QuotaRecord:
    return record.copy(free_used=0, updated_at=_now(now))


class QuotaStore:
    """
    Loads and persists QuotaRecords through a StorageService.

    Records live at `quota/<user_id>.json`. A missing record is synthesized
    with no usage; it is not written until the first persist.
    """

    ENV_FREE_LIMIT = "FREE_GENERATION_LIMIT"
    PREFIX = "quota/"

    def __init__(self, storage, free_limit: Optional[int] = None):
        """
        Args:
            storage: StorageService (or anything with get_file/upload_file/list_files)
            free_limit: Free generations for new users. Defaults to the
                FREE_GENERATION_LIMIT env var, then DEFAULT_FREE_LIMIT.
        """
        self.storage = storage
        if free_limit is None:
            free_limit = int(os.getenv(self.ENV_FREE_LIMIT, DEFAULT_FREE_LIMIT))
        if free_limit <= 0:
            raise ValueError(f"free_limit must be positive, got {free_limit}")
        self.free_limit = free_limit

    def _path(self, user_id: str) -> str:
        if not user_id or "/" in user_id or "\\" in user_id or user_id in (".", ".."):
            raise ValueError(f"Invalid user id: {user_id!r}")
        return f"{self.PREFIX}{user_id}.json"

    def load(self, user_id: str) -> QuotaRecord:
        path = self._path(user_id)
        try:
            raw = self.storage.get_file(path)
        except (AzureError, OSError) as e:
            logger.error(f"Quota store read failed for {user_id}: {e}")
            raise StorageUnavailable(f"Could not load quota for {user_id}: {e}") from e

        if raw is None:
            now = datetime.now(timezone.utc)
            logger.info(f"No quota record for {user_id}, starting fresh")
            return QuotaRecord(user_id=user_id, free_limit=self.free_limit, created_at=now, updated_at=now)

        try:
            return QuotaRecord.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Corrupt quota record for {user_id}: {e}")
            raise StorageUnavailable(f"Quota record for {user_id} is unreadable: {e}") from e

    def persist(self, record: QuotaRecord) -> None:
        path = self._path(record.user_id)
        payload = json.dumps(record.to_dict()).encode("utf-8")
        try:
            self.storage.upload_file(path, payload)
        except (AzureError, OSError) as e:
            logger.error(f"Quota store write failed for {record.user_id}: {e}")
            raise StorageUnavailable(f"Could not persist quota for {record.user_id}: {e}") from e

    def list_users(self) -> List[str]:
        try:
            files = self.storage.list_files(self.PREFIX)
        except (AzureError, OSError) as e:
            raise StorageUnavailable(f"Could not list quota records: {e}") from e
        return sorted(
            f[len(self.PREFIX):-len(".json")]
            for f in files
            if f.startswith(self.PREFIX) and f.endswith(".json")
        )

    def apply_billing_event(self, user_id: str, tier: SubscriptionTier, duration_days: int) -> QuotaRecord:
        """Entry point for billing webhooks: upgrade and persist in one step."""
        record = upgrade_subscription(self.load(user_id), tier, duration_days)
        self.persist(record)
        logger.info(f"User {user_id} upgraded to {record.subscription_tier.value} until {record.subscription_expiry}")
        return record

    def cancel(self, user_id: str) -> QuotaRecord:
        record = cancel_subscription(self.load(user_id))
        self.persist(record)
        logger.info(f"User {user_id} subscription canceled")
        return record

    def reset(self, user_id: str) -> QuotaRecord:
        record = reset_usage(self.load(user_id))
        self.persist(record)
        logger.info(f"User {user_id} usage reset")
        return record
