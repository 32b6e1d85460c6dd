"""
Per-identity usage windows with lazy expiry.

There is no background sweeper. Every read passes the stored record through
normalize(), which resets an expired window before anyone trusts its count:

- get_or_create: Fetch the record for a key, creating or resetting it
- consume: Reset if needed, then add to the count atomically
- check: Raise QuotaExceeded when the current window is used up

Store failures propagate as StoreUnavailableError; metering is never
silently skipped.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from usage_sync.config import UsageSettings
from usage_sync.exceptions import InvalidInputError, QuotaExceeded
from usage_sync.storage.records import RecordStore
from usage_sync.types.usage import UsageRecord

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize(record: UsageRecord, now: datetime, window: timedelta) -> UsageRecord:
    """
    Apply lazy expiry to a record.

    Returns the record unchanged while now is before its expiry, otherwise
    a copy with a zero count and a fresh window starting at now.
    """
    if not record.is_expired(now):
        return record
    return record.model_copy(update={"count": 0, "expires_at": now + window})


class UsageTracker:
    """
    Tracks usage per identity key in a rolling window.

    The clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(
        self,
        store: RecordStore,
        settings: Optional[UsageSettings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.settings = settings or UsageSettings()
        self.window = self.settings.window
        self._clock = clock or utc_now

    def now(self) -> datetime:
        return self._clock()

    async def get_or_create(self, key: str) -> UsageRecord:
        """
        Get the usage record for a key, valid as of this call.

        Creates the record with a zero count on first sight, and resets the
        count when the stored window has ended. Issues at most one write.

        Args:
            key: Identity key ("u:<id>" or "ip:<address>").

        Returns:
            A record whose window has not ended.

        Raises:
            InvalidInputError: If the key is empty.
            StoreUnavailableError: If the record store cannot be reached.
        """
        if not key:
            raise InvalidInputError("Usage key is required", field="key")

        now = self.now()
        record = await self.store.get_usage(key)

        if record is None:
            created = await self.store.create_usage(
                UsageRecord(key=key, count=0, expires_at=now + self.window)
            )
            logger.debug("Usage window created for %s", key)
            return created

        fresh = normalize(record, now, self.window)
        if fresh is record:
            return record

        # Only zero the row if nobody moved the window since we read it
        reset = await self.store.reset_usage_if_expired(key, record.expires_at, fresh.expires_at)
        if reset is None:
            # Deleted between read and write; start over with a new window
            return await self.store.create_usage(fresh)

        logger.debug("Usage window reset for %s", key)
        return reset

    async def consume(self, key: str, amount: int = 1) -> UsageRecord:
        """
        Record usage against the current window.

        The window is normalized first, then the count is increased with a
        relative update so concurrent consumers never overwrite each other.
        """
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise InvalidInputError("Usage amount must be a positive integer", field="amount")

        await self.get_or_create(key)
        record = await self.store.increment_usage(key, amount)
        if record is None:
            record = await self.store.create_usage(
                UsageRecord(key=key, count=0, expires_at=self.now() + self.window)
            )
            record = await self.store.increment_usage(key, amount) or record
        return record

    async def check(self, key: str, limit: int) -> UsageRecord:
        """
        Ensure the key has quota left in the current window.

        Raises:
            QuotaExceeded: If the count has reached the limit.
        """
        record = await self.get_or_create(key)
        if record.count >= limit:
            raise QuotaExceeded(
                f"Usage limit of {limit} reached for this window",
                key=key,
                current_usage=record.count,
                limit=limit,
                reset_date=record.expires_at,
            )
        return record
