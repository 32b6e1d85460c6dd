"""
User record updates that keep the authorization cache consistent.

Every write this service makes to a user record goes through
update_and_invalidate(): the partial update is persisted first, and only
after it succeeds is the cached authorization for the caller's token
deleted. A failed write never touches the cache. A failed delete is logged
and not rolled back.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from usage_sync.exceptions import InvalidInputError, UserNotFoundError
from usage_sync.storage.auth_cache import AuthCache
from usage_sync.storage.records import RecordStore
from usage_sync.types.users import UserRecord

logger = logging.getLogger(__name__)


class UserService:
    """Reads and partial updates of user records."""

    def __init__(self, store: RecordStore, cache: AuthCache) -> None:
        self.store = store
        self.cache = cache

    async def get(self, user_id: str) -> UserRecord:
        """Fetch a user by internal id."""
        if not user_id:
            raise InvalidInputError("User id is required", field="user_id")
        user = await self.store.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    async def get_by_external_id(self, tg_id: str) -> UserRecord:
        """Fetch a user by external (Telegram) id."""
        if not tg_id:
            raise InvalidInputError("External user id is required", field="tg_id")
        user = await self.store.get_user_by_external_id(tg_id)
        if user is None:
            raise UserNotFoundError(tg_id)
        return user

    async def update_and_invalidate(
        self,
        user_id: str,
        fields: Mapping[str, Any],
        auth_key: Optional[str] = None,
    ) -> UserRecord:
        """
        Persist a partial update, then drop the cached authorization.

        Args:
            user_id: Internal user id.
            fields: Columns to change; other columns are left untouched.
            auth_key: The caller's current authorization token, if known.

        Returns:
            The updated user record.

        Raises:
            InvalidInputError: If user_id is empty or a field is not updatable.
            UserNotFoundError: If the user does not exist.
            StoreUnavailableError: If the write fails (the cache is not touched).
        """
        if not user_id:
            raise InvalidInputError("User id is required", field="user_id")

        user = await self.store.update_user_fields(user_id, fields)
        if user is None:
            raise UserNotFoundError(user_id)

        logger.info(
            "User %s updated (%s)",
            user_id,
            ", ".join(sorted(fields)),
        )

        if auth_key:
            await self._invalidate(auth_key, user_id)
        return user

    async def _invalidate(self, auth_key: str, user_id: str) -> None:
        try:
            removed = await self.cache.invalidate(auth_key)
            logger.debug(
                "Authorization cache %s for user %s",
                "invalidated" if removed else "already empty",
                user_id,
            )
        except Exception as e:
            # The record write already succeeded; a stale entry expires on its own
            logger.warning(
                "Failed to invalidate authorization cache for user %s: %s",
                user_id,
                e,
            )

    async def update_settings(
        self,
        user_id: str,
        settings: Mapping[str, Any],
        auth_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Merge new settings over the stored ones.

        Keys present in settings replace stored keys; other stored keys are
        kept.

        Returns:
            The merged settings as persisted.
        """
        if settings is None:
            raise InvalidInputError("Settings are required", field="settings")

        user = await self.get(user_id)
        merged = {**(user.settings or {}), **dict(settings)}
        updated = await self.update_and_invalidate(user_id, {"settings": merged}, auth_key)
        return updated.settings
