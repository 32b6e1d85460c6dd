"""
Payment entitlement reconciliation across regional authorities.

sync() walks the configured authorities in precedence order, one request at
a time, and stops at the first one that reports a non-free plan. That
answer is written onto the user record (only the three entitlement fields)
and the caller's cached authorization is dropped. Authority failures are
absorbed; when nobody affirms, nothing is written. A missing answer is
never treated as a downgrade.
"""

import logging
from typing import Optional, Sequence

from usage_sync.exceptions import (
    AuthorityUnavailableError,
    InvalidInputError,
    UserNotFoundError,
)
from usage_sync.types.payments import PaymentEntitlement
from usage_sync.users.service import UserService

from .authorities import PaymentAuthority

logger = logging.getLogger(__name__)


class PaymentReconciler:
    """Applies the first affirmative entitlement from an ordered authority list."""

    def __init__(
        self,
        authorities: Sequence[PaymentAuthority],
        users: UserService,
    ) -> None:
        if not authorities:
            raise ValueError("At least one payment authority is required")
        self.authorities = list(authorities)
        self.users = users

    async def find_entitlement(self, external_user_id: str) -> Optional[PaymentEntitlement]:
        """
        Query authorities in order and return the first active entitlement.

        Later authorities are not contacted once one has affirmed.
        """
        for authority in self.authorities:
            try:
                entitlement = await authority.fetch(external_user_id)
            except AuthorityUnavailableError as e:
                logger.warning(
                    "Payment authority %s unavailable for %s: %s",
                    authority.name,
                    external_user_id,
                    e.internal_message or e.message,
                )
                continue

            if entitlement.is_active:
                logger.info(
                    "Payment authority %s reports plan %s for %s",
                    authority.name,
                    entitlement.plan,
                    external_user_id,
                )
                return entitlement

            logger.debug("Payment authority %s reports no active plan", authority.name)

        return None

    async def sync(
        self,
        user_id: str,
        external_user_id: str,
        auth_key: Optional[str] = None,
    ) -> Optional[PaymentEntitlement]:
        """
        Reconcile a user's entitlement with the payment authorities.

        Args:
            user_id: Internal user record id.
            external_user_id: Identity known to the payment authorities.
            auth_key: The caller's authorization token, whose cached
                authorization is invalidated after a successful write.

        Returns:
            The applied entitlement, or None when no authority affirmed or
            the user record no longer exists.

        Raises:
            InvalidInputError: If either identifier is missing.
            StoreUnavailableError: If the user record write fails.
        """
        if not user_id:
            raise InvalidInputError("User id is required", field="user_id")
        if not external_user_id:
            raise InvalidInputError("External user id is required", field="external_user_id")

        entitlement = await self.find_entitlement(str(external_user_id))
        if entitlement is None:
            logger.info("No active entitlement found for user %s; nothing to apply", user_id)
            return None

        try:
            await self.users.update_and_invalidate(user_id, entitlement.as_fields(), auth_key)
        except UserNotFoundError:
            logger.warning("User %s not found; entitlement %s not applied", user_id, entitlement.plan)
            return None
        return entitlement

    async def lookup(self, external_user_id: str) -> PaymentEntitlement:
        """
        Read the entitlement stored for an external user id.

        Raises:
            InvalidInputError: If the id is empty.
            UserNotFoundError: If no user has this external id.
        """
        user = await self.users.get_by_external_id(str(external_user_id) if external_user_id else "")
        return user.entitlement
