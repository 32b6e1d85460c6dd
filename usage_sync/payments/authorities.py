"""
Clients for the regional payment authorities.

Each authority answers

    GET {base_url}/api/v1/users/{external_user_id}/payment
    token: <shared secret>

with {"payment": {"subscription_id", "midtrans_id", "plan"}}. Every failure
to get a well-formed answer, from timeouts to unparseable bodies, is reported
as AuthorityUnavailableError so the caller can move on to the next authority.
"""

import logging
from typing import List, Optional
from urllib.parse import quote, urlparse

import httpx

from usage_sync.config import PaymentSettings
from usage_sync.exceptions import AuthorityUnavailableError
from usage_sync.types.payments import PaymentEntitlement, parse_authority_response
from usage_sync.utils.logging import timed

logger = logging.getLogger(__name__)

PAYMENT_PATH = "/api/v1/users/{external_user_id}/payment"


class PaymentAuthority:
    """One regional payment authority."""

    def __init__(
        self,
        name: str,
        base_url: str,
        secret: str,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.name = name
        self.base_url = base_url.rstrip("/")
        self._secret = secret
        self.timeout = httpx.Timeout(timeout_seconds)
        self._client = client

    def __repr__(self) -> str:
        return f"PaymentAuthority(name={self.name!r}, base_url={self.base_url!r})"

    def payment_url(self, external_user_id: str) -> str:
        path = PAYMENT_PATH.format(external_user_id=quote(str(external_user_id), safe=""))
        return f"{self.base_url}{path}"

    async def fetch(self, external_user_id: str) -> PaymentEntitlement:
        """
        Ask this authority for a user's entitlement.

        Raises:
            AuthorityUnavailableError: On any failure to get a well-formed answer.
        """
        url = self.payment_url(external_user_id)
        try:
            with timed(f"authority {self.name}", logger):
                if self._client is not None:
                    response = await self._client.get(
                        url,
                        headers={"token": self._secret},
                        timeout=self.timeout,
                    )
                else:
                    async with httpx.AsyncClient(timeout=self.timeout) as client:
                        response = await client.get(url, headers={"token": self._secret})
            response.raise_for_status()
            return parse_authority_response(response.json())
        except httpx.TimeoutException as e:
            raise AuthorityUnavailableError(
                authority=self.name,
                internal_message=f"timeout after {self.timeout.read}s",
                original_error=e,
            ) from e
        except httpx.HTTPStatusError as e:
            raise AuthorityUnavailableError(
                authority=self.name,
                internal_message=f"HTTP {e.response.status_code}",
                original_error=e,
            ) from e
        except httpx.HTTPError as e:
            raise AuthorityUnavailableError(
                authority=self.name,
                internal_message=f"transport error: {e.__class__.__name__}",
                original_error=e,
            ) from e
        except ValueError as e:
            # json.JSONDecodeError and pydantic.ValidationError are both ValueErrors
            raise AuthorityUnavailableError(
                authority=self.name,
                internal_message="malformed response body",
                original_error=e,
            ) from e
        except Exception as e:
            raise AuthorityUnavailableError(
                authority=self.name,
                internal_message=f"unexpected error: {e.__class__.__name__}",
                original_error=e,
            ) from e


def _authority_name(base_url: str) -> str:
    return urlparse(base_url).hostname or base_url


def build_authorities(
    settings: Optional[PaymentSettings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> List[PaymentAuthority]:
    """Create the authorities from configuration, preserving precedence order."""
    settings = settings or PaymentSettings()
    return [
        PaymentAuthority(
            name=_authority_name(url),
            base_url=url,
            secret=settings.shared_secret,
            timeout_seconds=settings.payment_authority_timeout,
            client=client,
        )
        for url in settings.authority_urls
    ]
