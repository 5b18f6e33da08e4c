"""
gofile_dav/session.py - Process-wide session token with single-flight refresh
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, TypeVar

from gofile_dav.exceptions import is_unauthorized

if TYPE_CHECKING:
    from gofile_dav.client import GofileClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Token:
    """Credentials needed by every remote call"""

    api_token: str
    website_token: str
    issued_at: datetime = field(default_factory=_utcnow)
    expires_at: datetime | None = None

    def is_expired(self) -> bool:
        """Check if the token is past its validity window"""
        return self.expires_at is not None and _utcnow() >= self.expires_at

    def with_ttl(self, ttl: int | None) -> "Token":
        if not ttl or ttl <= 0:
            return replace(self, expires_at=None)
        return replace(self, expires_at=self.issued_at + timedelta(seconds=ttl))


class SessionManager:
    """
    Owns the session Token for the whole process.

    The token is issued lazily on first use and re-issued when its validity
    window has passed or when the service rejects it. All issuing happens
    under one lock, so concurrent callers never trigger two refreshes.
    """

    def __init__(
        self,
        client: "GofileClient",
        api_token: str | None = None,
        ttl: int | None = 21600,
    ):
        """
        Initialize the session

        Args:
            client: Remote API client used to issue tokens
            api_token: Account token; a guest account is created when omitted
            ttl: Token validity window in seconds (None or 0 disables expiry)
        """
        self.client = client
        self.api_token = api_token
        self.ttl = ttl

        self._account_token = api_token

        self._token: Token | None = None
        self._lock = asyncio.Lock()

        self.stats = {
            "issued": 0,
            "refreshes": 0,
            "retries": 0,
        }

    @property
    def current(self) -> Token | None:
        """The token in use, without issuing one"""
        return self._token

    async def _issue(self) -> Token:
        token = await self.client.get_session_token(self.api_token)
        token = token.with_ttl(self.ttl)
        # A guest account created here is reused until it is rejected
        if self.api_token is None:
            self.api_token = token.api_token
        self.stats["issued"] += 1
        return token

    async def get_token(self) -> Token:
        """Return a valid token, issuing one if needed"""
        async with self._lock:
            if self._token is None:
                logger.info("Issuing session token")
                self._token = await self._issue()
            elif self._token.is_expired():
                logger.info("Session token expired, refreshing")
                self._token = await self._issue()
                self.stats["refreshes"] += 1
            return self._token

    async def refresh(self, rejected: Token | None = None) -> Token:
        """
        Replace a token the service rejected

        If another caller already replaced ``rejected`` the current token is
        returned as is.
        """
        async with self._lock:
            current = self._token
            if (
                current is not None
                and current is not rejected
                and not current.is_expired()
            ):
                return current

            logger.info("Session token rejected, refreshing")
            if self._account_token is None:
                # Rejected guest accounts are replaced, not retried
                self.api_token = None
            self._token = await self._issue()
            self.stats["refreshes"] += 1
            return self._token

    async def call(
        self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """
        Run ``func(token, *args, **kwargs)``

        An Unauthorized failure triggers one refresh and one retry. Every other
        failure, and a second Unauthorized, propagates unchanged.
        """
        token = await self.get_token()
        try:
            return await func(token, *args, **kwargs)
        except Exception as e:
            if not is_unauthorized(e):
                raise
            logger.debug(f"Unauthorized from {getattr(func, '__name__', func)}")

        token = await self.refresh(token)
        self.stats["retries"] += 1
        return await func(token, *args, **kwargs)
