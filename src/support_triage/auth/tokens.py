from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Protocol

from support_triage.errors import AuthExpiredError
from support_triage.models import Credential

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[Credential], None]


class CredentialRefresher(Protocol):
    """Performs a token refresh and reports the new tokens through `on_refresh`."""

    def refresh(self, credential: Credential, on_refresh: RefreshCallback) -> Awaitable[None]: ...


class TokenLifecycleManager:
    """
    Single owner of the email-provider credential.

    Callers read the credential through `ensure_fresh_credential()` right
    before each outbound call and never hold it across other awaits. The
    manager refreshes ahead of expiry, serializes concurrent refreshes and
    ignores refresh results older than what it already holds.
    """

    def __init__(
        self,
        credential: Credential,
        refresher: CredentialRefresher,
        *,
        refresh_skew_seconds: float = 60,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._credential = credential
        self._refresher = refresher
        self._skew = refresh_skew_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = asyncio.Lock()
        # Bumped on every accepted refresh; lets waiters detect a refresh they queued behind.
        self._generation = 0
        self._listeners: List[RefreshCallback] = []

    @property
    def generation(self) -> int:
        return self._generation

    def current(self) -> Credential:
        # Hand out a copy so nobody keeps a reference to the managed object.
        return replace(self._credential)

    def add_listener(self, listener: RefreshCallback) -> None:
        self._listeners.append(listener)

    def on_refresh(self, new_credential: Credential) -> bool:
        """
        Apply tokens issued by the provider. Returns False for stale updates.

        The refresh token is only replaced when the provider sent a new one.
        """
        held = self._credential
        if (
            held.expiry is not None
            and new_credential.expiry is not None
            and new_credential.expiry < held.expiry
        ):
            logger.info("Ignoring stale credential refresh (expiry %s)", new_credential.expiry)
            return False

        self._credential = Credential(
            access_token=new_credential.access_token,
            refresh_token=new_credential.refresh_token or held.refresh_token,
            expiry=new_credential.expiry,
        )
        self._generation += 1
        logger.info("Credential refreshed, expires at %s", self._credential.expiry)

        for listener in list(self._listeners):
            try:
                listener(self.current())
            except Exception:
                # A broken listener (e.g. token file persistence) must not undo the refresh.
                logger.exception("Credential refresh listener failed")
        return True

    async def ensure_fresh_credential(self, credential: Optional[Credential] = None) -> Credential:
        """Return a copy of the credential, refreshing first if it is about to expire."""
        if credential is not None:
            self._adopt(credential)

        if self._needs_refresh():
            await self._refresh(self._generation, reason="proactive")

        fresh = self.current()
        if fresh.expiry is not None and fresh.expiry <= self._clock():
            raise AuthExpiredError("Google OAuth", "Refreshed credential is already expired")
        return fresh

    async def force_refresh(self, seen_generation: Optional[int] = None) -> Credential:
        """Refresh after the provider rejected the current token (HTTP 401)."""
        generation = self._generation if seen_generation is None else seen_generation
        await self._refresh(generation, reason="rejected")
        return self.current()

    def _needs_refresh(self) -> bool:
        return self._credential.expires_within(self._skew, now=self._clock())

    def _adopt(self, credential: Credential) -> None:
        held = self._credential
        if credential.access_token == held.access_token:
            return
        newer = held.expiry is None or (
            credential.expiry is not None and credential.expiry > held.expiry
        )
        if newer:
            self.on_refresh(credential)

    async def _refresh(self, seen_generation: int, *, reason: str) -> None:
        async with self._lock:
            if self._generation != seen_generation:
                # Another task refreshed while this one waited for the lock.
                return
            if reason == "proactive" and not self._needs_refresh():
                return
            if not self._credential.refresh_token:
                raise AuthExpiredError("Google OAuth", "No refresh token available")

            logger.info("Refreshing credential (%s)", reason)
            await self._refresher.refresh(self.current(), self.on_refresh)

            if self._generation == seen_generation:
                raise AuthExpiredError("Google OAuth", "Refresh did not produce a new token")
