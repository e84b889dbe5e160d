from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TypeVar

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from starlette.concurrency import run_in_threadpool

from support_triage.auth.google import google_credentials
from support_triage.auth.tokens import TokenLifecycleManager
from support_triage.errors import (
    AuthExpiredError,
    ExternalServiceException,
    FatalExternalError,
    TransientExternalError,
)
from support_triage.models import Credential
from support_triage.resilience.retry import MAX_RETRIES, RETRY_DELAY_MS, call_with_retry

logger = logging.getLogger(__name__)

SERVICE_NAME = "Gmail API"

T = TypeVar("T")


@dataclass(frozen=True)
class GmailClientConfig:
    # Gmail userId, "me" refers to the authenticated user.
    user_id: str = "me"
    max_retries: int = MAX_RETRIES
    initial_delay_ms: int = RETRY_DELAY_MS


def _default_service_factory(credential: Credential) -> Any:
    return build("gmail", "v1", credentials=google_credentials(credential), cache_discovery=False)


def map_http_error(exc: HttpError) -> ExternalServiceException:
    status = getattr(exc.resp, "status", None)
    try:
        status = int(status) if status is not None else None
    except (TypeError, ValueError):
        status = None
    reason = getattr(exc, "reason", None) or str(exc)
    message = f"HTTP {status}: {reason}"

    if status == 401:
        return AuthExpiredError(SERVICE_NAME, message, status_code=status)
    if status == 403:
        return FatalExternalError(SERVICE_NAME, message, status_code=status)
    if status == 429 or (status is not None and status >= 500):
        return TransientExternalError(SERVICE_NAME, message, status_code=status)
    return FatalExternalError(SERVICE_NAME, message, status_code=status)


class GmailClient:
    """
    Async Gmail boundary.

    Every request reads the credential from the token manager right before
    it is sent. A 401 triggers one explicit refresh and a single retry;
    transient failures are retried with backoff; 403 fails immediately.
    """

    def __init__(
        self,
        tokens: TokenLifecycleManager,
        cfg: Optional[GmailClientConfig] = None,
        service_factory: Callable[[Credential], Any] = _default_service_factory,
    ):
        self._tokens = tokens
        self._cfg = cfg or GmailClientConfig()
        self._service_factory = service_factory

    async def _execute_once(self, request: Callable[[Any], Any]) -> Any:
        credential = await self._tokens.ensure_fresh_credential()

        def run() -> Any:
            return request(self._service_factory(credential)).execute()

        try:
            return await run_in_threadpool(run)
        except HttpError as exc:
            raise map_http_error(exc) from exc
        except (OSError, TimeoutError) as exc:
            raise TransientExternalError(SERVICE_NAME, f"Network error: {exc}") from exc

    async def _execute_authorized(self, request: Callable[[Any], Any]) -> Any:
        generation = self._tokens.generation
        try:
            return await self._execute_once(request)
        except AuthExpiredError:
            logger.info("Gmail rejected the access token, refreshing once")
            await self._tokens.force_refresh(seen_generation=generation)
            return await self._execute_once(request)

    async def _call(self, request: Callable[[Any], Any]) -> Any:
        return await call_with_retry(
            lambda: self._execute_authorized(request),
            max_retries=self._cfg.max_retries,
            initial_delay_ms=self._cfg.initial_delay_ms,
        )

    async def list_messages(self, query: str = "", max_results: int = 10) -> List[str]:
        """
        List message IDs matching a Gmail search query.
        Example query: 'newer_than:7d in:inbox -category:promotions'
        """
        resp = await self._call(
            lambda service: service.users()
            .messages()
            .list(userId=self._cfg.user_id, q=query, maxResults=max_results)
        )
        msgs = resp.get("messages", [])
        return [m["id"] for m in msgs]

    async def get_message(self, message_id: str, fmt: str = "full") -> Dict[str, Any]:
        """
        Fetch a full message resource.
        fmt: 'full' | 'metadata' | 'minimal' | 'raw'
        """
        return await self._call(
            lambda service: service.users()
            .messages()
            .get(userId=self._cfg.user_id, id=message_id, format=fmt)
        )

    async def get_thread(self, thread_id: str) -> Dict[str, Any]:
        return await self._call(
            lambda service: service.users()
            .threads()
            .get(userId=self._cfg.user_id, id=thread_id, format="full")
        )

    async def get_profile(self) -> Dict[str, Any]:
        """Get the Gmail profile of the authenticated user."""
        return await self._call(lambda service: service.users().getProfile(userId=self._cfg.user_id))
