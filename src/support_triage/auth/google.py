from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence, Tuple

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from starlette.concurrency import run_in_threadpool

from support_triage.auth.tokens import RefreshCallback, TokenLifecycleManager
from support_triage.errors import AuthExpiredError, ConfigurationException, TransientExternalError
from support_triage.models import Credential

# Readonly is enough for fetching mail; drafting never sends.
SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"


def _to_aware(expiry: Optional[datetime]) -> Optional[datetime]:
    # google-auth keeps expiry as naive UTC.
    if expiry is None:
        return None
    if expiry.tzinfo is None:
        return expiry.replace(tzinfo=timezone.utc)
    return expiry.astimezone(timezone.utc)


def _to_naive_utc(expiry: Optional[datetime]) -> Optional[datetime]:
    if expiry is None:
        return None
    if expiry.tzinfo is None:
        return expiry
    return expiry.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class GoogleClientConfig:
    client_id: str
    client_secret: str
    token_uri: str = DEFAULT_TOKEN_URI
    scopes: Tuple[str, ...] = tuple(SCOPES)


class GoogleTokenRefresher:
    """Refreshes Gmail access tokens with google-auth's HTTP transport."""

    def __init__(self, cfg: GoogleClientConfig):
        self._cfg = cfg

    def _refresh_blocking(self, credential: Credential) -> Credential:
        creds = Credentials(
            token=credential.access_token,
            refresh_token=credential.refresh_token,
            token_uri=self._cfg.token_uri,
            client_id=self._cfg.client_id,
            client_secret=self._cfg.client_secret,
            scopes=list(self._cfg.scopes),
        )
        creds.refresh(Request())
        return Credential(
            access_token=creds.token,
            # Google does not rotate the refresh token on every refresh.
            refresh_token=creds.refresh_token,
            expiry=_to_aware(creds.expiry),
        )

    async def refresh(self, credential: Credential, on_refresh: RefreshCallback) -> None:
        try:
            new_credential = await run_in_threadpool(self._refresh_blocking, credential)
        except RefreshError as exc:
            raise AuthExpiredError("Google OAuth", f"Token refresh rejected: {exc}") from exc
        except TransportError as exc:
            raise TransientExternalError("Google OAuth", f"Token refresh failed: {exc}") from exc
        on_refresh(new_credential)


def load_authorized_user(
    token_path: Path, scopes: Sequence[str] = SCOPES
) -> Tuple[Credential, GoogleClientConfig]:
    """Read the cached authorized-user token file written after the first login."""
    if not token_path.exists():
        raise ConfigurationException(
            f"Missing Gmail token at {token_path}. "
            "Did you configure SUPPORT_TRIAGE_SECRETS_DIR?"
        )
    creds = Credentials.from_authorized_user_file(str(token_path), list(scopes))
    if not creds.client_id or not creds.client_secret:
        raise ConfigurationException(f"Token file {token_path} lacks client_id/client_secret")

    credential = Credential(
        access_token=creds.token or "",
        refresh_token=creds.refresh_token,
        expiry=_to_aware(creds.expiry),
    )
    cfg = GoogleClientConfig(
        client_id=creds.client_id,
        client_secret=creds.client_secret,
        token_uri=creds.token_uri or DEFAULT_TOKEN_URI,
        scopes=tuple(scopes),
    )
    return credential, cfg


def token_file_writer(token_path: Path) -> RefreshCallback:
    """Build a refresh listener that keeps the token file in sync with the manager."""

    def write(credential: Credential) -> None:
        data = json.loads(token_path.read_text(encoding="utf-8")) if token_path.exists() else {}
        data["token"] = credential.access_token
        if credential.refresh_token:
            data["refresh_token"] = credential.refresh_token
        expiry = _to_naive_utc(credential.expiry)
        if expiry is not None:
            data["expiry"] = expiry.isoformat() + "Z"
        token_path.parent.mkdir(parents=True, exist_ok=True)
        token_path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    return write


def token_manager_from_file(token_path: Path, *, refresh_skew_seconds: float = 60) -> TokenLifecycleManager:
    credential, cfg = load_authorized_user(token_path)
    manager = TokenLifecycleManager(
        credential,
        GoogleTokenRefresher(cfg),
        refresh_skew_seconds=refresh_skew_seconds,
    )
    manager.add_listener(token_file_writer(token_path))
    return manager


def google_credentials(credential: Credential) -> Credentials:
    """
    Wrap a managed credential for googleapiclient.

    Neither refresh token nor expiry is passed, so the Google client never
    tries to refresh on its own behind the manager's back.
    """
    return Credentials(token=credential.access_token)
