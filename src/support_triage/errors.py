from __future__ import annotations

from typing import Any, Dict, Optional


class TriageException(Exception):
    """Base exception for all support-triage errors."""

    # Retry wrappers re-raise non-retryable errors immediately.
    retryable: bool = True

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigurationException(TriageException):
    """Invalid or missing configuration."""

    retryable = False


class ExternalServiceException(TriageException):
    """Base exception for failures of the email provider or completion service."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.service_name = service_name
        self.status_code = status_code
        super().__init__(f"{service_name}: {message}", details)


class TransientExternalError(ExternalServiceException):
    """Network, 429 and 5xx failures. Worth retrying with backoff."""


class AuthExpiredError(ExternalServiceException):
    """Expired or invalid credential. Recovered only by a credential refresh."""

    retryable = False


class FatalExternalError(ExternalServiceException):
    """Permission, quota or configuration failures. Never retried."""

    retryable = False


class MalformedResponseError(ExternalServiceException):
    """The completion service answered with an unexpected shape."""

    retryable = False


class DraftingError(TriageException):
    """No usable match to draft from, or the completion came back empty."""

    retryable = False


class TriageFailedError(TriageException):
    """A triage run ended in the failed stage.

    Carries the partial result built before the failure so callers never
    lose the classification and matches already computed.
    """

    retryable = False

    def __init__(self, partial: Any, stage: str, cause: BaseException):
        self.partial = partial
        self.stage = stage
        self.cause = cause
        super().__init__(
            f"Triage failed during {stage}: {cause}",
            {"stage": stage, "error": f"{type(cause).__name__}: {cause}"},
        )


def is_retryable(exc: BaseException) -> bool:
    return bool(getattr(exc, "retryable", True))
