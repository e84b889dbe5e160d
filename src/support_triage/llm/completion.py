from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Optional, Protocol

from openai import (
    APIConnectionError,
    APIStatusError,
    AsyncOpenAI,
    AuthenticationError,
    PermissionDeniedError,
    RateLimitError,
)

from support_triage.errors import (
    ConfigurationException,
    ExternalServiceException,
    FatalExternalError,
    TransientExternalError,
)
from support_triage.models import TokenUsage

SERVICE_NAME = "Completion Service"
DEFAULT_MODEL = "gpt-4o-mini"


@dataclass(frozen=True)
class CompletionRequest:
    system_prompt: str
    user_prompt: str
    temperature: float = 0.3
    max_tokens: int = 1000
    # Ask the model for a single JSON object (OpenAI json_object mode).
    json_mode: bool = False


@dataclass(frozen=True)
class Completion:
    text: str
    prompt_tokens: int
    completion_tokens: int
    model: str

    @property
    def usage(self) -> TokenUsage:
        return TokenUsage(input_tokens=self.prompt_tokens, output_tokens=self.completion_tokens)


class CompletionService(Protocol):
    model: str

    def complete(self, request: CompletionRequest) -> Awaitable[Completion]: ...


def map_openai_error(exc: Exception) -> ExternalServiceException:
    if isinstance(exc, (AuthenticationError, PermissionDeniedError)):
        return FatalExternalError(SERVICE_NAME, str(exc), status_code=exc.status_code)
    if isinstance(exc, RateLimitError):
        return TransientExternalError(SERVICE_NAME, str(exc), status_code=exc.status_code)
    if isinstance(exc, APIConnectionError):
        return TransientExternalError(SERVICE_NAME, f"Connection failed: {exc}")
    if isinstance(exc, APIStatusError):
        if exc.status_code >= 500:
            return TransientExternalError(SERVICE_NAME, str(exc), status_code=exc.status_code)
        return FatalExternalError(SERVICE_NAME, str(exc), status_code=exc.status_code)
    return TransientExternalError(SERVICE_NAME, f"{type(exc).__name__}: {exc}")


class OpenAICompletionService:
    """Chat-completion wrapper around the OpenAI async client."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        client: Optional[AsyncOpenAI] = None,
    ):
        if client is None:
            if not api_key:
                raise ConfigurationException("OpenAI API key is not configured")
            client = AsyncOpenAI(api_key=api_key)
        self._client = client
        self.model = model

    async def complete(self, request: CompletionRequest) -> Completion:
        kwargs = {}
        if request.json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": request.system_prompt},
                    {"role": "user", "content": request.user_prompt},
                ],
                temperature=request.temperature,
                max_tokens=request.max_tokens,
                **kwargs,
            )
        except (APIConnectionError, APIStatusError) as exc:
            raise map_openai_error(exc) from exc

        content = response.choices[0].message.content if response.choices else None
        usage = response.usage
        return Completion(
            text=content or "",
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            model=response.model or self.model,
        )
