from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any, Dict, List

import httpx
import pytest
from openai import APIConnectionError, APIStatusError, AuthenticationError, RateLimitError

from support_triage.errors import ConfigurationException, FatalExternalError, TransientExternalError
from support_triage.llm.completion import CompletionRequest, OpenAICompletionService, map_openai_error

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _status_error(cls: type, status: int) -> APIStatusError:
    return cls("request failed", response=httpx.Response(status, request=REQUEST), body=None)


class FakeCompletions:
    def __init__(self, outcome: Any):
        self._outcome = outcome
        self.calls: List[Dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if isinstance(self._outcome, BaseException):
            raise self._outcome
        return self._outcome


def _service(outcome: Any):
    completions = FakeCompletions(outcome)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAICompletionService(model="gpt-4o-mini", client=client), completions


def test_complete_returns_text_and_usage() -> None:
    response = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content='{"isSupport": true}'))],
        usage=SimpleNamespace(prompt_tokens=7, completion_tokens=3),
        model="gpt-4o-mini-2024-07-18",
    )
    service, completions = _service(response)

    completion = asyncio.run(
        service.complete(CompletionRequest("system", "user", temperature=0.1, max_tokens=300, json_mode=True))
    )

    assert completion.text == '{"isSupport": true}'
    assert completion.usage.total_tokens == 10
    assert completion.model == "gpt-4o-mini-2024-07-18"
    [call] = completions.calls
    assert call["response_format"] == {"type": "json_object"}
    assert call["messages"][0] == {"role": "system", "content": "system"}
    assert call["max_tokens"] == 300


def test_plain_request_does_not_force_json() -> None:
    response = SimpleNamespace(choices=[], usage=None, model=None)
    service, completions = _service(response)

    completion = asyncio.run(service.complete(CompletionRequest("system", "user")))

    assert completion.text == ""
    assert completion.usage.total_tokens == 0
    assert "response_format" not in completions.calls[0]


def test_rate_limit_surfaces_as_transient() -> None:
    service, _ = _service(_status_error(RateLimitError, 429))

    with pytest.raises(TransientExternalError):
        asyncio.run(service.complete(CompletionRequest("system", "user")))


@pytest.mark.parametrize(
    "exc, expected",
    [
        (_status_error(AuthenticationError, 401), FatalExternalError),
        (_status_error(APIStatusError, 400), FatalExternalError),
        (_status_error(APIStatusError, 503), TransientExternalError),
        (APIConnectionError(request=REQUEST), TransientExternalError),
    ],
)
def test_map_openai_error(exc: Exception, expected: type) -> None:
    assert isinstance(map_openai_error(exc), expected)


def test_missing_api_key_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationException):
        OpenAICompletionService(api_key=None)
