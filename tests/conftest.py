from __future__ import annotations

from typing import Callable, List, Sequence, Union

import pytest

from support_triage.llm.completion import Completion, CompletionRequest
from support_triage.models import BodyContentType, FAQEntry, NormalizedEmail
from support_triage.storage.audit import AuditLog, InMemoryAuditSink

Reply = Union[str, BaseException]


class FakeCompletionService:
    """Replays canned replies; the last one repeats once the list runs out."""

    model = "gpt-4o-mini"

    def __init__(self, replies: Sequence[Reply], prompt_tokens: int = 10, completion_tokens: int = 5):
        self._replies: List[Reply] = list(replies)
        self._prompt_tokens = prompt_tokens
        self._completion_tokens = completion_tokens
        self.requests: List[CompletionRequest] = []

    async def complete(self, request: CompletionRequest) -> Completion:
        self.requests.append(request)
        reply = self._replies.pop(0) if len(self._replies) > 1 else self._replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return Completion(
            text=reply,
            prompt_tokens=self._prompt_tokens,
            completion_tokens=self._completion_tokens,
            model=self.model,
        )


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def audit(audit_sink: InMemoryAuditSink) -> AuditLog:
    return AuditLog(audit_sink, username="agent@example.com")


@pytest.fixture
def make_completion() -> Callable[..., FakeCompletionService]:
    return FakeCompletionService


@pytest.fixture
def make_email() -> Callable[..., NormalizedEmail]:
    def factory(
        subject: str = "How do I reset my password",
        body: str = "",
        *,
        id: str = "msg-1",
        received_at: int = 1_700_000_000_000,
    ) -> NormalizedEmail:
        return NormalizedEmail(
            id=id,
            thread_id=f"thread-{id}",
            subject=subject,
            sender="Jane Doe <jane@example.com>",
            received_at=received_at,
            body=body,
            body_content_type=BodyContentType.TEXT,
        )

    return factory


@pytest.fixture
def knowledge_base() -> List[FAQEntry]:
    return [
        FAQEntry(
            id="faq-reset",
            question="How do I reset my password?",
            answer="Use the 'Forgot password' link on the sign-in page.",
            category="account",
            frequency=12,
        ),
        FAQEntry(
            id="faq-refund",
            question="How do I get a refund?",
            answer="Refunds are available within 30 days from the billing page.",
            category="billing",
            frequency=30,
        ),
        FAQEntry(
            id="faq-unrelated",
            question="xyz",
            answer="Never matches.",
            category="misc",
            frequency=99,
        ),
    ]
