from __future__ import annotations

import asyncio
import json
from typing import Callable

import pytest

from support_triage.classification.classifier import (
    SupportClassifier,
    parse_classification,
    support_keywords_in,
    truncate_content,
)
from support_triage.errors import FatalExternalError, MalformedResponseError, TransientExternalError
from support_triage.models import AuditStatus, NormalizedEmail
from support_triage.storage.audit import AuditLog, InMemoryAuditSink


def _reply(is_support: object = True, confidence: object = 0.9, reason: object = "asks how to reset a password") -> str:
    return json.dumps({"isSupport": is_support, "confidence": confidence, "reason": reason})


def test_support_email_is_classified_and_audited(
    make_completion: Callable, make_email: Callable[..., NormalizedEmail], audit: AuditLog, audit_sink: InMemoryAuditSink
) -> None:
    completion = make_completion([_reply()])
    classifier = SupportClassifier(completion, audit)

    result, usage = asyncio.run(classifier.classify_with_usage(make_email(body="I forgot it.")))

    assert result.is_support is True
    assert result.confidence == pytest.approx(0.9)
    assert result.reason == "asks how to reset a password"
    assert usage.input_tokens == 10 and usage.output_tokens == 5
    [entry] = audit_sink.entries()
    assert entry.function_name == "classify-email"
    assert entry.status == AuditStatus.SUCCESS
    assert entry.username == "agent@example.com"


def test_request_asks_for_json_with_low_temperature(
    make_completion: Callable, make_email: Callable[..., NormalizedEmail], audit: AuditLog
) -> None:
    completion = make_completion([_reply()])

    asyncio.run(SupportClassifier(completion, audit).classify(make_email()))

    [request] = completion.requests
    assert request.json_mode is True
    assert request.temperature == pytest.approx(0.1)
    assert "How do I reset my password" in request.user_prompt
    assert "jane@example.com" in request.user_prompt


def test_empty_email_is_not_sent_to_the_service(
    make_completion: Callable, make_email: Callable[..., NormalizedEmail], audit: AuditLog, audit_sink: InMemoryAuditSink
) -> None:
    completion = make_completion([_reply()])

    result = asyncio.run(
        SupportClassifier(completion, audit).classify(make_email(subject="No Subject", body="No content available"))
    )

    assert result.is_support is False
    assert result.confidence == 0.0
    assert completion.requests == []
    assert audit_sink.entries() == []


@pytest.mark.parametrize(
    "text",
    [
        "definitely support",
        json.dumps(["isSupport", True]),
        _reply(is_support="yes"),
        _reply(confidence=1.5),
        _reply(confidence="0.9"),
        json.dumps({"isSupport": True, "confidence": 0.9}),
    ],
)
def test_malformed_reply_degrades_to_not_support(
    text: str, make_completion: Callable, make_email: Callable[..., NormalizedEmail], audit: AuditLog
) -> None:
    result = asyncio.run(SupportClassifier(make_completion([text]), audit).classify(make_email()))

    assert result.is_support is False
    assert result.confidence == 0.0
    assert "malformed" in result.reason


def test_service_failure_degrades_and_records_failed_audit_entry(
    make_completion: Callable, make_email: Callable[..., NormalizedEmail], audit: AuditLog, audit_sink: InMemoryAuditSink
) -> None:
    completion = make_completion([FatalExternalError("Completion Service", "invalid api key")])

    result, usage = asyncio.run(
        SupportClassifier(completion, audit, max_retries=3).classify_with_usage(make_email())
    )

    assert result.is_support is False
    assert result.confidence == 0.0
    assert usage.total_tokens == 0
    assert len(completion.requests) == 1
    [entry] = audit_sink.entries()
    assert entry.status == AuditStatus.FAILED
    assert "invalid api key" in (entry.error or "")


def test_transient_failure_is_retried(
    make_completion: Callable, make_email: Callable[..., NormalizedEmail], audit: AuditLog
) -> None:
    completion = make_completion([TransientExternalError("Completion Service", "HTTP 503"), _reply()])

    result = asyncio.run(
        SupportClassifier(completion, audit, max_retries=2, initial_delay_ms=0).classify(make_email())
    )

    assert result.is_support is True
    assert len(completion.requests) == 2


def test_parse_classification_accepts_integer_confidence() -> None:
    result = parse_classification(_reply(is_support=False, confidence=1, reason="newsletter"))

    assert result.is_support is False
    assert result.confidence == 1.0


def test_parse_classification_rejects_extra_keys() -> None:
    with pytest.raises(MalformedResponseError):
        parse_classification(json.dumps({"isSupport": True, "confidence": 0.5, "reason": "x", "extra": 1}))


def test_truncate_content_keeps_head_and_tail() -> None:
    body = "H" * 3000 + "T" * 3000

    subject, content = truncate_content("S" * 150, body)

    assert subject == "S" * 100 + "..."
    assert content.startswith("H" * 2400)
    assert content.endswith("T" * 1600)
    assert "[... 2000 characters truncated ...]" in content


def test_fallback_reason_carries_local_keyword_check(
    make_completion: Callable, make_email: Callable[..., NormalizedEmail], audit: AuditLog
) -> None:
    completion = make_completion([FatalExternalError("Completion Service", "HTTP 401")])
    classifier = SupportClassifier(completion, audit, max_retries=0)

    looks_like_support = asyncio.run(classifier.classify(make_email(subject="Need help", body="Checkout is broken")))
    newsletter = asyncio.run(classifier.classify(make_email(subject="Spring sale", body="Twenty percent off")))

    assert looks_like_support.is_support is False
    assert looks_like_support.reason.endswith("local keyword check: support keywords found (help, broken)")
    assert newsletter.is_support is False
    assert newsletter.reason.endswith("local keyword check: no support keywords")


def test_support_keywords_are_matched_case_insensitively() -> None:
    assert support_keywords_in("HOW DO I export?", "It is not working") == ("not working", "how do i")
    assert support_keywords_in("Lunch on Friday", "") == ()
