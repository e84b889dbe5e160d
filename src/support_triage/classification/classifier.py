from __future__ import annotations

import json
import logging
from typing import Annotated, Tuple

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError

from support_triage.errors import MalformedResponseError
from support_triage.llm.completion import SERVICE_NAME, Completion, CompletionRequest, CompletionService
from support_triage.models import ClassificationResult, NormalizedEmail, TokenUsage
from support_triage.parsing.normalizer import is_placeholder_body, is_placeholder_subject
from support_triage.resilience.retry import MAX_RETRIES, RETRY_DELAY_MS, call_with_retry
from support_triage.storage.audit import AuditLog

logger = logging.getLogger(__name__)

FUNCTION_NAME = "classify-email"

MAX_SUBJECT_CHARS = 100
MAX_CONTENT_CHARS = 4000

SYSTEM_PROMPT = "You are an expert at analyzing customer emails and determining if they are support requests."

RUBRIC = """Analyze the following email and decide whether it is a customer support request.
A support request asks for help with the product or service: account or billing problems,
errors, how-to questions, refunds, cancellations, shipping or access issues.
Newsletters, marketing, notifications, spam and personal messages are not support requests.

Subject: {subject}
From: {sender}
Body: {body}

Respond with a single JSON object with exactly these keys:
{{
  "isSupport": boolean,
  "confidence": number between 0 and 1,
  "reason": string
}}"""

SUPPORT_KEYWORDS = (
    "help", "support", "issue", "problem", "error", "question",
    "not working", "broken", "failed", "stuck", "can't", "cannot",
    "how to", "how do i", "assistance", "bug", "feature request",
)

NO_CONTENT_RESULT = ClassificationResult(is_support=False, confidence=0.0, reason="no content to analyze")


class ClassificationPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    isSupport: StrictBool
    confidence: Annotated[float, Field(strict=True, ge=0.0, le=1.0)]
    reason: StrictStr


def truncate_content(subject: str, content: str) -> Tuple[str, str]:
    """Keep prompts bounded: short subject, head and tail of long bodies."""
    if len(subject) > MAX_SUBJECT_CHARS:
        subject = subject[:MAX_SUBJECT_CHARS] + "..."

    if len(content) > MAX_CONTENT_CHARS:
        start = content[: int(MAX_CONTENT_CHARS * 0.6)]
        end = content[-int(MAX_CONTENT_CHARS * 0.4):]
        dropped = len(content) - MAX_CONTENT_CHARS
        content = f"{start}\n\n[... {dropped} characters truncated ...]\n\n{end}"
    return subject, content


def support_keywords_in(subject: str, body: str) -> Tuple[str, ...]:
    """Support keywords present in the subject or body, in SUPPORT_KEYWORDS order."""
    text = f"{subject}\n{body}".lower()
    return tuple(keyword for keyword in SUPPORT_KEYWORDS if keyword in text)


def local_signal(email: NormalizedEmail) -> str:
    found = support_keywords_in(email.subject, email.body)
    if not found:
        return "local keyword check: no support keywords"
    return "local keyword check: support keywords found (" + ", ".join(found) + ")"


def parse_classification(text: str) -> ClassificationResult:
    try:
        data = json.loads(text)
    except (TypeError, json.JSONDecodeError) as exc:
        raise MalformedResponseError(SERVICE_NAME, f"Classification is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedResponseError(SERVICE_NAME, "Classification is not a JSON object")
    try:
        payload = ClassificationPayload.model_validate(data)
    except ValidationError as exc:
        raise MalformedResponseError(
            SERVICE_NAME, f"Classification has an unexpected shape: {exc.error_count()} error(s)"
        ) from exc
    return ClassificationResult(
        is_support=payload.isSupport,
        confidence=float(payload.confidence),
        reason=payload.reason,
    )


class SupportClassifier:
    """
    Gate deciding whether an email is a support request.

    Never raises: any failure degrades to "not support" with confidence 0,
    so a broken completion service can only make the pipeline do less.
    """

    def __init__(
        self,
        completion: CompletionService,
        audit: AuditLog,
        *,
        temperature: float = 0.1,
        max_retries: int = MAX_RETRIES,
        initial_delay_ms: int = RETRY_DELAY_MS,
    ):
        self._completion = completion
        self._audit = audit
        self._temperature = temperature
        self._max_retries = max_retries
        self._initial_delay_ms = initial_delay_ms

    def build_request(self, email: NormalizedEmail) -> CompletionRequest:
        subject, body = truncate_content(email.subject, email.body)
        return CompletionRequest(
            system_prompt=SYSTEM_PROMPT,
            user_prompt=RUBRIC.format(subject=subject, sender=email.sender, body=body),
            temperature=self._temperature,
            max_tokens=300,
            json_mode=True,
        )

    async def classify(self, email: NormalizedEmail) -> ClassificationResult:
        result, _usage = await self.classify_with_usage(email)
        return result

    async def classify_with_usage(self, email: NormalizedEmail) -> Tuple[ClassificationResult, TokenUsage]:
        if is_placeholder_subject(email.subject) and is_placeholder_body(email.body):
            return NO_CONTENT_RESULT, TokenUsage()

        request = self.build_request(email)
        model = self._completion.model
        try:
            completion: Completion = await call_with_retry(
                lambda: self._completion.complete(request),
                max_retries=self._max_retries,
                initial_delay_ms=self._initial_delay_ms,
            )
        except Exception as exc:
            logger.warning("Classification call failed for %s: %s", email.id, exc)
            await self._audit.failure(FUNCTION_NAME, model, str(exc))
            return self._fallback(f"classification service unavailable: {exc}", email), TokenUsage()

        await self._audit.success(FUNCTION_NAME, completion.model, completion.usage)
        try:
            result = parse_classification(completion.text)
        except MalformedResponseError as exc:
            logger.warning("Unparsable classification for %s: %s", email.id, exc)
            return self._fallback(f"malformed classification response: {exc.message}", email), completion.usage
        return result, completion.usage

    @staticmethod
    def _fallback(reason: str, email: NormalizedEmail) -> ClassificationResult:
        # Stays "not support"; the keyword check only tells the person reading it
        # whether the email looked like a support request.
        return ClassificationResult(is_support=False, confidence=0.0, reason=f"{reason}; {local_signal(email)}")
