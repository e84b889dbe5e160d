from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from support_triage.errors import DraftingError
from support_triage.llm.completion import CompletionRequest, CompletionService
from support_triage.models import MatchCandidate, NormalizedEmail, TokenUsage
from support_triage.resilience.retry import MAX_RETRIES, RETRY_DELAY_MS, call_with_retry
from support_triage.storage.audit import AuditLog

logger = logging.getLogger(__name__)

FUNCTION_NAME = "generate-reply"

MAX_THREAD_EXCERPT_CHARS = 500

SYSTEM_PROMPT = (
    "You are an experienced customer support agent who writes clear, "
    "helpful, and empathetic responses."
)


@dataclass(frozen=True)
class ReplyFormatting:
    greeting: str = "Hi there"
    signature: str = "Sincerely, Our Team"
    custom_prompt: str = "Please keep responses friendly and human sounding."


@dataclass(frozen=True)
class DraftResult:
    reply: str
    usage: TokenUsage


def _excerpt(text: str) -> str:
    text = " ".join(text.split())
    if len(text) <= MAX_THREAD_EXCERPT_CHARS:
        return text
    return text[:MAX_THREAD_EXCERPT_CHARS] + "..."


def build_prompt(
    email: NormalizedEmail,
    matches: Sequence[MatchCandidate],
    formatting: ReplyFormatting,
    thread: Sequence[NormalizedEmail] = (),
) -> str:
    top = matches[0].faq_entry
    lines = [
        "You are a helpful customer support agent. Generate a professional and empathetic email reply.",
        "",
        "Context:",
        f'- Original Email Subject: "{email.subject}"',
        f'- Original Email Content: "{email.body}"',
        f'- Main Question Matched: "{top.question}"',
        f'- Answer to Main Question: "{top.answer}"',
    ]
    related = [m.faq_entry for m in matches[1:]]
    if related:
        pairs = " | ".join(f'Q: "{faq.question}" A: "{faq.answer}"' for faq in related)
        lines.append(f"- Related FAQ Answers: {pairs}")
    if thread:
        lines.append("- Earlier messages in this thread (oldest first):")
        for number, earlier in enumerate(thread, start=1):
            lines.append(f'  {number}. From {earlier.sender}: "{_excerpt(earlier.body)}"')

    lines += [
        "",
        "Email Formatting Guidelines:",
        f'- Use this greeting style: "{formatting.greeting}"',
        f'- Use this signature style: "{formatting.signature}"',
        f"- Additional formatting instructions: {formatting.custom_prompt}",
        "",
        "Instructions:",
        "1. Start with a greeting using the provided greeting style",
        "2. Acknowledge their specific concern/question",
        "3. Provide a clear, comprehensive answer that incorporates the matched FAQ answer",
        "4. Add any necessary context or related information from the other matched FAQs",
        "5. End professionally with the provided signature style",
        "",
        "Generate the email reply:",
    ]
    return "\n".join(lines)


class ReplyDrafter:
    """Drafts a reply from the best FAQ matches. One completion call per draft."""

    def __init__(
        self,
        completion: CompletionService,
        audit: AuditLog,
        *,
        formatting: ReplyFormatting = ReplyFormatting(),
        temperature: float = 0.7,
        max_retries: int = MAX_RETRIES,
        initial_delay_ms: int = RETRY_DELAY_MS,
    ):
        self._completion = completion
        self._audit = audit
        self._formatting = formatting
        self._temperature = temperature
        self._max_retries = max_retries
        self._initial_delay_ms = initial_delay_ms

    async def draft(
        self,
        email: NormalizedEmail,
        matches: Sequence[MatchCandidate],
        thread: Sequence[NormalizedEmail] = (),
    ) -> DraftResult:
        """Draft a reply; `thread` holds earlier messages of the conversation, oldest first."""
        if not matches:
            raise DraftingError("No matched FAQ to draft a reply from", {"email_id": email.id})

        request = CompletionRequest(
            system_prompt=SYSTEM_PROMPT,
            user_prompt=build_prompt(email, matches, self._formatting, thread),
            temperature=self._temperature,
            max_tokens=1000,
        )
        model = self._completion.model
        try:
            completion = await call_with_retry(
                lambda: self._completion.complete(request),
                max_retries=self._max_retries,
                initial_delay_ms=self._initial_delay_ms,
            )
            reply = completion.text.strip()
            if not reply:
                raise DraftingError("Failed to generate reply: empty completion", {"email_id": email.id})
        except Exception as exc:
            logger.error("Error generating reply for %s: %s", email.id, exc)
            await self._audit.failure(FUNCTION_NAME, model, str(exc))
            raise

        await self._audit.success(FUNCTION_NAME, completion.model, completion.usage)
        return DraftResult(reply=reply, usage=completion.usage)
