from __future__ import annotations

import logging
from typing import Any, Awaitable, List, Mapping, Optional, Protocol, Sequence

from support_triage.classification.classifier import SupportClassifier
from support_triage.drafting.drafter import ReplyDrafter
from support_triage.errors import TriageFailedError
from support_triage.matching.faq_matcher import FAQMatcher
from support_triage.models import (
    FAQEntry,
    NormalizedEmail,
    TriageResult,
    TriageStage,
)
from support_triage.parsing.normalizer import normalize, normalize_thread

logger = logging.getLogger(__name__)

# Earlier thread messages passed to the drafter, newest kept.
MAX_THREAD_CONTEXT = 5


class MessageProvider(Protocol):
    def get_message(self, message_id: str) -> Awaitable[Mapping[str, Any]]: ...


class ThreadProvider(Protocol):
    def get_thread(self, thread_id: str) -> Awaitable[Mapping[str, Any]]: ...


def earlier_messages(thread: Sequence[NormalizedEmail], email: NormalizedEmail) -> List[NormalizedEmail]:
    """Messages of `thread` sent before `email`, oldest first."""
    earlier = [
        m
        for m in thread
        if m.id != email.id and (email.received_at == 0 or m.received_at <= email.received_at)
    ]
    return earlier[-MAX_THREAD_CONTEXT:]


class TriagePipeline:
    """
    normalizing -> classifying -> matching -> drafting -> done.

    Non-support emails and emails without a confident FAQ match stop early
    in `done` without a draft. Any failure while drafting ends in `failed`
    and is raised as TriageFailedError with the partial result attached.

    With a thread provider, the earlier messages of the email's thread are
    fetched right before drafting and handed to the drafter as context.
    """

    def __init__(
        self,
        classifier: SupportClassifier,
        matcher: FAQMatcher,
        drafter: ReplyDrafter,
        knowledge_base: Sequence[FAQEntry],
        thread_provider: Optional[ThreadProvider] = None,
    ):
        self._classifier = classifier
        self._matcher = matcher
        self._drafter = drafter
        self._knowledge_base = tuple(knowledge_base)
        self._thread_provider = thread_provider

    async def run(self, raw_message: Mapping[str, Any]) -> TriageResult:
        logger.debug("Stage %s", TriageStage.NORMALIZING.value)
        # Normalization never fails; missing pieces become defaults.
        email = normalize(raw_message)
        return await self.run_email(email)

    async def run_email(self, email: NormalizedEmail) -> TriageResult:
        logger.debug("Stage %s for %s", TriageStage.CLASSIFYING.value, email.id)
        classification, usage = await self._classifier.classify_with_usage(email)
        if not classification.is_support:
            logger.info("Email %s is not a support request: %s", email.id, classification.reason)
            return TriageResult(email=email, classification=classification, usage=usage)

        logger.debug("Stage %s for %s", TriageStage.MATCHING.value, email.id)
        matches = self._matcher.match(email, self._knowledge_base)
        if not matches:
            logger.info("No FAQ cleared the similarity floor for %s", email.id)
            return TriageResult(email=email, classification=classification, usage=usage)

        logger.debug("Stage %s for %s", TriageStage.DRAFTING.value, email.id)
        try:
            thread = await self._thread_context(email)
            drafted = await self._drafter.draft(email, matches, thread)
        except Exception as exc:
            partial = TriageResult(
                email=email,
                classification=classification,
                matches=matches,
                usage=usage,
                stage=TriageStage.FAILED,
            )
            raise TriageFailedError(partial, TriageStage.DRAFTING.value, exc) from exc

        return TriageResult(
            email=email,
            classification=classification,
            matches=matches,
            draft_reply=drafted.reply,
            usage=usage + drafted.usage,
        )

    async def _thread_context(self, email: NormalizedEmail) -> List[NormalizedEmail]:
        if self._thread_provider is None or not email.thread_id:
            return []
        raw_thread = await self._thread_provider.get_thread(email.thread_id)
        return earlier_messages(normalize_thread(raw_thread), email)

    async def triage_message(self, provider: MessageProvider, message_id: str) -> TriageResult:
        raw = await provider.get_message(message_id)
        return await self.run(raw)
