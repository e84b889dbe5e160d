# src/support_triage/app/run.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from support_triage.auth.google import token_manager_from_file
from support_triage.classification.classifier import SupportClassifier
from support_triage.config import paths
from support_triage.config.settings import TriageSettings
from support_triage.drafting.drafter import ReplyDrafter, ReplyFormatting
from support_triage.errors import TriageFailedError
from support_triage.gmail.client import GmailClient, GmailClientConfig
from support_triage.llm.completion import CompletionService, OpenAICompletionService
from support_triage.matching.faq_matcher import FAQMatcher
from support_triage.models import FAQEntry, NormalizedEmail, TriageResult
from support_triage.parsing.normalizer import normalize
from support_triage.pipeline.orchestrator import ThreadProvider, TriagePipeline
from support_triage.storage.audit import AuditLog, JsonlAuditSink
from support_triage.storage.knowledge_base import load_knowledge_base
from support_triage.storage.state import load_state, save_state

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, Dict[str, Any]], None]


@dataclass
class RunSummary:
    processed: int
    support: int
    drafted: int
    failed: int
    errors: int
    skipped: int
    latest_internal_date_ms: Optional[int]
    message_ids_seen: int
    input_tokens: int
    output_tokens: int


@dataclass(frozen=True)
class TriageOutcome:
    message_id: str
    email: Optional[NormalizedEmail] = None
    result: Optional[TriageResult] = None
    error: Optional[str] = None
    # Already covered by the cursor; never sent through the pipeline.
    skipped: bool = False


def _bootstrap_query(days: int) -> str:
    # Exclude drafts and own-sent messages from triage runs.
    return f"newer_than:{days}d -in:drafts -from:me"


def _incremental_query(last_internal_date_ms: int) -> str:
    # Gmail "after:" expects seconds since epoch, not milliseconds.
    epoch_seconds = max(0, int(last_internal_date_ms / 1000))
    return f"after:{epoch_seconds} -in:drafts -from:me"


def build_pipeline(
    settings: TriageSettings,
    completion: CompletionService,
    audit: AuditLog,
    knowledge_base: Sequence[FAQEntry],
    thread_provider: Optional[ThreadProvider] = None,
) -> TriagePipeline:
    classifier = SupportClassifier(
        completion,
        audit,
        temperature=settings.classification_temperature,
        max_retries=settings.max_retries,
        initial_delay_ms=settings.initial_delay_ms,
    )
    matcher = FAQMatcher(
        similarity_floor=settings.similarity_floor,
        top_k=settings.top_k,
        max_query_chars=settings.max_query_chars,
        keyword_weight=settings.keyword_weight,
    )
    drafter = ReplyDrafter(
        completion,
        audit,
        formatting=ReplyFormatting(greeting=settings.greeting, signature=settings.signature),
        temperature=settings.draft_temperature,
        max_retries=settings.max_retries,
        initial_delay_ms=settings.initial_delay_ms,
    )
    return TriagePipeline(classifier, matcher, drafter, knowledge_base, thread_provider)


async def triage_messages(
    pipeline: TriagePipeline,
    client: GmailClient,
    message_ids: Sequence[str],
    *,
    concurrency: int,
    on_outcome: Optional[Callable[[TriageOutcome], None]] = None,
    is_due: Optional[Callable[[NormalizedEmail], bool]] = None,
) -> List[TriageOutcome]:
    """
    Run the full pipeline for every message, at most `concurrency` at a time.

    Each message is settled (result, skip or error) before this returns; one
    failing email never stops the others. Emails for which `is_due` returns
    False are fetched but never classified or drafted.
    """
    semaphore = asyncio.Semaphore(concurrency)

    async def one(message_id: str) -> TriageOutcome:
        async with semaphore:
            email: Optional[NormalizedEmail] = None
            try:
                email = normalize(await client.get_message(message_id))
                if is_due is not None and not is_due(email):
                    outcome = TriageOutcome(message_id=message_id, email=email, skipped=True)
                    if on_outcome:
                        on_outcome(outcome)
                    return outcome
                result = await pipeline.run_email(email)
                outcome = TriageOutcome(message_id=message_id, email=email, result=result)
            except TriageFailedError as exc:
                outcome = TriageOutcome(
                    message_id=message_id, email=email, result=exc.partial, error=str(exc)
                )
            except Exception as exc:
                logger.error("Triage of %s failed: %s: %s", message_id, type(exc).__name__, exc)
                outcome = TriageOutcome(
                    message_id=message_id, email=email, error=f"{type(exc).__name__}: {exc}"
                )
        if on_outcome:
            on_outcome(outcome)
        return outcome

    return list(await asyncio.gather(*(one(mid) for mid in message_ids)))


async def scan_mailbox(
    *,
    pipeline: TriagePipeline,
    client: GmailClient,
    state_path: Path,
    settings: TriageSettings,
    bootstrap_days: int = 7,
    max_results: int = 100,
    progress_cb: Optional[ProgressCallback] = None,
) -> Dict[str, Any]:
    """
    Triage new mailbox messages once and return a machine-readable summary.

    The first run looks back `bootstrap_days`; later runs continue from the
    persisted cursor so each message is triaged once.
    """

    def report(step: str, *, detail: str | None = None, **extra: Any) -> None:
        if not progress_cb:
            return
        payload: Dict[str, Any] = {"detail": detail}
        payload.update(extra)
        progress_cb(step, payload)

    report("load_state", detail="Loading state")
    st = load_state(state_path)
    already_triaged = set(st.last_message_ids_at_latest_ts or [])

    report("fetch_messages", detail="Fetching messages")
    if st.last_internal_date_ms is None:
        logger.info("No cursor yet, scanning the last %d days", bootstrap_days)
        query = _bootstrap_query(bootstrap_days)
    else:
        query = _incremental_query(st.last_internal_date_ms)
    message_ids = await client.list_messages(query=query, max_results=max_results)
    message_ids = [mid for mid in message_ids if mid not in already_triaged]
    logger.info("Found %d messages to triage", len(message_ids))

    cursor_ms = st.last_internal_date_ms

    def is_due(email: NormalizedEmail) -> bool:
        # Gmail's after: filter has second granularity, so older mail from the
        # cursor's second comes back and has to be dropped here.
        return cursor_ms is None or email.received_at >= cursor_ms

    counts = {"processed": 0, "support": 0, "drafted": 0, "failed": 0, "errors": 0, "skipped": 0}

    def on_outcome(outcome: TriageOutcome) -> None:
        if outcome.skipped:
            counts["skipped"] += 1
        elif outcome.result is not None and outcome.error is None:
            counts["processed"] += 1
            counts["support"] += int(outcome.result.classification.is_support)
            counts["drafted"] += int(outcome.result.draft_reply is not None)
        elif outcome.result is not None:
            counts["failed"] += 1
        else:
            counts["errors"] += 1
        settled = counts["processed"] + counts["failed"] + counts["errors"] + counts["skipped"]
        report(
            "triage",
            detail=f"Triaged {settled}/{len(message_ids)}",
            metrics=dict(counts),
            outcome=_outcome_payload(outcome),
        )

    outcomes = await triage_messages(
        pipeline,
        client,
        message_ids,
        concurrency=settings.concurrency,
        on_outcome=on_outcome,
        is_due=is_due,
    )

    latest_ts: Optional[int] = None
    latest_ids_at_ts: set[str] = set()
    input_tokens = 0
    output_tokens = 0
    for outcome in outcomes:
        if outcome.result is not None:
            input_tokens += outcome.result.usage.input_tokens
            output_tokens += outcome.result.usage.output_tokens
        # Errored messages do not advance the cursor; skipped ones are already behind it.
        if outcome.email is None or outcome.error is not None or outcome.skipped:
            continue
        ts = outcome.email.received_at
        if latest_ts is None or ts > latest_ts:
            latest_ts = ts
            latest_ids_at_ts = {outcome.message_id}
        elif ts == latest_ts:
            latest_ids_at_ts.add(outcome.message_id)

    report("save_state", detail="Saving state")
    if latest_ts is not None:
        if cursor_ms is None or latest_ts > cursor_ms:
            st.last_internal_date_ms = latest_ts
            st.last_message_ids_at_latest_ts = sorted(latest_ids_at_ts)
        elif latest_ts == cursor_ms:
            st.last_message_ids_at_latest_ts = sorted(latest_ids_at_ts | already_triaged)
    st.runs += 1
    st.triaged_total += counts["processed"]
    st.drafted_total += counts["drafted"]
    save_state(state_path, st)

    summary = RunSummary(
        processed=counts["processed"],
        support=counts["support"],
        drafted=counts["drafted"],
        failed=counts["failed"],
        errors=counts["errors"],
        skipped=counts["skipped"],
        latest_internal_date_ms=st.last_internal_date_ms,
        message_ids_seen=len(message_ids),
        input_tokens=input_tokens,
        output_tokens=output_tokens,
    )
    report("done", detail="Run completed", metrics=asdict(summary))
    return asdict(summary)


def _outcome_payload(outcome: TriageOutcome) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"message_id": outcome.message_id}
    if outcome.email is not None:
        payload["from"] = outcome.email.sender
        payload["subject"] = outcome.email.subject
    if outcome.skipped:
        payload["skipped"] = True
    if outcome.result is not None:
        payload["is_support"] = outcome.result.classification.is_support
        payload["matches"] = [
            {"faq_id": m.faq_entry.id, "question": m.faq_entry.question, "score": round(m.score, 4)}
            for m in outcome.result.matches
        ]
        payload["draft_reply"] = outcome.result.draft_reply
    if outcome.error:
        payload["error"] = outcome.error
    return payload


async def run_once(
    *,
    settings: Optional[TriageSettings] = None,
    state_path: Path = paths.STATE_PATH,
    token_path: Path = paths.TOKEN_PATH,
    knowledge_base_path: Path = paths.KNOWLEDGE_BASE_PATH,
    audit_log_path: Path = paths.AUDIT_LOG_PATH,
    bootstrap_days: int = 7,
    max_results: int = 100,
    progress_cb: Optional[ProgressCallback] = None,
) -> Dict[str, Any]:
    """Wire the production collaborators from configuration and scan once."""
    settings = settings or TriageSettings.from_env()

    knowledge_base = load_knowledge_base(knowledge_base_path)
    tokens = token_manager_from_file(token_path, refresh_skew_seconds=settings.refresh_skew_seconds)
    client = GmailClient(
        tokens,
        GmailClientConfig(max_retries=settings.max_retries, initial_delay_ms=settings.initial_delay_ms),
    )
    completion = OpenAICompletionService(api_key=settings.openai_api_key, model=settings.model)
    audit = AuditLog(JsonlAuditSink(audit_log_path), username=settings.username)
    pipeline = build_pipeline(settings, completion, audit, knowledge_base, thread_provider=client)

    return await scan_mailbox(
        pipeline=pipeline,
        client=client,
        state_path=state_path,
        settings=settings,
        bootstrap_days=bootstrap_days,
        max_results=max_results,
        progress_cb=progress_cb,
    )
