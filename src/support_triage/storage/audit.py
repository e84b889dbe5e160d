from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from threading import Lock
from typing import Any, Awaitable, Dict, List, Optional, Protocol

from starlette.concurrency import run_in_threadpool

from support_triage.models import AuditLogEntry, AuditStatus, TokenUsage

logger = logging.getLogger(__name__)

# USD per 1K tokens.
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    "gpt-4": {"input": 0.03, "output": 0.06},
    "gpt-3.5-turbo": {"input": 0.0015, "output": 0.002},
    "gpt-4-turbo-preview": {"input": 0.01, "output": 0.03},
    "gpt-4o-mini": {"input": 0.01, "output": 0.03},
}


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Cost of one call; unknown models are reported as free rather than guessed."""
    pricing = MODEL_PRICING.get(model)
    if not pricing:
        return 0.0
    return (input_tokens / 1000) * pricing["input"] + (output_tokens / 1000) * pricing["output"]


def entry_to_dict(entry: AuditLogEntry) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "username": entry.username,
        "functionName": entry.function_name,
        "timestamp": entry.timestamp.isoformat(),
        "inputTokens": entry.input_tokens,
        "outputTokens": entry.output_tokens,
        "totalTokens": entry.total_tokens,
        "status": entry.status.value,
        "model": entry.model,
        "cost": calculate_cost(entry.model, entry.input_tokens, entry.output_tokens),
    }
    if entry.error:
        payload["error"] = entry.error
    return payload


class AuditSink(Protocol):
    def append(self, entry: AuditLogEntry) -> Awaitable[None]: ...


class InMemoryAuditSink:
    def __init__(self) -> None:
        self._lock = Lock()
        self._entries: List[AuditLogEntry] = []

    async def append(self, entry: AuditLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def entries(self) -> List[AuditLogEntry]:
        # Return a copy to avoid mutation by callers.
        with self._lock:
            return list(self._entries)


class JsonlAuditSink:
    """Appends one JSON line per entry. Each line is written with a single write call."""

    def __init__(self, path: Path):
        self._path = path
        self._lock = Lock()

    def _write(self, line: str) -> None:
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as fh:
                fh.write(line)

    async def append(self, entry: AuditLogEntry) -> None:
        line = json.dumps(entry_to_dict(entry), ensure_ascii=True) + "\n"
        await run_in_threadpool(self._write, line)

    def read_all(self) -> List[Dict[str, Any]]:
        if not self._path.exists():
            return []
        lines = self._path.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines if line.strip()]


class AuditLog:
    """
    Records one entry per LLM invocation.

    Sink failures are logged and swallowed: losing an audit line must never
    fail the triage run that produced it.
    """

    def __init__(self, sink: AuditSink, username: str = "unknown"):
        self._sink = sink
        self._username = username

    async def record(
        self,
        *,
        function_name: str,
        model: str,
        status: AuditStatus,
        usage: Optional[TokenUsage] = None,
        error: Optional[str] = None,
    ) -> Optional[AuditLogEntry]:
        usage = usage or TokenUsage()
        entry = AuditLogEntry(
            username=self._username,
            function_name=function_name,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            status=status,
            model=model,
            error=error,
        )
        try:
            # Shielded: a cancelled run still finishes the write it started.
            await asyncio.shield(self._sink.append(entry))
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Error saving AI API log for %s", function_name)
            return None
        logger.debug("AI API log saved for %s (%s)", function_name, status.value)
        return entry

    async def success(self, function_name: str, model: str, usage: TokenUsage) -> Optional[AuditLogEntry]:
        return await self.record(
            function_name=function_name, model=model, status=AuditStatus.SUCCESS, usage=usage
        )

    async def failure(self, function_name: str, model: str, error: str) -> Optional[AuditLogEntry]:
        # No token counts are available for failed calls.
        return await self.record(
            function_name=function_name, model=model, status=AuditStatus.FAILED, error=error
        )
