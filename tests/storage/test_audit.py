from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List

import pytest

from support_triage.models import AuditLogEntry, AuditStatus, TokenUsage
from support_triage.storage.audit import AuditLog, InMemoryAuditSink, JsonlAuditSink, calculate_cost


class BrokenSink:
    async def append(self, entry: AuditLogEntry) -> None:
        raise OSError("disk full")


def test_calculate_cost_uses_per_thousand_pricing() -> None:
    assert calculate_cost("gpt-4", 1000, 500) == pytest.approx(0.03 + 0.03)
    assert calculate_cost("some-new-model", 1000, 1000) == 0.0


def test_jsonl_sink_writes_one_line_per_entry(tmp_path: Path) -> None:
    path = tmp_path / "logs" / "ai_api_logs.jsonl"
    sink = JsonlAuditSink(path)
    audit = AuditLog(sink, username="agent@example.com")

    async def main() -> None:
        await audit.success("classify-email", "gpt-4o-mini", TokenUsage(input_tokens=100, output_tokens=20))
        await audit.failure("generate-reply", "gpt-4o-mini", "HTTP 500")

    asyncio.run(main())
    rows = sink.read_all()

    assert len(path.read_text(encoding="utf-8").splitlines()) == 2
    assert rows[0]["functionName"] == "classify-email"
    assert rows[0]["totalTokens"] == 120
    assert rows[0]["status"] == "success"
    assert rows[0]["username"] == "agent@example.com"
    assert "error" not in rows[0]
    assert rows[1]["status"] == "failed"
    assert rows[1]["error"] == "HTTP 500"
    assert rows[1]["inputTokens"] == 0


def test_concurrent_appends_keep_lines_intact(tmp_path: Path) -> None:
    sink = JsonlAuditSink(tmp_path / "audit.jsonl")
    audit = AuditLog(sink)

    async def main() -> None:
        await asyncio.gather(
            *(audit.success(f"fn-{i}", "gpt-4", TokenUsage(i, i)) for i in range(20))
        )

    asyncio.run(main())
    names: List[str] = sorted(row["functionName"] for row in sink.read_all())

    assert names == sorted(f"fn-{i}" for i in range(20))


def test_sink_failure_is_swallowed() -> None:
    audit = AuditLog(BrokenSink())

    entry = asyncio.run(audit.failure("classify-email", "gpt-4o-mini", "timeout"))

    assert entry is None


def test_record_returns_entry_with_status() -> None:
    sink = InMemoryAuditSink()
    entry = asyncio.run(AuditLog(sink, "u").success("generate-reply", "gpt-4", TokenUsage(3, 4)))

    assert entry is not None
    assert entry.status == AuditStatus.SUCCESS
    assert entry.total_tokens == 7
    assert sink.entries() == [entry]


class SlowSink:
    def __init__(self) -> None:
        self.entries: List[AuditLogEntry] = []

    async def append(self, entry: AuditLogEntry) -> None:
        await asyncio.sleep(0.02)
        self.entries.append(entry)


def test_cancelled_record_still_writes_exactly_one_entry() -> None:
    sink = SlowSink()
    audit = AuditLog(sink, "u")

    async def main() -> None:
        task = asyncio.create_task(audit.success("classify-email", "gpt-4o-mini", TokenUsage(1, 1)))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.05)

    asyncio.run(main())

    assert len(sink.entries) == 1
    assert sink.entries[0].function_name == "classify-email"
