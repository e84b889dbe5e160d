from __future__ import annotations
import json
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Optional

@dataclass
class ScanState:
    last_internal_date_ms: Optional[int] = None
    # Message IDs already triaged at the latest timestamp (same-second dedupe cursor).
    last_message_ids_at_latest_ts: list[str] = field(default_factory=list)
    runs: int = 0
    triaged_total: int = 0
    drafted_total: int = 0

def load_state(path: Path) -> ScanState:
    if not path.exists():
        return ScanState()
    data = json.loads(path.read_text(encoding="utf-8"))
    # Keep load resilient to missing/extra fields.
    return ScanState(
        last_internal_date_ms=data.get("last_internal_date_ms"),
        last_message_ids_at_latest_ts=list(data.get("last_message_ids_at_latest_ts") or []),
        runs=int(data.get("runs") or 0),
        triaged_total=int(data.get("triaged_total") or 0),
        drafted_total=int(data.get("drafted_total") or 0),
    )

def save_state(path: Path, state: ScanState) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(state), indent=2), encoding="utf-8")
