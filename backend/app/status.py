from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from threading import Lock
from time import time
from typing import Any, Deque, Dict, Optional

# Rolling windows shown by the status endpoint.
MAX_RECENT = 50


def _window() -> Deque[Dict[str, Any]]:
    return deque(maxlen=MAX_RECENT)


@dataclass
class RunStatus:
    state: str = "idle"
    step: str = "idle"
    detail: Optional[str] = None
    metrics: Dict[str, Any] = field(default_factory=dict)
    summary: Optional[Dict[str, Any]] = None
    # Newest first.
    recent_outcomes: Deque[Dict[str, Any]] = field(default_factory=_window)
    recent_errors: Deque[Dict[str, Any]] = field(default_factory=_window)
    runs_started: int = 0
    updated_at: float = field(default_factory=time)


class RunStatusStore:
    """Shared progress of the current triage run, polled by GET /run/status."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._status = RunStatus()

    def start(self) -> None:
        # Outcomes of the previous run stay visible; only the live fields reset.
        with self._lock:
            self._status.state = "running"
            self._status.step = "starting"
            self._status.detail = "Starting run"
            self._status.metrics = {}
            self._status.summary = None
            self._status.runs_started += 1
            self._status.updated_at = time()

    def update(self, **fields: Any) -> None:
        with self._lock:
            for key, value in fields.items():
                if key in ("recent_outcomes", "recent_errors") or not hasattr(self._status, key):
                    continue
                setattr(self._status, key, value)
            self._status.updated_at = time()

    def push_outcome(self, outcome: Dict[str, Any]) -> None:
        with self._lock:
            self._status.recent_outcomes.appendleft(outcome)
            if outcome.get("error"):
                self._status.recent_errors.appendleft(outcome)
            self._status.updated_at = time()

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "state": self._status.state,
                "step": self._status.step,
                "detail": self._status.detail,
                "metrics": dict(self._status.metrics),
                "summary": self._status.summary,
                "recent_outcomes": list(self._status.recent_outcomes),
                "recent_errors": list(self._status.recent_errors),
                "runs_started": self._status.runs_started,
                "updated_at": self._status.updated_at,
            }


run_status_store = RunStatusStore()
