from __future__ import annotations

import json
from pathlib import Path

from support_triage.storage.state import ScanState, load_state, save_state


def test_load_state_defaults_when_file_is_missing(tmp_path: Path) -> None:
    state = load_state(tmp_path / "state.json")

    assert state == ScanState()
    assert state.last_internal_date_ms is None


def test_load_state_tolerates_missing_and_extra_fields(tmp_path: Path) -> None:
    state_path = tmp_path / "state.json"
    state_path.write_text(
        json.dumps(
            {
                "last_internal_date_ms": 123,
                "last_message_ids_at_latest_ts": ["m1"],
                "runs": 2,
                "unknown_field": "ignored",
            }
        ),
        encoding="utf-8",
    )

    state = load_state(state_path)

    assert state.last_internal_date_ms == 123
    assert state.last_message_ids_at_latest_ts == ["m1"]
    assert state.runs == 2
    assert state.triaged_total == 0


def test_save_state_round_trips_counters(tmp_path: Path) -> None:
    state_path = tmp_path / "nested" / "state.json"
    state = ScanState(last_internal_date_ms=5, runs=1, triaged_total=3, drafted_total=2)

    save_state(state_path, state)

    assert load_state(state_path) == state
