from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict

from support_triage.app.run import run_once
from support_triage.config import paths
from support_triage.config.settings import TriageSettings


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Triage new support emails once.")
    parser.add_argument("--bootstrap-days", type=positive_int, default=7, help="Days to scan on the first run.")
    parser.add_argument("--max-results", type=positive_int, default=100, help="Maximum messages per run.")
    parser.add_argument("--knowledge-base", type=Path, default=paths.KNOWLEDGE_BASE_PATH)
    parser.add_argument("--state", type=Path, default=paths.STATE_PATH)
    parser.add_argument("--concurrency", type=positive_int, default=None, help="Overrides TRIAGE_CONCURRENCY.")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def describe(outcome: Dict[str, Any]) -> str:
    if outcome.get("error"):
        return "error"
    if outcome.get("skipped"):
        return "seen"
    return "draft" if outcome.get("draft_reply") else "skip"


def main() -> None:
    args = build_parser().parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = TriageSettings.from_env()
    if args.concurrency is not None:
        settings = replace(settings, concurrency=args.concurrency)

    def progress(step: str, event: Dict[str, Any]) -> None:
        outcome = event.get("outcome")
        if outcome:
            print(f"[{describe(outcome)}] {outcome.get('subject', '')} <{outcome.get('from', '')}>")

    summary = asyncio.run(
        run_once(
            settings=settings,
            state_path=args.state,
            knowledge_base_path=args.knowledge_base,
            bootstrap_days=args.bootstrap_days,
            max_results=args.max_results,
            progress_cb=progress,
        )
    )
    print(json.dumps(summary, indent=2))


if __name__ == "__main__":
    main()
