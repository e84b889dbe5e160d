from __future__ import annotations

import argparse

import pytest

from scripts.run_once import build_parser, describe, positive_int


def test_positive_int_accepts_counts() -> None:
    assert positive_int("3") == 3


@pytest.mark.parametrize("value", ["0", "-2", "many"])
def test_positive_int_rejects_non_positive_and_non_numeric(value: str) -> None:
    with pytest.raises(argparse.ArgumentTypeError):
        positive_int(value)


def test_zero_concurrency_is_rejected_by_the_parser(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--concurrency", "0"])

    assert "must be >= 1" in capsys.readouterr().err


def test_defaults_leave_concurrency_to_settings() -> None:
    args = build_parser().parse_args([])

    assert args.concurrency is None
    assert args.bootstrap_days == 7
    assert args.max_results == 100


def test_describe_labels_outcomes() -> None:
    assert describe({"error": "boom"}) == "error"
    assert describe({"skipped": True}) == "seen"
    assert describe({"draft_reply": "Hi"}) == "draft"
    assert describe({"draft_reply": None}) == "skip"
