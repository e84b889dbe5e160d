from __future__ import annotations

import json
from pathlib import Path

import pytest

from support_triage.errors import ConfigurationException
from support_triage.storage.knowledge_base import load_knowledge_base


def test_load_knowledge_base_reads_list_and_legacy_keys(tmp_path: Path) -> None:
    path = tmp_path / "faqs.json"
    path.write_text(
        json.dumps(
            [
                {"id": "a", "question": "How do I cancel?", "answer": "From settings.", "category": "billing", "frequency": 4},
                {"question": "Where is my order?", "replyTemplate": "Check tracking.", "useCount": 7},
            ]
        ),
        encoding="utf-8",
    )

    faqs = load_knowledge_base(path)

    assert [f.id for f in faqs] == ["a", "faq-1"]
    assert faqs[1].answer == "Check tracking."
    assert faqs[1].frequency == 7
    assert faqs[1].category == "general"


def test_load_knowledge_base_accepts_wrapped_object(tmp_path: Path) -> None:
    path = tmp_path / "faqs.json"
    path.write_text(json.dumps({"faqs": [{"id": "x", "question": "Q?", "answer": "A."}]}), encoding="utf-8")

    assert load_knowledge_base(path)[0].question == "Q?"


@pytest.mark.parametrize(
    "content",
    ["{not json", json.dumps([{"answer": "no question"}]), json.dumps({"faqs": "nope"})],
)
def test_invalid_knowledge_base_is_a_configuration_error(tmp_path: Path, content: str) -> None:
    path = tmp_path / "faqs.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigurationException):
        load_knowledge_base(path)


def test_missing_knowledge_base_is_a_configuration_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationException):
        load_knowledge_base(tmp_path / "absent.json")


def test_non_numeric_frequency_is_a_configuration_error(tmp_path: Path) -> None:
    path = tmp_path / "faqs.json"
    path.write_text(json.dumps([{"id": "a", "question": "Q?", "answer": "A.", "frequency": "lots"}]), encoding="utf-8")

    with pytest.raises(ConfigurationException, match="non-numeric frequency"):
        load_knowledge_base(path)
