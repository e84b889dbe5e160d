from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Tuple

from support_triage.errors import ConfigurationException
from support_triage.models import FAQEntry


def _entry_from_dict(data: Dict[str, Any], index: int) -> FAQEntry:
    question = str(data.get("question") or "").strip()
    if not question:
        raise ConfigurationException(f"FAQ #{index} has no question")
    # Older exports store the answer as replyTemplate and the use count as useCount.
    answer = data.get("answer") or data.get("replyTemplate") or ""
    raw_frequency = data.get("frequency", data.get("useCount", 0))
    try:
        frequency = int(raw_frequency or 0)
    except (TypeError, ValueError) as exc:
        raise ConfigurationException(f"FAQ #{index} has a non-numeric frequency: {raw_frequency!r}") from exc
    return FAQEntry(
        id=str(data.get("id") or f"faq-{index}"),
        question=question,
        answer=str(answer),
        category=str(data.get("category") or "general"),
        frequency=max(0, frequency),
    )


def load_knowledge_base(path: Path) -> Tuple[FAQEntry, ...]:
    """Read FAQ entries from a JSON file holding a list (or {"faqs": [...]})."""
    if not path.exists():
        raise ConfigurationException(f"Missing knowledge base at {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationException(f"Knowledge base {path} is not valid JSON: {exc}") from exc

    items: List[Any] = payload.get("faqs", []) if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        raise ConfigurationException(f"Knowledge base {path} must contain a list of FAQs")
    return tuple(
        _entry_from_dict(item, index)
        for index, item in enumerate(items)
        if isinstance(item, dict)
    )
