from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, TypeVar

# Importing paths loads .env before any variable is read.
from support_triage.config import paths  # noqa: F401
from support_triage.errors import ConfigurationException

T = TypeVar("T")


@dataclass(frozen=True)
class TriageSettings:
    openai_api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    classification_temperature: float = 0.1
    draft_temperature: float = 0.7
    similarity_floor: float = 0.15
    top_k: int = 3
    # Similarity is quadratic, so the email text is cut before matching.
    max_query_chars: int = 500
    # Share of keyword overlap blended into match scores; 0 keeps plain similarity.
    keyword_weight: float = 0.0
    max_retries: int = 3
    initial_delay_ms: int = 1000
    concurrency: int = 4
    refresh_skew_seconds: int = 60
    username: str = "unknown"
    greeting: str = "Hi there"
    signature: str = "Sincerely, Our Team"

    def __post_init__(self) -> None:
        if not 0.0 <= self.similarity_floor <= 1.0:
            raise ConfigurationException("similarity_floor must be within [0, 1]")
        if self.top_k < 1:
            raise ConfigurationException("top_k must be >= 1")
        if self.max_retries < 0:
            raise ConfigurationException("max_retries must be >= 0")
        if self.initial_delay_ms < 0:
            raise ConfigurationException("initial_delay_ms must be >= 0")
        if self.concurrency < 1:
            raise ConfigurationException("concurrency must be >= 1")
        if self.max_query_chars < 1:
            raise ConfigurationException("max_query_chars must be >= 1")
        if not 0.0 <= self.keyword_weight <= 1.0:
            raise ConfigurationException("keyword_weight must be within [0, 1]")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> TriageSettings:
        env = os.environ if env is None else env
        defaults = cls()

        def read(key: str, cast: Callable[[str], T], default: T) -> T:
            raw = env.get(key)
            if raw is None or raw.strip() == "":
                return default
            try:
                return cast(raw.strip())
            except ValueError as exc:
                raise ConfigurationException(f"Invalid value for {key}: {raw!r}") from exc

        return cls(
            openai_api_key=env.get("OPENAI_API_KEY") or None,
            model=read("TRIAGE_MODEL", str, defaults.model),
            classification_temperature=read(
                "TRIAGE_CLASSIFICATION_TEMPERATURE", float, defaults.classification_temperature
            ),
            draft_temperature=read("TRIAGE_DRAFT_TEMPERATURE", float, defaults.draft_temperature),
            similarity_floor=read("TRIAGE_SIMILARITY_FLOOR", float, defaults.similarity_floor),
            top_k=read("TRIAGE_TOP_K", int, defaults.top_k),
            max_query_chars=read("TRIAGE_MAX_QUERY_CHARS", int, defaults.max_query_chars),
            keyword_weight=read("TRIAGE_KEYWORD_WEIGHT", float, defaults.keyword_weight),
            max_retries=read("TRIAGE_MAX_RETRIES", int, defaults.max_retries),
            initial_delay_ms=read("TRIAGE_INITIAL_DELAY_MS", int, defaults.initial_delay_ms),
            concurrency=read("TRIAGE_CONCURRENCY", int, defaults.concurrency),
            refresh_skew_seconds=read(
                "TRIAGE_REFRESH_SKEW_SECONDS", int, defaults.refresh_skew_seconds
            ),
            username=read("TRIAGE_USERNAME", str, defaults.username),
            greeting=read("TRIAGE_REPLY_GREETING", str, defaults.greeting),
            signature=read("TRIAGE_REPLY_SIGNATURE", str, defaults.signature),
        )
