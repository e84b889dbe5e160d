from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple


class BodyContentType(str, Enum):
    TEXT = "text"
    HTML = "html"


class TriageStage(str, Enum):
    NORMALIZING = "normalizing"
    CLASSIFYING = "classifying"
    MATCHING = "matching"
    DRAFTING = "drafting"
    DONE = "done"
    FAILED = "failed"


class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class NormalizedEmail:
    id: str
    thread_id: str
    subject: str
    sender: str
    # Epoch milliseconds. 0 means the provider did not report a timestamp.
    received_at: int
    body: str
    body_content_type: BodyContentType = BodyContentType.TEXT


@dataclass(frozen=True)
class FAQEntry:
    id: str
    question: str
    answer: str
    category: str = "general"
    frequency: int = 0

    def __post_init__(self) -> None:
        if self.frequency < 0:
            raise ValueError(f"FAQ frequency must be >= 0, got {self.frequency}")


@dataclass(frozen=True)
class MatchCandidate:
    faq_entry: FAQEntry
    score: float


@dataclass(frozen=True)
class ClassificationResult:
    is_support: bool
    confidence: float
    reason: str


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )


@dataclass(frozen=True)
class TriageResult:
    email: NormalizedEmail
    classification: ClassificationResult
    matches: Tuple[MatchCandidate, ...] = ()
    draft_reply: Optional[str] = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    stage: TriageStage = TriageStage.DONE


@dataclass(frozen=True)
class Credential:
    access_token: str
    refresh_token: Optional[str]
    # Timezone-aware UTC. None means the provider did not say.
    expiry: Optional[datetime] = None

    def expires_within(self, seconds: float, now: Optional[datetime] = None) -> bool:
        if self.expiry is None:
            return False
        now = now or datetime.now(timezone.utc)
        return (self.expiry - now).total_seconds() <= seconds


@dataclass(frozen=True)
class AuditLogEntry:
    username: str
    function_name: str
    input_tokens: int
    output_tokens: int
    status: AuditStatus
    model: str
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens
