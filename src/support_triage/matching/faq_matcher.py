from __future__ import annotations

import re
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional, Sequence, Tuple

from support_triage.matching.similarity import similarity
from support_triage.models import FAQEntry, MatchCandidate, NormalizedEmail

DEFAULT_SIMILARITY_FLOOR = 0.15
DEFAULT_TOP_K = 3
DEFAULT_MAX_QUERY_CHARS = 500
DEFAULT_KEYWORD_WEIGHT = 0.0

# Subject words count more than body words in the keyword overlap.
SUBJECT_WEIGHT = 0.6
BODY_WEIGHT = 0.4

_NON_WORD = re.compile(r"[^\w\s]")


def _words(text: str) -> FrozenSet[str]:
    return frozenset(_NON_WORD.sub("", text.lower()).split())


def _overlap(words: FrozenSet[str], question_words: FrozenSet[str]) -> float:
    size = max(len(words), len(question_words))
    if not size:
        return 0.0
    return len(words & question_words) / size


def keyword_overlap(subject: str, body: str, question: str) -> float:
    """
    Share of words the email has in common with an FAQ question, in [0, 1].

    Punctuation is dropped and case ignored; subject overlap is weighted
    0.6 and body overlap 0.4.
    """
    question_words = _words(question)
    return (
        SUBJECT_WEIGHT * _overlap(_words(subject), question_words)
        + BODY_WEIGHT * _overlap(_words(body), question_words)
    )


def _ranking_key(scored: Tuple[MatchCandidate, float]) -> Tuple[float, float, int, str]:
    # Best score first, then more shared keywords, then the more frequently
    # asked FAQ, then the earlier id.
    candidate, keywords = scored
    return (-candidate.score, -keywords, -candidate.faq_entry.frequency, candidate.faq_entry.id)


@dataclass(frozen=True)
class FAQMatcher:
    """
    Ranks knowledge-base entries against an email by fuzzy similarity.

    `keyword_weight` blends the keyword overlap into the score:
    score = (1 - w) * similarity + w * overlap. With the default of 0 the
    score is plain similarity and the overlap only breaks ties.
    """

    similarity_floor: float = DEFAULT_SIMILARITY_FLOOR
    top_k: int = DEFAULT_TOP_K
    max_query_chars: int = DEFAULT_MAX_QUERY_CHARS
    keyword_weight: float = DEFAULT_KEYWORD_WEIGHT

    def __post_init__(self) -> None:
        if not 0.0 <= self.keyword_weight <= 1.0:
            raise ValueError(f"keyword_weight must be within [0, 1], got {self.keyword_weight}")

    def query_text(self, email: NormalizedEmail) -> str:
        return f"{email.subject} {email.body}"[: self.max_query_chars]

    def score(self, email: NormalizedEmail, faq: FAQEntry) -> Tuple[float, float]:
        """(score, keyword overlap) of one FAQ for the email."""
        base = similarity(self.query_text(email), faq.question)
        keywords = keyword_overlap(email.subject, email.body[: self.max_query_chars], faq.question)
        if not self.keyword_weight:
            return base, keywords
        return (1.0 - self.keyword_weight) * base + self.keyword_weight * keywords, keywords

    def match(
        self,
        email: NormalizedEmail,
        knowledge_base: Sequence[FAQEntry],
        top_k: Optional[int] = None,
        categories: Optional[Iterable[str]] = None,
    ) -> Tuple[MatchCandidate, ...]:
        """
        Score every FAQ question against the email text.

        Entries below the floor are dropped. The rest are ordered by score,
        ties by keyword overlap, frequency then id, and cut to top_k. The
        knowledge base is only read.
        """
        limit = self.top_k if top_k is None else top_k
        if limit <= 0:
            return ()

        wanted = {c.lower() for c in categories} if categories is not None else None

        scored = []
        for faq in knowledge_base:
            if wanted is not None and faq.category.lower() not in wanted:
                continue
            value, keywords = self.score(email, faq)
            if value < self.similarity_floor:
                continue
            scored.append((MatchCandidate(faq_entry=faq, score=value), keywords))

        scored.sort(key=_ranking_key)
        return tuple(candidate for candidate, _ in scored[:limit])
