"""Frequency-based keyword and sentence mining over plain text."""

from __future__ import annotations

import re
from collections import Counter
from typing import Iterable, List, Optional, Sequence, Tuple

from .models import Keyword

__all__ = [
    "STOP_WORDS",
    "BLANK",
    "tokenize",
    "extract_keywords",
    "split_sentences",
    "extract_sentences_with_keywords",
    "keyword_pattern",
    "keywords_in_sentence",
    "capitalize_answer",
]

BLANK = "______"

STOP_WORDS = frozenset(
    """
    the be to of and a in that have i it for not on with he as you do at
    this but his by from they we say her she or an will my one all would
    there their what so up out if about who get which go me when make can
    like time no just him know take people into year your good some could
    them see other than then now look only come its over think also back
    after use two how our work first well way even new want because any
    these give day most us is was are been has had were said did having may
    should does being
    """.split()
)

_NON_WORD = re.compile(r"[^\w\s'-]")
_NUMERIC = re.compile(r"^\d+$")
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")
_INTERROGATIVE = re.compile(r"^(what|which|who|where|when|why|how)\b", re.I)

MIN_SENTENCE_LENGTH = 20


def tokenize(text: str) -> List[str]:
    """Lowercase ``text``, blank out punctuation (keeping ``'`` and ``-``)."""
    return _NON_WORD.sub(" ", text.lower()).split()


def extract_keywords(
    text: Optional[str],
    *,
    min_length: int = 4,
    min_frequency: int = 2,
    max_keywords: int = 20,
    stop_words: Iterable[str] = STOP_WORDS,
) -> List[Keyword]:
    """Rank the salient words of ``text``.

    ``score = frequency * min(len(word) / 10, 1.5)`` so longer, repeated
    words float to the top. Ties keep first-occurrence order.
    """
    if not text or not text.strip():
        return []
    stops = stop_words if isinstance(stop_words, frozenset) else set(stop_words)
    counts: Counter[str] = Counter(
        word
        for word in tokenize(text)
        if len(word) >= min_length
        and word not in stops
        and not _NUMERIC.match(word)
    )
    ranked = [
        Keyword(
            word=word,
            frequency=frequency,
            score=frequency * min(len(word) / 10, 1.5),
        )
        for word, frequency in counts.items()
        if frequency >= min_frequency
    ]
    ranked.sort(key=lambda keyword: keyword.score, reverse=True)
    return ranked[:max_keywords]


def split_sentences(text: str) -> List[str]:
    """Split on ``.``, ``!`` or ``?`` followed by whitespace."""
    return [part.strip() for part in _SENTENCE_BREAK.split(text) if part.strip()]


def _sentence_matches(
    text: Optional[str], keywords: Sequence[str]
) -> List[Tuple[str, List[str]]]:
    if not text or not keywords:
        return []
    keyword_set = {keyword.lower() for keyword in keywords}
    matches: List[Tuple[str, List[str]]] = []
    for sentence in split_sentences(text):
        if len(sentence) < MIN_SENTENCE_LENGTH:
            continue
        found = [word for word in tokenize(sentence) if word in keyword_set]
        if found:
            matches.append((sentence, found))
    matches.sort(key=lambda item: len(item[1]), reverse=True)
    return matches


def extract_sentences_with_keywords(
    text: Optional[str], keywords: Sequence[str]
) -> List[str]:
    """Return keyword-bearing sentences, most keyword hits first."""
    return [sentence for sentence, _ in _sentence_matches(text, keywords)]


def keyword_pattern(keyword: str) -> "re.Pattern[str]":
    """Whole-word, case-insensitive matcher for ``keyword``."""
    return re.compile(rf"(?<!\w){re.escape(keyword)}(?!\w)", re.IGNORECASE)


def keywords_in_sentence(sentence: str, keywords: Iterable[str]) -> List[str]:
    """Keywords that occur in ``sentence`` as whole words, input order."""
    seen = set()
    present: List[str] = []
    for keyword in keywords:
        lowered = keyword.lower()
        if not lowered or lowered in seen:
            continue
        if keyword_pattern(keyword).search(sentence):
            seen.add(lowered)
            present.append(keyword)
    return present


def capitalize_answer(word: str) -> str:
    word = word.strip()
    return word[:1].upper() + word[1:].lower()


def starts_with_interrogative(text: str) -> bool:
    return bool(_INTERROGATIVE.match(text))
