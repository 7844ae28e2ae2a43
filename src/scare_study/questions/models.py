"""Data structures shared by the question engine and the sequence runtime."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Union

__all__ = [
    "MULTIPLE_CHOICE",
    "TEXT",
    "Document",
    "Keyword",
    "QuestionSource",
    "Question",
    "QuestionCache",
    "GenerationResult",
    "BlankedSentence",
    "KeyConcepts",
]

MULTIPLE_CHOICE = "multiple-choice"
TEXT = "text"
_QUESTION_TYPES = (MULTIPLE_CHOICE, TEXT)

CorrectAnswer = Union[int, str]


@dataclass(frozen=True)
class Document:
    """Plain-text study material supplied by the document collaborator."""

    file_path: str
    content: str
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> str:
        return str(self.metadata.get("title") or "Unknown")


@dataclass(frozen=True)
class Keyword:
    """A candidate term ranked by frequency and length."""

    word: str
    frequency: int
    score: float


@dataclass(frozen=True)
class QuestionSource:
    """A keyword-bearing sentence that may become a question."""

    sentence: str
    keywords: tuple[str, ...]
    source_document: Optional[str] = None


@dataclass(frozen=True)
class Question:
    """A generated quiz question.

    For multiple-choice questions ``correct_answer`` is an index into
    ``options``; for free-text questions it is the expected string.
    """

    id: str
    text: str
    type: str
    options: tuple[str, ...]
    correct_answer: CorrectAnswer
    explanation: str = ""
    source_document: Optional[str] = None

    def __post_init__(self) -> None:
        if self.type not in _QUESTION_TYPES:
            raise ValueError(f"Unsupported question type: {self.type!r}")
        if self.type == MULTIPLE_CHOICE:
            if len(self.options) < 3:
                raise ValueError(
                    "Multiple-choice questions need at least 3 options."
                )
            if (
                not isinstance(self.correct_answer, int)
                or isinstance(self.correct_answer, bool)
                or not 0 <= self.correct_answer < len(self.options)
            ):
                raise ValueError(
                    "correct_answer must index into options "
                    f"(got {self.correct_answer!r})."
                )

    @property
    def is_multiple_choice(self) -> bool:
        return self.type == MULTIPLE_CHOICE

    def correct_answer_text(self) -> str:
        if self.is_multiple_choice:
            return self.options[int(self.correct_answer)]
        return str(self.correct_answer)

    def display_payload(self) -> Dict[str, Any]:
        """What the presenter may see: no answer, no explanation."""
        return {
            "id": self.id,
            "text": self.text,
            "type": self.type,
            "options": list(self.options),
        }

    def to_dict(self) -> MutableMapping[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "type": self.type,
            "options": list(self.options),
            "correctAnswer": self.correct_answer,
            "explanation": self.explanation,
            "sourceDocument": self.source_document,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Question":
        try:
            identifier = str(payload["id"])
            text = str(payload["text"])
            correct = payload["correctAnswer"]
        except KeyError as exc:
            raise ValueError(f"Question missing required field: {exc}") from exc
        qtype = str(payload.get("type", MULTIPLE_CHOICE))
        options = payload.get("options") or []
        if not isinstance(options, list):
            raise ValueError("Question options must be a list.")
        source = payload.get("sourceDocument")
        return cls(
            id=identifier,
            text=text,
            type=qtype,
            options=tuple(str(option) for option in options),
            correct_answer=correct if qtype == MULTIPLE_CHOICE else str(correct),
            explanation=str(payload.get("explanation") or ""),
            source_document=str(source) if source is not None else None,
        )


@dataclass
class QuestionCache:
    """Persisted question pool plus generation metadata."""

    generated: Optional[str] = None
    document_hashes: List[str] = field(default_factory=list)
    questions: List[Question] = field(default_factory=list)
    used_in_session: List[str] = field(default_factory=list)

    def to_dict(self) -> MutableMapping[str, Any]:
        return {
            "generated": self.generated,
            "documentHashes": list(self.document_hashes),
            "questions": [question.to_dict() for question in self.questions],
            "usedInSession": list(self.used_in_session),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "QuestionCache":
        raw_questions = payload.get("questions")
        raw_hashes = payload.get("documentHashes")
        raw_used = payload.get("usedInSession")
        generated = payload.get("generated")
        return cls(
            generated=str(generated) if generated else None,
            document_hashes=(
                [str(item) for item in raw_hashes]
                if isinstance(raw_hashes, list)
                else []
            ),
            questions=(
                [Question.from_dict(item) for item in raw_questions]
                if isinstance(raw_questions, list)
                else []
            ),
            used_in_session=(
                [str(item) for item in raw_used]
                if isinstance(raw_used, list)
                else []
            ),
        )


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of generation with cache fallback."""

    questions: List[Question]
    used_cache: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class BlankedSentence:
    """A sentence with its key term blanked out, before options exist."""

    text: str
    correct_answer: str


@dataclass(frozen=True)
class KeyConcepts:
    """Keywords and question sources mined from one document."""

    document_path: str
    document_title: str
    keywords: List[Keyword] = field(default_factory=list)
    sources: List[QuestionSource] = field(default_factory=list)

    @property
    def keyword_words(self) -> List[str]:
        return [keyword.word for keyword in self.keywords]
