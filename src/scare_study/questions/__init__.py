from .models import (
    MULTIPLE_CHOICE,
    TEXT,
    BlankedSentence,
    Document,
    GenerationResult,
    KeyConcepts,
    Keyword,
    Question,
    QuestionCache,
    QuestionSource,
)
from .text import extract_keywords, extract_sentences_with_keywords
from .engine import CACHE_KEY, QuestionEngine, QuestionGenerationError

__all__ = [
    "MULTIPLE_CHOICE",
    "TEXT",
    "BlankedSentence",
    "Document",
    "GenerationResult",
    "KeyConcepts",
    "Keyword",
    "Question",
    "QuestionCache",
    "QuestionSource",
    "extract_keywords",
    "extract_sentences_with_keywords",
    "CACHE_KEY",
    "QuestionEngine",
    "QuestionGenerationError",
]
