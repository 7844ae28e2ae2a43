"""Question synthesis and the persisted, session-aware question pool.

The engine turns plain-text documents into fill-in-the-blank
multiple-choice questions:

1. rank keywords by frequency and length;
2. keep sentences that contain those keywords;
3. blank out the longest keyword in a sentence and use other keywords as
   distractors.

Generated questions live in a capped in-memory pool mirrored to the
``questions`` document of a :class:`~scare_study.core.store.DocumentStore`.
Draws never repeat within a session; only :meth:`QuestionEngine.reset_session`
clears the used set.
"""

from __future__ import annotations

import logging
import random
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Union,
)

from ..core.logging import get_logger
from ..core.store import DocumentStore, MemoryStore, StoreError
from . import text as text_mod
from .models import (
    MULTIPLE_CHOICE,
    BlankedSentence,
    Document,
    GenerationResult,
    KeyConcepts,
    Keyword,
    Question,
    QuestionCache,
    QuestionSource,
)

__all__ = [
    "CACHE_KEY",
    "QuestionGenerationError",
    "QuestionEngine",
]

CACHE_KEY = "questions"

NO_QUESTIONS_ERROR = (
    "No questions could be generated and no cached questions are available. "
    "Please check your document configuration."
)
CACHE_LOAD_ERROR = (
    "Question generation failed and cached questions could not be loaded. "
    "Please check your document configuration."
)

KeywordLike = Union[str, Keyword]


class QuestionGenerationError(RuntimeError):
    """Raised when a document set yields no usable questions."""


def _words(keywords: Sequence[KeywordLike]) -> List[str]:
    return [
        keyword.word if isinstance(keyword, Keyword) else str(keyword)
        for keyword in keywords or []
    ]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QuestionEngine:
    """Generate, cache and serve questions from study documents."""

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        *,
        min_keyword_length: int = 4,
        max_keywords: int = 20,
        min_keyword_frequency: int = 2,
        max_cached_questions: int = 100,
        max_sources_per_document: int = 50,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = _utc_now,
        id_factory: Optional[Callable[[], str]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if max_cached_questions <= 0:
            raise ValueError("max_cached_questions must be positive.")
        self.min_keyword_length = min_keyword_length
        self.max_keywords = max_keywords
        self.min_keyword_frequency = min_keyword_frequency
        self.max_cached_questions = max_cached_questions
        self.max_sources_per_document = max_sources_per_document

        self._store: DocumentStore = store if store is not None else MemoryStore()
        self._rng = rng or random.Random()
        self._clock = clock
        self._id_factory = id_factory or self._default_id
        self._logger = logger or get_logger("questions")

        self._questions: List[Question] = []
        self._used_ids: Set[str] = set()
        self._generated: Optional[str] = None
        self._document_hashes: List[str] = []
        self._cache_loaded = False

    # ------------------------------------------------------------------
    # Keyword and sentence mining

    def extract_keywords(self, text: Optional[str]) -> List[Keyword]:
        return text_mod.extract_keywords(
            text,
            min_length=self.min_keyword_length,
            min_frequency=self.min_keyword_frequency,
            max_keywords=self.max_keywords,
        )

    def extract_sentences_with_keywords(
        self, text: Optional[str], keywords: Sequence[KeywordLike]
    ) -> List[str]:
        return text_mod.extract_sentences_with_keywords(text, _words(keywords))

    def identify_key_concepts(self, document: Document) -> KeyConcepts:
        """Mine keywords and question sources from a single document."""
        if not document.content:
            return KeyConcepts(
                document_path=document.file_path or "unknown",
                document_title=document.title,
            )
        keywords = self.extract_keywords(document.content)
        words = [keyword.word for keyword in keywords]
        sentences = self.extract_sentences_with_keywords(
            document.content, words
        )
        sources = [
            QuestionSource(
                sentence=sentence,
                keywords=tuple(text_mod.keywords_in_sentence(sentence, words)),
                source_document=document.file_path,
            )
            for sentence in sentences[: self.max_sources_per_document]
        ]
        return KeyConcepts(
            document_path=document.file_path,
            document_title=document.title,
            keywords=keywords,
            sources=sources,
        )

    def process_documents(
        self, documents: Sequence[Document]
    ) -> List[KeyConcepts]:
        """Concepts for each document in input order; failures are skipped."""
        concepts: List[KeyConcepts] = []
        for document in documents or []:
            try:
                concepts.append(self.identify_key_concepts(document))
            except Exception:
                self._logger.exception(
                    "Failed to process document",
                    extra={"path": getattr(document, "file_path", None)},
                )
        return concepts

    def get_keyword_statistics(
        self, documents: Sequence[Document]
    ) -> Dict[str, float]:
        if not documents:
            return {
                "totalDocuments": 0,
                "totalKeywords": 0,
                "totalSourceSentences": 0,
                "averageKeywordsPerDocument": 0,
                "averageSentencesPerDocument": 0,
            }
        concepts = self.process_documents(documents)
        total_keywords = sum(len(item.keywords) for item in concepts)
        total_sentences = sum(len(item.sources) for item in concepts)
        return {
            "totalDocuments": len(documents),
            "totalKeywords": total_keywords,
            "totalSourceSentences": total_sentences,
            "averageKeywordsPerDocument": total_keywords / len(documents),
            "averageSentencesPerDocument": total_sentences / len(documents),
        }

    # ------------------------------------------------------------------
    # Question synthesis

    def generate_question_from_sentence(
        self, sentence: str, keywords: Sequence[KeywordLike]
    ) -> Optional[BlankedSentence]:
        """Blank out the most specific keyword in ``sentence``.

        The longest keyword present as a whole word becomes the answer. The
        result always ends with ``?`` and starts with an interrogative word.
        """
        if not sentence or not keywords:
            return None
        present = text_mod.keywords_in_sentence(sentence, _words(keywords))
        if not present:
            return None
        target = max(present, key=len)
        pattern = text_mod.keyword_pattern(target)
        match = pattern.search(sentence)
        if match is None:  # pragma: no cover - guarded by keywords_in_sentence
            return None

        correct_answer = text_mod.capitalize_answer(match.group(0))
        question_text = pattern.sub(text_mod.BLANK, sentence, count=1).strip()
        if not question_text.endswith("?"):
            if question_text.endswith("."):
                question_text = question_text[:-1]
            question_text += "?"
        if not text_mod.starts_with_interrogative(question_text):
            question_text = f"What {question_text}"
        return BlankedSentence(text=question_text, correct_answer=correct_answer)

    def generate_distractors(
        self,
        correct_answer: str,
        all_keywords: Sequence[KeywordLike],
        count: int = 3,
    ) -> List[str]:
        if not correct_answer or not all_keywords:
            return []
        correct_lower = correct_answer.lower()
        seen: Set[str] = set()
        candidates: List[str] = []
        for word in _words(all_keywords):
            lowered = word.lower()
            if lowered == correct_lower or len(word) < 4 or lowered in seen:
                continue
            seen.add(lowered)
            candidates.append(word[:1].upper() + word[1:])
        self._rng.shuffle(candidates)
        return candidates[:count]

    def generate_multiple_choice_question(
        self, source: QuestionSource, all_keywords: Sequence[KeywordLike]
    ) -> Optional[Question]:
        if source is None or not source.sentence or not source.keywords:
            return None
        blanked = self.generate_question_from_sentence(
            source.sentence, source.keywords
        )
        if blanked is None:
            return None
        distractors = self.generate_distractors(
            blanked.correct_answer, all_keywords, 3
        )
        if len(distractors) < 2:
            return None

        options = [blanked.correct_answer, *distractors]
        self._rng.shuffle(options)
        return Question(
            id=self._id_factory(),
            text=blanked.text,
            type=MULTIPLE_CHOICE,
            options=tuple(options),
            correct_answer=options.index(blanked.correct_answer),
            explanation=self._explain(blanked.correct_answer, source),
            source_document=source.source_document,
        )

    def generate_questions(
        self, documents: Sequence[Document], max_questions: int = 20
    ) -> List[Question]:
        """Synthesize up to ``max_questions`` across ``documents``.

        Raises :class:`QuestionGenerationError` when there are no documents,
        no keywords in any document, or no sentence produced a question.
        """
        if not documents:
            raise QuestionGenerationError(
                "No documents provided for question generation"
            )
        concepts = self.process_documents(documents)
        if not any(item.keywords for item in concepts):
            raise QuestionGenerationError(
                "Could not extract any keywords from the provided documents"
            )

        questions: List[Question] = []
        for item in concepts:
            if len(questions) >= max_questions:
                break
            words = item.keyword_words
            for source in item.sources:
                if len(questions) >= max_questions:
                    break
                try:
                    question = self.generate_multiple_choice_question(
                        source, words
                    )
                except ValueError:
                    self._logger.debug(
                        "Skipping sentence that produced an invalid question",
                        exc_info=True,
                    )
                    continue
                if question is not None:
                    questions.append(question)

        if not questions:
            raise QuestionGenerationError(
                "Could not generate any valid questions from the provided "
                "documents"
            )
        self._logger.info(
            "Generated questions",
            extra={"count": len(questions), "documents": len(documents)},
        )
        return questions

    def _explain(self, answer: str, source: QuestionSource) -> str:
        origin = (
            Path(source.source_document).name
            if source.source_document
            else "the source material"
        )
        return f'The correct answer is "{answer}" based on {origin}.'

    def _default_id(self) -> str:
        token = uuid.UUID(int=self._rng.getrandbits(128), version=4).hex
        return f"q_{token[:16]}"

    # ------------------------------------------------------------------
    # Cache

    @property
    def questions(self) -> List[Question]:
        return list(self._questions)

    @property
    def used_question_ids(self) -> Set[str]:
        return set(self._used_ids)

    @property
    def cache_loaded(self) -> bool:
        return self._cache_loaded

    def load_cache(self, force: bool = False) -> QuestionCache:
        """Read the persisted pool; a no-op after the first load unless forced.

        Missing or corrupted caches load as empty and are never fatal.
        """
        if self._cache_loaded and not force:
            return self._snapshot()
        try:
            payload = self._store.load(CACHE_KEY)
            cache = (
                QuestionCache.from_dict(payload)
                if payload is not None
                else QuestionCache()
            )
        except (StoreError, ValueError, TypeError) as exc:
            self._logger.error(
                "Question cache unreadable; starting empty",
                extra={"error": str(exc)},
            )
            cache = QuestionCache()

        if len(cache.questions) > self.max_cached_questions:
            self._logger.info(
                "Limiting cached questions",
                extra={
                    "loaded": len(cache.questions),
                    "limit": self.max_cached_questions,
                },
            )
        self._questions = cache.questions[: self.max_cached_questions]
        known = {question.id for question in self._questions}
        self._used_ids = {qid for qid in cache.used_in_session if qid in known}
        self._generated = cache.generated
        self._document_hashes = list(cache.document_hashes)
        self._cache_loaded = True
        return self._snapshot()

    def save_cache(
        self,
        questions: Optional[Sequence[Question]] = None,
        document_paths: Sequence[str] = (),
    ) -> QuestionCache:
        """Replace the pool with ``questions`` and persist it.

        The pool is capped before it is stored. A write failure is logged
        and the in-memory pool is still updated.
        """
        pool = list(self._questions if questions is None else questions)
        if len(pool) > self.max_cached_questions:
            self._logger.info(
                "Limiting saved questions",
                extra={"saved": len(pool), "limit": self.max_cached_questions},
            )
            pool = pool[: self.max_cached_questions]
        self._questions = pool
        known = {question.id for question in pool}
        self._used_ids &= known
        self._generated = self._clock().isoformat()
        self._document_hashes = [str(path) for path in document_paths]
        self._cache_loaded = True
        self._persist()
        return self._snapshot()

    def clear_memory_cache(self) -> None:
        """Drop the in-memory pool so the next draw reloads it from storage."""
        self._questions = []
        self._cache_loaded = False
        self._logger.debug("Memory cache cleared")

    def _snapshot(self) -> QuestionCache:
        return QuestionCache(
            generated=self._generated,
            document_hashes=list(self._document_hashes),
            questions=list(self._questions),
            used_in_session=sorted(self._used_ids),
        )

    def _persist(self) -> None:
        try:
            self._store.save(CACHE_KEY, self._snapshot().to_dict())
        except (StoreError, OSError) as exc:
            self._logger.error(
                "Failed to save question cache", extra={"error": str(exc)}
            )

    def _ensure_loaded(self) -> None:
        if not self._cache_loaded:
            self.load_cache()

    # ------------------------------------------------------------------
    # Serving

    def get_next_question(self) -> Optional[Question]:
        """Draw a random question not yet used in this session."""
        self._ensure_loaded()
        unused = [q for q in self._questions if q.id not in self._used_ids]
        if not unused:
            return None
        return self._rng.choice(unused)

    def mark_question_used(self, question_id: Optional[str]) -> bool:
        if not question_id:
            return False
        if not any(question.id == question_id for question in self._questions):
            return False
        if question_id not in self._used_ids:
            self._used_ids.add(question_id)
            self._persist()
        return True

    def has_questions(self) -> bool:
        return bool(self._questions)

    def has_unused_questions(self) -> bool:
        return any(q.id not in self._used_ids for q in self._questions)

    def reset_session(self) -> None:
        self._used_ids.clear()
        if self._cache_loaded:
            self._persist()

    def get_session_stats(self) -> Mapping[str, Any]:
        return {
            "totalQuestions": len(self._questions),
            "usedQuestions": len(self._used_ids),
            "remainingQuestions": len(self._questions) - len(self._used_ids),
            "cacheGenerated": self._generated,
            "documentCount": len(self._document_hashes),
        }

    def generate_questions_with_fallback(
        self, documents: Sequence[Document], max_questions: int = 20
    ) -> GenerationResult:
        """Generate fresh questions, falling back to the persisted pool."""
        try:
            questions = self.generate_questions(documents, max_questions)
        except Exception as exc:
            self._logger.warning(
                "Question generation failed; trying cached questions",
                extra={"error": str(exc)},
            )
        else:
            paths = [document.file_path for document in documents]
            cache = self.save_cache(questions, paths)
            return GenerationResult(
                questions=list(cache.questions), used_cache=False
            )

        try:
            self.load_cache()
        except Exception:
            self._logger.exception("Failed to load cached questions")
            return GenerationResult(
                questions=[], used_cache=False, error=CACHE_LOAD_ERROR
            )
        if self.has_questions():
            self._logger.info(
                "Using cached questions",
                extra={"count": len(self._questions)},
            )
            return GenerationResult(
                questions=list(self._questions), used_cache=True
            )
        return GenerationResult(
            questions=[], used_cache=False, error=NO_QUESTIONS_ERROR
        )

    def needs_cache_regeneration(
        self, current_document_paths: Sequence[str]
    ) -> bool:
        """True when nothing was generated yet or the document set changed."""
        self._ensure_loaded()
        if not self._generated:
            return True
        return {str(path) for path in current_document_paths} != set(
            self._document_hashes
        )
