"""Composition root wiring the timer, sequence and question pool together.

Every terminal sequence signal (end, cancellation, error) restarts the
countdown, so a failed or skipped interruption is always retried on the next
interval.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, List, Mapping, Optional

from .core.events import EventBus
from .core.files import load_documents
from .core.logging import get_logger
from .core.scheduler import Scheduler
from .core.store import DocumentStore
from .questions.engine import QuestionEngine
from .questions.models import Document, GenerationResult
from .sequence import (
    ERROR,
    SEQUENCE_CANCELLED,
    SEQUENCE_END,
    Presenter,
    SequenceOrchestrator,
)
from .session import SessionStatistics, SessionTracker
from .settings import Settings
from .timer import TimerCoordinator, TimerSnapshot

__all__ = ["AppStatus", "Application"]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AppStatus:
    timer: TimerSnapshot
    statistics: SessionStatistics
    accuracy: int
    duration: str
    questions: Mapping[str, Any]


class Application:
    """Own one of each component and keep the study loop running."""

    def __init__(
        self,
        settings: Settings,
        store: DocumentStore,
        scheduler: Scheduler,
        *,
        presenter: Optional[Presenter] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = _utc_now,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.settings = settings
        self._logger = logger or get_logger("app")
        rng = rng or random.Random()

        self.events = EventBus(logger=self._logger)
        self.engine = QuestionEngine(
            store,
            min_keyword_length=settings.questions.min_keyword_length,
            max_keywords=settings.questions.max_keywords,
            min_keyword_frequency=settings.questions.min_keyword_frequency,
            max_cached_questions=settings.questions.max_cached_questions,
            rng=rng,
            clock=clock,
        )
        self.tracker = SessionTracker(store, clock=clock)
        self.timer = TimerCoordinator(
            lambda: self.settings.interval, store, scheduler, clock=clock
        )
        self.orchestrator = SequenceOrchestrator(
            self.engine,
            self.tracker,
            scheduler,
            events=self.events,
            presenter=presenter,
            rng=rng,
        )

        self._unsubscribers: List[Callable[[], None]] = [
            self.timer.on_expire(self._on_timer_expired)
        ]
        for event in (SEQUENCE_END, SEQUENCE_CANCELLED, ERROR):
            self._unsubscribers.append(
                self.events.subscribe(event, self._on_sequence_finished)
            )

    def start(self) -> None:
        """Load persisted state, refresh questions and start the countdown."""
        self.tracker.load()
        self.engine.load_cache()
        self.prepare_questions()
        self.timer.initialize()
        if not self.timer.is_running:
            self.timer.start()
        self._logger.info(
            "Study loop started",
            extra={"remaining_ms": self.timer.get_remaining_time()},
        )

    def load_documents(self) -> List[Document]:
        try:
            return load_documents(
                self.settings.document_paths,
                extensions=set(self.settings.extensions),
            )
        except OSError as exc:
            self._logger.warning(
                "Could not read study documents", extra={"error": str(exc)}
            )
            return []

    def prepare_questions(
        self, *, force: bool = False
    ) -> Optional[GenerationResult]:
        """Regenerate the question pool when the document set changed.

        Returns ``None`` when the cached pool is already current.
        """
        documents = self.load_documents()
        paths = [document.file_path for document in documents]
        if (
            not force
            and documents
            and not self.engine.needs_cache_regeneration(paths)
        ):
            self._logger.info("Question cache is up to date")
            return None
        result = self.engine.generate_questions_with_fallback(
            documents, self.settings.questions.max_questions
        )
        if result.error:
            self._logger.warning(
                "No questions available", extra={"error": result.error}
            )
        return result

    def trigger_now(self) -> bool:
        """Skip the countdown and interrupt immediately."""
        self.timer.stop()
        return self._on_timer_expired()

    def set_interval(self, minutes: int) -> None:
        self.settings = self.settings.with_interval(minutes)
        self.timer.on_interval_changed(minutes)

    def reset_session(self) -> None:
        self.tracker.reset_session()
        self.engine.reset_session()
        self.timer.reset()

    def status(self) -> AppStatus:
        return AppStatus(
            timer=self.timer.get_status(),
            statistics=self.tracker.get_statistics(),
            accuracy=self.tracker.get_accuracy(),
            duration=self.tracker.get_formatted_duration(),
            questions=self.engine.get_session_stats(),
        )

    def shutdown(self) -> None:
        self.orchestrator.cancel_sequence()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self.timer.stop()
        self.orchestrator.destroy()
        self.timer.destroy()
        self._logger.info("Study loop stopped")

    def _on_timer_expired(self) -> bool:
        try:
            started = self.orchestrator.start_sequence()
        except Exception:
            self._logger.exception("Failed to start sequence")
            started = False
        if not started and not self.timer.is_running:
            self._restart_timer()
        return started

    def _on_sequence_finished(self, _payload: Any) -> None:
        self._restart_timer()

    def _restart_timer(self) -> None:
        self.timer.reset()
        self.timer.start()
