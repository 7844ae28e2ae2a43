"""Per-session answer statistics, persisted after every answer."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, MutableMapping, Optional

from .core.logging import get_logger
from .core.store import DocumentStore, StoreError, update_section

__all__ = ["SessionStatistics", "SessionTracker"]

SESSION_KEY = "session"
STATISTICS_SECTION = "statistics"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionStatistics:
    session_start: str
    questions_answered: int = 0
    correct_answers: int = 0
    current_streak: int = 0
    best_streak: int = 0
    last_question_at: Optional[str] = None

    def to_dict(self) -> MutableMapping[str, Any]:
        return {
            "sessionStart": self.session_start,
            "questionsAnswered": self.questions_answered,
            "correctAnswers": self.correct_answers,
            "currentStreak": self.current_streak,
            "bestStreak": self.best_streak,
            "lastQuestionAt": self.last_question_at,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SessionStatistics":
        last = payload.get("lastQuestionAt")
        stats = cls(
            session_start=str(payload["sessionStart"]),
            questions_answered=int(payload.get("questionsAnswered", 0)),
            correct_answers=int(payload.get("correctAnswers", 0)),
            current_streak=int(payload.get("currentStreak", 0)),
            best_streak=int(payload.get("bestStreak", 0)),
            last_question_at=str(last) if last else None,
        )
        if (
            min(
                stats.questions_answered,
                stats.correct_answers,
                stats.current_streak,
                stats.best_streak,
            )
            < 0
            or stats.correct_answers > stats.questions_answered
        ):
            raise ValueError(f"Inconsistent session statistics: {asdict(stats)}")
        return stats


class SessionTracker:
    """Accumulate answer counts, streaks and accuracy for the session."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        clock: Callable[[], datetime] = _utc_now,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._logger = logger or get_logger("session")
        self._statistics: Optional[SessionStatistics] = None

    def _defaults(self) -> SessionStatistics:
        return SessionStatistics(session_start=self._clock().isoformat())

    def load(self) -> SessionStatistics:
        """Read persisted statistics, starting a fresh session when absent."""
        try:
            payload = self._store.load(SESSION_KEY) or {}
            section = payload.get(STATISTICS_SECTION)
            loaded = (
                SessionStatistics.from_dict(section)
                if isinstance(section, Mapping)
                else None
            )
        except (StoreError, KeyError, TypeError, ValueError) as exc:
            self._logger.warning(
                "Session statistics unreadable; starting fresh",
                extra={"error": str(exc)},
            )
            loaded = None

        if loaded is None:
            self._statistics = self._defaults()
            self.save()
        else:
            self._statistics = loaded
        return self.get_statistics()

    def save(self) -> None:
        if self._statistics is None:
            return
        try:
            update_section(
                self._store,
                SESSION_KEY,
                STATISTICS_SECTION,
                self._statistics.to_dict(),
            )
        except (StoreError, OSError) as exc:
            self._logger.error(
                "Failed to save session statistics", extra={"error": str(exc)}
            )

    def record_answer(self, correct: bool) -> SessionStatistics:
        if self._statistics is None:
            self.load()
        stats = self._statistics
        assert stats is not None
        stats.questions_answered += 1
        stats.last_question_at = self._clock().isoformat()
        if correct:
            stats.correct_answers += 1
            stats.current_streak += 1
            stats.best_streak = max(stats.best_streak, stats.current_streak)
        else:
            stats.current_streak = 0
        self._logger.info(
            "Answer recorded",
            extra={
                "correct": bool(correct),
                "answered": stats.questions_answered,
                "streak": stats.current_streak,
            },
        )
        self.save()
        return self.get_statistics()

    def get_statistics(self) -> SessionStatistics:
        if self._statistics is None:
            raise RuntimeError("Session not loaded. Call load() first.")
        return SessionStatistics(**asdict(self._statistics))

    def get_accuracy(self) -> int:
        """Percentage of correct answers, rounded half up; 0 with no answers."""
        stats = self._statistics
        if stats is None or stats.questions_answered == 0:
            return 0
        return (200 * stats.correct_answers + stats.questions_answered) // (
            2 * stats.questions_answered
        )

    def reset_session(self) -> SessionStatistics:
        self._statistics = self._defaults()
        self.save()
        return self.get_statistics()

    def get_session_duration(self) -> float:
        """Seconds since the session started."""
        stats = self._statistics
        if stats is None:
            return 0.0
        try:
            started = datetime.fromisoformat(stats.session_start)
        except ValueError:
            return 0.0
        if started.tzinfo is None:
            started = started.replace(tzinfo=timezone.utc)
        return max(0.0, (self._clock() - started).total_seconds())

    def get_formatted_duration(self) -> str:
        total_minutes = int(self.get_session_duration() // 60)
        hours, minutes = divmod(total_minutes, 60)
        if hours:
            return f"{hours}h {minutes}m"
        return f"{minutes}m"
