"""State machine driving one interruption sequence and its question.

A run walks ``SHAKE → DARKEN → TUNNEL → JUMPSCARE → QUESTION``. Only the
first stage starts on its own; every later stage waits for the presenter to
acknowledge the previous one through :meth:`SequenceOrchestrator.on_stage_complete`.
There is no acknowledgment timeout: a presenter that never answers leaves the
sequence parked until :meth:`SequenceOrchestrator.cancel_sequence`.

Host-facing lifecycle signals are published on an :class:`EventBus` under
the names in :data:`EVENT_NAMES`, each with a typed payload.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol, Union

from .core.events import EventBus
from .core.logging import get_logger
from .core.scheduler import Scheduler
from .questions.engine import QuestionEngine
from .questions.models import Question
from .session import SessionTracker

__all__ = [
    "Stage",
    "STAGE_ORDER",
    "Presenter",
    "AnswerFeedback",
    "StageEvent",
    "QuestionShownEvent",
    "AnswerEvent",
    "ErrorEvent",
    "SequenceOrchestrator",
    "SEQUENCE_START",
    "STAGE_CHANGE",
    "STAGE_COMPLETE",
    "QUESTION_SHOWN",
    "ANSWER_SUBMITTED",
    "SEQUENCE_CANCELLED",
    "SEQUENCE_END",
    "ERROR",
    "EVENT_NAMES",
]

SEQUENCE_START = "sequence-start"
STAGE_CHANGE = "stage-change"
STAGE_COMPLETE = "stage-complete"
QUESTION_SHOWN = "question-shown"
ANSWER_SUBMITTED = "answer-submitted"
SEQUENCE_CANCELLED = "sequence-cancelled"
SEQUENCE_END = "sequence-end"
ERROR = "error"

EVENT_NAMES = (
    SEQUENCE_START,
    STAGE_CHANGE,
    STAGE_COMPLETE,
    QUESTION_SHOWN,
    ANSWER_SUBMITTED,
    SEQUENCE_CANCELLED,
    SEQUENCE_END,
    ERROR,
)

CORRECT_DELAY_SECONDS = 3.0
INCORRECT_DELAY_SECONDS = 4.5
ERROR_DISPLAY_SECONDS = 3.0

NO_QUESTIONS_MESSAGE = (
    "No questions available. Please add study documents in the configuration."
)
ANSWER_ERROR_MESSAGE = "An error occurred while checking your answer."

POSITIVE_MESSAGES = (
    "Excellent! You got it right!",
    "Correct! Well done!",
    "That's right! Great job!",
    "Perfect! You know your stuff!",
    "Correct answer! Keep it up!",
    "Brilliant! You're on fire!",
    "Yes! That's correct!",
    "Outstanding! You nailed it!",
)

CONSTRUCTIVE_MESSAGES = (
    "Not quite right. Let's review the material.",
    "That's incorrect. Check the explanation below.",
    "Oops! That's not the right answer.",
    "Not this time. See the correct answer below.",
    "Incorrect. Take a look at the explanation.",
    "That's not it. Review the material and try again next time.",
    "Wrong answer. Don't worry, you'll get it next time!",
    "Not correct. Study the explanation to learn more.",
)


class Stage(str, Enum):
    NONE = "none"
    SHAKE = "shake"
    DARKEN = "darken"
    TUNNEL = "tunnel"
    JUMPSCARE = "jumpscare"
    QUESTION = "question"
    ANSWERED = "answered"

    @classmethod
    def coerce(cls, value: Union["Stage", str, None]) -> Optional["Stage"]:
        if isinstance(value, Stage):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


STAGE_ORDER = (
    Stage.SHAKE,
    Stage.DARKEN,
    Stage.TUNNEL,
    Stage.JUMPSCARE,
    Stage.QUESTION,
)


class Presenter(Protocol):
    """Whatever draws the sequence: a window, a terminal, a test double."""

    def begin_stage(self, stage: Stage) -> None:
        ...

    def show_question(self, payload: Mapping[str, Any]) -> None:
        ...

    def show_feedback(self, payload: Mapping[str, Any]) -> None:
        ...

    def hide(self) -> None:
        ...


@dataclass(frozen=True)
class AnswerFeedback:
    correct: bool
    message: str
    explanation: Optional[str] = None
    correct_answer: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "correct": self.correct,
            "message": self.message,
        }
        if self.explanation is not None:
            payload["explanation"] = self.explanation
        if self.correct_answer is not None:
            payload["correctAnswer"] = self.correct_answer
        return payload


@dataclass(frozen=True)
class StageEvent:
    stage: Stage


@dataclass(frozen=True)
class QuestionShownEvent:
    question: Question


@dataclass(frozen=True)
class AnswerEvent:
    question: Question
    answer: Any
    correct: bool
    feedback: AnswerFeedback


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    error: Optional[BaseException] = None


class SequenceOrchestrator:
    """Finite state machine for one interruption at a time."""

    def __init__(
        self,
        engine: QuestionEngine,
        tracker: SessionTracker,
        scheduler: Scheduler,
        *,
        events: Optional[EventBus] = None,
        presenter: Optional[Presenter] = None,
        rng: Optional[random.Random] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._engine = engine
        self._tracker = tracker
        self._scheduler = scheduler
        self._logger = logger or get_logger("sequence")
        self.events = events or EventBus(logger=self._logger)
        self._presenter = presenter
        self._rng = rng or random.Random()

        self._state = Stage.NONE
        self._current_question: Optional[Question] = None
        self._sequence_id = 0
        self._pending: Any = None

    # ------------------------------------------------------------------
    # Accessors

    @property
    def state(self) -> Stage:
        return self._state

    @property
    def current_stage(self) -> Optional[Stage]:
        return None if self._state is Stage.NONE else self._state

    @property
    def current_question(self) -> Optional[Question]:
        return self._current_question

    def is_active(self) -> bool:
        return self._state is not Stage.NONE

    def set_presenter(self, presenter: Optional[Presenter]) -> None:
        self._presenter = presenter

    # ------------------------------------------------------------------
    # Inbound operations

    def start_sequence(self) -> bool:
        """Begin a new run; returns ``False`` when one is already active."""
        if self._state is not Stage.NONE:
            self._logger.warning(
                "Sequence already active", extra={"stage": self._state.value}
            )
            return False
        if self._presenter is None:
            self._logger.error("Cannot start sequence without a presenter")
            self.events.emit(ERROR, ErrorEvent("Presenter not available"))
            return False

        self._cancel_pending()
        self._sequence_id += 1
        self._current_question = None
        self._logger.info(
            "Starting sequence", extra={"sequence": self._sequence_id}
        )
        self._state = Stage.SHAKE
        self.events.emit(SEQUENCE_START, None)
        self._enter(Stage.SHAKE)
        return True

    def on_stage_complete(self, stage: Union[Stage, str]) -> None:
        """Advance past ``stage`` if it is the one currently running."""
        completed = Stage.coerce(stage)
        if completed is None or completed is not self._state:
            self._logger.debug(
                "Ignoring stale stage acknowledgment",
                extra={"stage": str(stage), "current": self._state.value},
            )
            return
        if completed not in STAGE_ORDER[:-1]:
            return
        self.events.emit(STAGE_COMPLETE, StageEvent(completed))
        next_stage = STAGE_ORDER[STAGE_ORDER.index(completed) + 1]
        self._state = next_stage
        self._enter(next_stage)

    def on_answer_submit(
        self, question_id: str, answer: Any
    ) -> Optional[AnswerFeedback]:
        question = self._current_question
        if (
            self._state is not Stage.QUESTION
            or question is None
            or question.id != question_id
        ):
            self._logger.debug(
                "Ignoring answer submission",
                extra={"question_id": question_id, "stage": self._state.value},
            )
            return None

        try:
            correct = self._validate(question, answer)
            self._engine.mark_question_used(question.id)
        except Exception as exc:
            self._fail(ANSWER_ERROR_MESSAGE, exc)
            return None

        self._state = Stage.ANSWERED
        try:
            self._tracker.record_answer(correct)
        except Exception:
            self._logger.exception("Failed to record answer")

        feedback = self._feedback(question, correct)
        self._logger.info(
            "Answer submitted",
            extra={"question_id": question.id, "correct": correct},
        )
        self._present("show_feedback", feedback.to_dict())
        self.events.emit(
            ANSWER_SUBMITTED, AnswerEvent(question, answer, correct, feedback)
        )

        delay = CORRECT_DELAY_SECONDS if correct else INCORRECT_DELAY_SECONDS
        sequence_id = self._sequence_id
        self._pending = self._scheduler.call_later(
            delay, lambda: self._finish(sequence_id)
        )
        return feedback

    def cancel_sequence(self) -> None:
        """Abort the current run; safe to call repeatedly and from any state."""
        if self._state is Stage.NONE:
            # An error message may still be on screen.
            if self._pending is not None:
                self._cancel_pending()
                self._present("hide")
            return
        self._logger.info(
            "Cancelling sequence", extra={"stage": self._state.value}
        )
        self._clear()
        self.events.emit(SEQUENCE_CANCELLED, None)
        self._present("hide")

    def end_sequence(self) -> None:
        if self._state is Stage.NONE:
            return
        self._logger.info("Ending sequence")
        self._clear()
        self.events.emit(SEQUENCE_END, None)
        self._present("hide")

    def destroy(self) -> None:
        self._clear()
        self._presenter = None

    # ------------------------------------------------------------------
    # Internals

    def _enter(self, stage: Stage) -> None:
        self.events.emit(STAGE_CHANGE, StageEvent(stage))
        if stage is Stage.QUESTION:
            self._show_question()
            return
        self._present("begin_stage", stage)

    def _show_question(self) -> None:
        try:
            question = self._engine.get_next_question()
        except Exception as exc:
            self._fail(NO_QUESTIONS_MESSAGE, exc)
            return
        if question is None:
            self._fail(NO_QUESTIONS_MESSAGE)
            return
        self._current_question = question
        self._logger.info("Showing question", extra={"question_id": question.id})
        self._present("show_question", question.display_payload())
        self.events.emit(QUESTION_SHOWN, QuestionShownEvent(question))

    def _validate(self, question: Question, answer: Any) -> bool:
        if question.is_multiple_choice:
            if isinstance(answer, bool):
                return False
            if isinstance(answer, str):
                answer = answer.strip()
                if not answer.lstrip("-").isdigit():
                    return False
            elif isinstance(answer, float) and not answer.is_integer():
                return False
            try:
                return int(answer) == int(question.correct_answer)
            except (TypeError, ValueError):
                return False
        submitted = str(answer).strip().lower()
        return submitted == str(question.correct_answer).strip().lower()

    def _feedback(self, question: Question, correct: bool) -> AnswerFeedback:
        if correct:
            return AnswerFeedback(
                correct=True, message=self._rng.choice(POSITIVE_MESSAGES)
            )
        return AnswerFeedback(
            correct=False,
            message=self._rng.choice(CONSTRUCTIVE_MESSAGES),
            explanation=question.explanation,
            correct_answer=question.correct_answer_text(),
        )

    def _fail(self, message: str, error: Optional[BaseException] = None) -> None:
        if error is not None:
            self._logger.error(
                "Sequence aborted", exc_info=error, extra={"reason": message}
            )
        else:
            self._logger.warning("Sequence aborted", extra={"reason": message})
        self._clear()
        self._present("show_question", {"error": message})
        self.events.emit(ERROR, ErrorEvent(message, error))
        sequence_id = self._sequence_id
        self._pending = self._scheduler.call_later(
            ERROR_DISPLAY_SECONDS, lambda: self._hide_after_error(sequence_id)
        )

    def _hide_after_error(self, sequence_id: int) -> None:
        self._pending = None
        if sequence_id == self._sequence_id and self._state is Stage.NONE:
            self._present("hide")

    def _finish(self, sequence_id: int) -> None:
        self._pending = None
        if sequence_id != self._sequence_id or self._state is not Stage.ANSWERED:
            return
        self.end_sequence()

    def _clear(self) -> None:
        self._cancel_pending()
        self._state = Stage.NONE
        self._current_question = None

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._scheduler.cancel(self._pending)
            self._pending = None

    def _present(self, method: str, *args: Any) -> bool:
        presenter = self._presenter
        if presenter is None:
            return False
        try:
            getattr(presenter, method)(*args)
        except Exception:
            self._logger.exception(
                "Presenter call failed", extra={"method": method}
            )
            return False
        return True
