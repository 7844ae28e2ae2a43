from __future__ import annotations

import pytest

from fixtures import cache_payload
from scare_study.core.events import EventBus
from scare_study.core.store import MemoryStore
from scare_study.questions import (
    CACHE_KEY,
    TEXT,
    Question,
    QuestionCache,
    QuestionEngine,
)
from scare_study.sequence import (
    CONSTRUCTIVE_MESSAGES,
    EVENT_NAMES,
    NO_QUESTIONS_MESSAGE,
    POSITIVE_MESSAGES,
    SequenceOrchestrator,
    Stage,
)
from scare_study.session import SessionTracker


class Harness:
    def __init__(self, store, scheduler, presenter, rng, *, questions=3):
        if questions:
            store.save(CACHE_KEY, cache_payload(questions))
        self.store = store
        self.scheduler = scheduler
        self.presenter = presenter
        self.engine = QuestionEngine(store, rng=rng)
        self.tracker = SessionTracker(store, clock=scheduler.clock)
        self.tracker.load()
        self.events = EventBus()
        self.log = []
        for name in EVENT_NAMES:
            self.events.subscribe(
                name, lambda payload, name=name: self.log.append((name, payload))
            )
        self.orchestrator = SequenceOrchestrator(
            self.engine,
            self.tracker,
            scheduler,
            events=self.events,
            presenter=presenter,
            rng=rng,
        )

    def names(self):
        return [name for name, _ in self.log]

    def count(self, name):
        return self.names().count(name)

    def to_question(self):
        self.orchestrator.start_sequence()
        for stage in (Stage.SHAKE, Stage.DARKEN, Stage.TUNNEL, Stage.JUMPSCARE):
            self.orchestrator.on_stage_complete(stage)
        return self.orchestrator.current_question


@pytest.fixture
def harness(store, scheduler, presenter, rng):
    return Harness(store, scheduler, presenter, rng)


def test_start_enters_shake_and_waits(harness):
    assert harness.orchestrator.start_sequence() is True

    assert harness.orchestrator.state is Stage.SHAKE
    assert harness.presenter.calls == [("begin_stage", Stage.SHAKE)]
    assert harness.names() == ["sequence-start", "stage-change"]
    assert harness.log[1][1].stage is Stage.SHAKE

    harness.scheduler.advance(600)
    assert harness.orchestrator.state is Stage.SHAKE


def test_start_only_from_none(harness):
    harness.orchestrator.start_sequence()
    harness.log.clear()

    assert harness.orchestrator.start_sequence() is False
    assert harness.log == []
    assert harness.orchestrator.state is Stage.SHAKE


def test_start_without_presenter_reports_error(harness):
    harness.orchestrator.set_presenter(None)

    assert harness.orchestrator.start_sequence() is False
    assert harness.names() == ["error"]
    assert not harness.orchestrator.is_active()


def test_stages_advance_only_on_matching_acknowledgment(harness):
    orch = harness.orchestrator
    orch.start_sequence()

    orch.on_stage_complete(Stage.DARKEN)
    assert orch.state is Stage.SHAKE

    orch.on_stage_complete("shake")
    assert orch.state is Stage.DARKEN
    orch.on_stage_complete(Stage.SHAKE)
    orch.on_stage_complete("bogus")
    assert orch.state is Stage.DARKEN

    orch.on_stage_complete(Stage.DARKEN)
    orch.on_stage_complete(Stage.TUNNEL)
    assert orch.state is Stage.JUMPSCARE
    assert harness.presenter.methods() == ["begin_stage"] * 4
    assert harness.count("stage-complete") == 3


def test_question_stage_shows_display_payload(harness):
    question = harness.to_question()

    assert harness.orchestrator.state is Stage.QUESTION
    assert question is not None
    payload = harness.presenter.last("show_question")
    assert payload == question.display_payload()
    assert "correctAnswer" not in payload
    assert harness.names()[-2:] == ["stage-change", "question-shown"]
    assert harness.log[-1][1].question == question


def test_question_stage_acknowledgment_is_ignored(harness):
    harness.to_question()

    harness.orchestrator.on_stage_complete(Stage.QUESTION)

    assert harness.orchestrator.state is Stage.QUESTION


def test_no_questions_shows_error_and_abandons(store, scheduler, presenter, rng):
    harness = Harness(store, scheduler, presenter, rng, questions=0)

    harness.to_question()

    assert presenter.last("show_question") == {"error": NO_QUESTIONS_MESSAGE}
    assert harness.count("error") == 1
    assert harness.log[-1][1].message == NO_QUESTIONS_MESSAGE
    assert harness.orchestrator.state is Stage.NONE
    assert "sequence-end" not in harness.names()

    scheduler.advance(3)
    assert presenter.methods()[-1] == "hide"


def test_question_fetch_exception_is_contained(harness, monkeypatch):
    def _boom():
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(harness.engine, "get_next_question", _boom)

    harness.to_question()

    assert harness.orchestrator.state is Stage.NONE
    error = harness.log[-1][1]
    assert harness.log[-1][0] == "error"
    assert isinstance(error.error, RuntimeError)


def test_error_hide_does_not_touch_next_sequence(store, scheduler, presenter, rng):
    harness = Harness(store, scheduler, presenter, rng, questions=0)
    harness.to_question()

    harness.orchestrator.start_sequence()
    scheduler.advance(10)

    assert presenter.methods()[-1] == "begin_stage"
    assert harness.orchestrator.state is Stage.SHAKE


def test_cancel_during_error_display_hides_immediately(
    store, scheduler, presenter, rng
):
    harness = Harness(store, scheduler, presenter, rng, questions=0)
    harness.to_question()

    harness.orchestrator.cancel_sequence()

    assert presenter.methods()[-1] == "hide"
    assert harness.count("sequence-cancelled") == 0
    assert scheduler.pending == 0

    scheduler.advance(3)
    harness.orchestrator.cancel_sequence()
    assert presenter.methods().count("hide") == 1


def test_correct_multiple_choice_feedback(harness):
    question = harness.to_question()

    feedback = harness.orchestrator.on_answer_submit(question.id, 1)

    assert feedback.correct is True
    payload = harness.presenter.last("show_feedback")
    assert set(payload) == {"correct", "message"}
    assert payload["message"] in POSITIVE_MESSAGES
    assert harness.orchestrator.state is Stage.ANSWERED
    assert harness.tracker.get_statistics().correct_answers == 1
    assert question.id in harness.engine.used_question_ids
    answered = harness.log[-1]
    assert answered[0] == "answer-submitted"
    assert answered[1].correct is True


def test_incorrect_multiple_choice_feedback(harness):
    question = harness.to_question()

    harness.orchestrator.on_answer_submit(question.id, 0)

    payload = harness.presenter.last("show_feedback")
    assert payload["correct"] is False
    assert payload["correctAnswer"] == "Beta"
    assert payload["explanation"] == question.explanation
    assert payload["message"] in CONSTRUCTIVE_MESSAGES
    stats = harness.tracker.get_statistics()
    assert stats.questions_answered == 1
    assert stats.correct_answers == 0
    assert question.id in harness.engine.used_question_ids


@pytest.mark.parametrize(
    "answer, expected",
    [
        ("1", True),
        (" 1 ", True),
        (1.0, True),
        (1.5, False),
        ("abc", False),
        (None, False),
        (True, False),
    ],
)
def test_multiple_choice_answer_coercion(harness, answer, expected):
    question = harness.to_question()

    feedback = harness.orchestrator.on_answer_submit(question.id, answer)

    assert feedback.correct is expected


def test_free_text_answers_compare_trimmed_case_insensitive(scheduler, presenter, rng):
    question = Question("t1", "Capital of France?", TEXT, (), "Paris")
    store = MemoryStore(
        {CACHE_KEY: QuestionCache(questions=[question]).to_dict()}
    )
    harness = Harness(store, scheduler, presenter, rng, questions=0)

    harness.to_question()
    feedback = harness.orchestrator.on_answer_submit("t1", "  pARIS ")

    assert feedback.correct is True


def test_answer_ignored_for_wrong_id_or_state(harness):
    assert harness.orchestrator.on_answer_submit("q0", 1) is None

    question = harness.to_question()
    saves = harness.store.save_count
    events = len(harness.log)

    assert harness.orchestrator.on_answer_submit("other", 1) is None
    assert harness.store.save_count == saves
    assert len(harness.log) == events

    harness.orchestrator.on_answer_submit(question.id, 1)
    assert harness.orchestrator.on_answer_submit(question.id, 1) is None
    assert harness.tracker.get_statistics().questions_answered == 1


@pytest.mark.parametrize("answer, delay", [(1, 3.0), (0, 4.5)])
def test_sequence_ends_after_feedback_delay(harness, answer, delay):
    question = harness.to_question()
    harness.orchestrator.on_answer_submit(question.id, answer)

    harness.scheduler.advance(delay - 0.1)
    assert "sequence-end" not in harness.names()

    harness.scheduler.advance(0.1)
    assert harness.count("sequence-end") == 1
    assert harness.orchestrator.state is Stage.NONE
    assert harness.orchestrator.current_question is None
    assert harness.presenter.methods()[-1] == "hide"


def test_validation_failure_abandons_sequence(harness, monkeypatch):
    question = harness.to_question()

    def _boom(_question_id):
        raise RuntimeError("store exploded")

    monkeypatch.setattr(harness.engine, "mark_question_used", _boom)

    assert harness.orchestrator.on_answer_submit(question.id, 1) is None
    assert harness.log[-1][0] == "error"
    assert harness.orchestrator.state is Stage.NONE
    assert harness.tracker.get_statistics().questions_answered == 0


def test_cancel_is_idempotent(harness):
    harness.orchestrator.start_sequence()
    harness.orchestrator.on_stage_complete(Stage.SHAKE)

    for _ in range(3):
        harness.orchestrator.cancel_sequence()

    assert harness.count("sequence-cancelled") == 1
    assert harness.orchestrator.state is Stage.NONE
    assert harness.orchestrator.current_stage is None
    assert harness.presenter.methods().count("hide") == 1


def test_cancel_from_none_is_silent(harness):
    harness.orchestrator.cancel_sequence()

    assert harness.log == []
    assert harness.presenter.calls == []


def test_cancel_survives_torn_down_presenter(harness):
    harness.to_question()
    harness.presenter.fail_on.add("hide")

    harness.orchestrator.cancel_sequence()
    harness.orchestrator.cancel_sequence()

    assert harness.count("sequence-cancelled") == 1
    assert harness.orchestrator.current_question is None


def test_cancel_after_answer_suppresses_sequence_end(harness):
    question = harness.to_question()
    harness.orchestrator.on_answer_submit(question.id, 1)

    harness.orchestrator.cancel_sequence()
    harness.scheduler.advance(10)

    assert harness.count("sequence-cancelled") == 1
    assert "sequence-end" not in harness.names()


def test_stale_acknowledgment_after_cancel_is_ignored(harness):
    harness.orchestrator.start_sequence()
    harness.orchestrator.cancel_sequence()

    harness.orchestrator.on_stage_complete(Stage.SHAKE)
    assert harness.orchestrator.state is Stage.NONE

    assert harness.orchestrator.start_sequence() is True
    assert harness.orchestrator.state is Stage.SHAKE


def test_presenter_failure_does_not_escape(harness):
    harness.presenter.fail_on.add("begin_stage")

    assert harness.orchestrator.start_sequence() is True
    assert harness.orchestrator.state is Stage.SHAKE


def test_destroy_drops_pending_end(harness):
    question = harness.to_question()
    harness.orchestrator.on_answer_submit(question.id, 1)

    harness.orchestrator.destroy()
    harness.scheduler.advance(10)

    assert "sequence-end" not in harness.names()
    assert not harness.orchestrator.is_active()
