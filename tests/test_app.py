from __future__ import annotations

import random

import pytest

from fixtures import cache_payload
from scare_study.app import Application
from scare_study.core.store import MemoryStore
from scare_study.questions import CACHE_KEY
from scare_study.sequence import Stage
from scare_study.settings import QuestionSettings, Settings

FIVE_MINUTES_MS = 5 * 60 * 1000


def _app(store, scheduler, presenter, *, paths=(), **kwargs):
    settings = Settings(
        interval=5,
        document_paths=tuple(paths),
        questions=QuestionSettings(max_questions=3),
    )
    return Application(
        settings,
        store,
        scheduler,
        presenter=presenter,
        rng=random.Random(11),
        clock=scheduler.clock,
        **kwargs,
    )


def _ack_all(app):
    for stage in (Stage.SHAKE, Stage.DARKEN, Stage.TUNNEL, Stage.JUMPSCARE):
        app.orchestrator.on_stage_complete(stage)


@pytest.fixture
def notes(workspace):
    return workspace.notes()


def test_start_generates_questions_and_starts_timer(store, scheduler, presenter, notes):
    app = _app(store, scheduler, presenter, paths=[notes])

    app.start()

    stored = store.raw(CACHE_KEY)
    assert len(stored["questions"]) == 3
    assert stored["documentHashes"] == [str(notes)]
    assert app.timer.is_running is True
    assert app.timer.get_remaining_time() == FIVE_MINUTES_MS
    assert store.raw("session")["statistics"]["questionsAnswered"] == 0


def test_prepare_questions_skips_when_documents_unchanged(
    store, scheduler, presenter, notes
):
    app = _app(store, scheduler, presenter, paths=[notes])
    app.start()
    first = [q.id for q in app.engine.questions]

    assert app.prepare_questions() is None
    assert [q.id for q in app.engine.questions] == first

    forced = app.prepare_questions(force=True)
    assert forced is not None
    assert forced.used_cache is False


def test_start_without_documents_or_cache_still_runs(
    store, scheduler, presenter, tmp_path
):
    app = _app(store, scheduler, presenter, paths=[tmp_path / "missing"])

    app.start()

    assert app.engine.has_questions() is False
    assert app.timer.is_running is True


def test_missing_documents_fall_back_to_cache(scheduler, presenter, tmp_path):
    store = MemoryStore({CACHE_KEY: cache_payload(3)})
    app = _app(store, scheduler, presenter, paths=[tmp_path / "missing"])

    result = app.prepare_questions()

    assert result.used_cache is True
    assert len(result.questions) == 3


def test_expiry_starts_sequence(store, scheduler, presenter, notes):
    app = _app(store, scheduler, presenter, paths=[notes])
    app.start()

    scheduler.advance(5 * 60)

    assert app.orchestrator.state is Stage.SHAKE
    assert presenter.calls[0] == ("begin_stage", Stage.SHAKE)
    assert app.timer.is_running is False
    assert app.timer.get_remaining_time() == FIVE_MINUTES_MS


def test_sequence_end_restarts_timer(store, scheduler, presenter, notes):
    app = _app(store, scheduler, presenter, paths=[notes])
    app.start()
    scheduler.advance(5 * 60)
    _ack_all(app)
    question = app.orchestrator.current_question

    app.orchestrator.on_answer_submit(question.id, question.correct_answer)
    assert app.timer.is_running is False
    scheduler.advance(3)

    assert app.orchestrator.state is Stage.NONE
    assert app.timer.is_running is True
    assert app.timer.started_at == scheduler.clock().isoformat()
    assert app.tracker.get_accuracy() == 100


def test_cancel_restarts_timer(store, scheduler, presenter, notes):
    app = _app(store, scheduler, presenter, paths=[notes])
    app.start()
    scheduler.advance(5 * 60)

    app.orchestrator.cancel_sequence()

    assert app.timer.is_running is True
    assert app.timer.get_remaining_time() == FIVE_MINUTES_MS


def test_no_questions_error_restarts_timer(store, scheduler, presenter):
    app = _app(store, scheduler, presenter)
    app.start()
    scheduler.advance(5 * 60)

    _ack_all(app)

    assert app.orchestrator.state is Stage.NONE
    assert app.timer.is_running is True
    assert presenter.last("show_question")["error"].startswith("No questions")


def test_failed_start_retries_on_next_interval(store, scheduler, notes):
    app = _app(store, scheduler, None, paths=[notes])
    app.start()

    scheduler.advance(5 * 60)
    assert app.timer.is_running is True
    assert app.orchestrator.state is Stage.NONE

    scheduler.advance(5 * 60)
    assert app.timer.is_running is True


def test_trigger_now_interrupts_immediately(store, scheduler, presenter, notes):
    app = _app(store, scheduler, presenter, paths=[notes])
    app.start()

    assert app.trigger_now() is True
    assert app.orchestrator.state is Stage.SHAKE
    assert app.timer.is_running is False


def test_set_interval_updates_running_timer(store, scheduler, presenter, notes):
    app = _app(store, scheduler, presenter, paths=[notes])
    app.start()

    app.set_interval(20)

    assert app.settings.interval == 20
    assert app.timer.get_remaining_time() == 20 * 60 * 1000
    assert app.timer.is_running is True


def test_reset_session_clears_progress(store, scheduler, presenter, notes):
    app = _app(store, scheduler, presenter, paths=[notes])
    app.start()
    scheduler.advance(5 * 60)
    _ack_all(app)
    question = app.orchestrator.current_question
    app.orchestrator.on_answer_submit(question.id, question.correct_answer)
    scheduler.advance(3)

    app.reset_session()

    status = app.status()
    assert status.statistics.questions_answered == 0
    assert status.questions["usedQuestions"] == 0
    assert status.timer.is_running is False
    assert status.accuracy == 0


def test_shutdown_stops_everything(store, scheduler, presenter, notes):
    app = _app(store, scheduler, presenter, paths=[notes])
    app.start()
    app.trigger_now()

    app.shutdown()
    scheduler.advance(60 * 60)

    assert app.orchestrator.state is Stage.NONE
    assert app.timer.is_running is False
    assert store.raw("session")["timerState"]["isRunning"] is False
