from __future__ import annotations

import random

import pytest
from rich.console import Console

from fixtures import cache_payload
from scare_study.console import AnswerCommand, ConsolePresenter, parse_answer
from scare_study.core.events import EventBus
from scare_study.questions import CACHE_KEY, MULTIPLE_CHOICE, TEXT, QuestionEngine
from scare_study.sequence import (
    NO_QUESTIONS_MESSAGE,
    SEQUENCE_CANCELLED,
    SEQUENCE_END,
    SequenceOrchestrator,
    Stage,
)
from scare_study.session import SessionTracker

MC_PAYLOAD = {
    "id": "q1",
    "text": "What is ______?",
    "type": MULTIPLE_CHOICE,
    "options": ["Alpha", "Beta", "Gamma", "Delta"],
}


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("b", AnswerCommand("answer", 1)),
        ("D", AnswerCommand("answer", 3)),
        (" 2 ", AnswerCommand("answer", 1)),
        ("q", AnswerCommand("cancel")),
        ("ESC", AnswerCommand("cancel")),
        ("e", None),
        ("5", None),
        ("0", None),
        ("", None),
        (None, None),
        ("beta", None),
    ],
)
def test_parse_answer_multiple_choice(raw, expected):
    assert parse_answer(raw, MC_PAYLOAD) == expected


def test_parse_answer_free_text():
    payload = {"id": "t", "text": "Capital?", "type": TEXT, "options": []}

    assert parse_answer("  Paris ", payload) == AnswerCommand("answer", "Paris")
    assert parse_answer("quit", payload) == AnswerCommand("cancel")


class ConsoleRig:
    def __init__(self, store, scheduler, inputs):
        store.save(CACHE_KEY, cache_payload(2))
        self.scheduler = scheduler
        self.console = Console(record=True, width=100, color_system=None)
        feed = iter(inputs)
        self.presenter = ConsolePresenter(
            self.console, lambda: next(feed), scheduler, stage_seconds=1.0
        )
        self.events = EventBus()
        self.seen = []
        for name in (SEQUENCE_END, SEQUENCE_CANCELLED):
            self.events.subscribe(name, lambda _p, name=name: self.seen.append(name))
        tracker = SessionTracker(store, clock=scheduler.clock)
        tracker.load()
        self.tracker = tracker
        self.orchestrator = SequenceOrchestrator(
            QuestionEngine(store, rng=random.Random(5)),
            tracker,
            scheduler,
            events=self.events,
            presenter=self.presenter,
            rng=random.Random(5),
        )
        self.presenter.bind(self.orchestrator)

    def text(self) -> str:
        return self.console.export_text()


def test_full_sequence_in_terminal(store, scheduler):
    rig = ConsoleRig(store, scheduler, ["x", "B"])

    rig.orchestrator.start_sequence()
    scheduler.advance(3)
    assert rig.orchestrator.state is Stage.JUMPSCARE

    scheduler.advance(1)
    assert rig.orchestrator.state is Stage.ANSWERED
    scheduler.advance(3)

    output = rig.text()
    assert "The screen starts to tremble" in output
    assert "BOO!" in output
    assert "What is ______ number" in output
    assert "Beta" in output
    assert "Unrecognized answer" in output
    assert "Correct" in output
    assert "Back to studying" in output
    assert rig.seen == [SEQUENCE_END]
    assert rig.tracker.get_statistics().correct_answers == 1


def test_incorrect_answer_shows_correction(store, scheduler):
    rig = ConsoleRig(store, scheduler, ["1"])

    rig.orchestrator.start_sequence()
    scheduler.advance(4)

    output = rig.text()
    assert "Incorrect" in output
    assert "Correct answer: Beta" in output


@pytest.mark.parametrize("inputs", [["q"], []])
def test_skip_or_eof_cancels(store, scheduler, inputs):
    rig = ConsoleRig(store, scheduler, inputs)

    rig.orchestrator.start_sequence()
    scheduler.advance(4)

    assert rig.seen == [SEQUENCE_CANCELLED]
    assert rig.orchestrator.state is Stage.NONE
    assert rig.tracker.get_statistics().questions_answered == 0


def test_error_payload_renders_panel(scheduler):
    console = Console(record=True, width=100, color_system=None)
    presenter = ConsolePresenter(console, lambda: "", scheduler)

    presenter.show_question({"error": NO_QUESTIONS_MESSAGE})

    assert "No questions available" in console.export_text()
    assert scheduler.pending == 0


def test_unbound_presenter_does_not_acknowledge(scheduler):
    console = Console(record=True, width=100, color_system=None)
    presenter = ConsolePresenter(console, lambda: "", scheduler)

    presenter.begin_stage(Stage.SHAKE)
    scheduler.advance(2)

    assert "Study break" in console.export_text()
