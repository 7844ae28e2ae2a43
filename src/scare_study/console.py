"""Rich-powered terminal presenter for the interruption sequence.

The presenter narrates each stage, acknowledges it after a short pause on
the shared scheduler, renders the question as a table and reads the answer
from an injectable input provider so tests can drive it without a TTY.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Literal, Mapping, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .core.scheduler import Scheduler
from .questions.models import MULTIPLE_CHOICE
from .sequence import SequenceOrchestrator, Stage

InputProvider = Callable[[], str]

STAGE_LINES = {
    Stage.SHAKE: ("The screen starts to tremble...", "yellow"),
    Stage.DARKEN: ("The lights are fading...", "bright_black"),
    Stage.TUNNEL: ("Everything narrows to a single point...", "magenta"),
    Stage.JUMPSCARE: ("BOO!", "bold red"),
}

_CANCEL_WORDS = {"q", "quit", "exit", "esc", "escape"}


@dataclass(frozen=True)
class AnswerCommand:
    """Normalized console input for an open question."""

    type: Literal["answer", "cancel"]
    value: Any = None


def parse_answer(
    raw: Optional[str], payload: Mapping[str, Any]
) -> Optional[AnswerCommand]:
    """Turn raw input into an answer index/text or a cancel request.

    Multiple-choice questions accept a letter (``A``) or a 1-based number.
    Returns ``None`` when the input cannot be used.
    """

    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    if text.lower() in _CANCEL_WORDS:
        return AnswerCommand("cancel")
    if payload.get("type") != MULTIPLE_CHOICE:
        return AnswerCommand("answer", text)

    count = len(payload.get("options") or ())
    if text.isdigit():
        index = int(text) - 1
    elif len(text) == 1 and text.isalpha():
        index = ord(text.upper()) - ord("A")
    else:
        return None
    if 0 <= index < count:
        return AnswerCommand("answer", index)
    return None


class ConsolePresenter:
    """Presenter that plays the sequence in a terminal."""

    def __init__(
        self,
        console: Console,
        input_provider: InputProvider,
        scheduler: Scheduler,
        *,
        stage_seconds: float = 1.0,
    ) -> None:
        self._console = console
        self._input = input_provider
        self._scheduler = scheduler
        self._stage_seconds = stage_seconds
        self._orchestrator: Optional[SequenceOrchestrator] = None

    def bind(self, orchestrator: SequenceOrchestrator) -> None:
        self._orchestrator = orchestrator

    def begin_stage(self, stage: Stage) -> None:
        line, style = STAGE_LINES.get(stage, (stage.value, "white"))
        if stage is Stage.SHAKE:
            self._console.print()
            self._console.rule(Text("Study break", style="bold red"))
        self._console.print(Text(line, style=style))
        self._scheduler.call_later(
            self._stage_seconds, lambda: self._acknowledge(stage)
        )

    def show_question(self, payload: Mapping[str, Any]) -> None:
        if payload.get("error"):
            self._console.print(
                Panel(
                    str(payload["error"]),
                    title="Study break",
                    border_style="red",
                )
            )
            return
        self._render_question(payload)
        self._scheduler.call_later(0, lambda: self._prompt(payload))

    def show_feedback(self, payload: Mapping[str, Any]) -> None:
        correct = bool(payload.get("correct"))
        body = Text(str(payload.get("message", "")), style="bold")
        if not correct:
            answer = payload.get("correctAnswer")
            if answer:
                body.append(f"\nCorrect answer: {answer}", style="green")
            explanation = payload.get("explanation")
            if explanation:
                body.append(f"\n{explanation}", style="dim")
        self._console.print(
            Panel(
                body,
                title="Correct" if correct else "Incorrect",
                border_style="green" if correct else "red",
            )
        )

    def hide(self) -> None:
        self._console.rule(Text("Back to studying", style="dim"))

    def _acknowledge(self, stage: Stage) -> None:
        if self._orchestrator is not None:
            self._orchestrator.on_stage_complete(stage)

    def _render_question(self, payload: Mapping[str, Any]) -> None:
        self._console.print(Text(str(payload.get("text", "")), style="bold"))
        options = list(payload.get("options") or ())
        if payload.get("type") == MULTIPLE_CHOICE and options:
            table = Table(show_header=False, box=box.SIMPLE, expand=True)
            table.add_column("Key", justify="center", style="cyan")
            table.add_column("Choice")
            for index, option in enumerate(options):
                table.add_row(chr(ord("A") + index), str(option))
            self._console.print(table)
            keys = ", ".join(chr(ord("A") + i) for i in range(len(options)))
            hint = f"Answer with [{keys}] or 1-{len(options)}; q to skip"
        else:
            hint = "Type your answer; q to skip"
        self._console.print(Text(hint, style="dim"))

    def _prompt(self, payload: Mapping[str, Any]) -> None:
        orchestrator = self._orchestrator
        if orchestrator is None:
            return
        question_id = str(payload.get("id", ""))
        while True:
            try:
                raw = self._input()
            except (EOFError, KeyboardInterrupt, StopIteration):
                self._console.print("\n[bold yellow]Question skipped.[/]")
                orchestrator.cancel_sequence()
                return
            command = parse_answer(raw, payload)
            if command is None:
                self._console.print("[red]Unrecognized answer. Try again.[/]")
                continue
            if command.type == "cancel":
                orchestrator.cancel_sequence()
                return
            orchestrator.on_answer_submit(question_id, command.value)
            return
