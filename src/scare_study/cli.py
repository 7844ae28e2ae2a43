"""Command-line entry point for scare-study."""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from pathlib import Path
from typing import Callable, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from . import settings as settings_mod
from .app import Application, AppStatus
from .console import ConsolePresenter
from .core import workspace as workspace_mod
from .core.logging import configure_logger
from .core.scheduler import SchedScheduler
from .core.store import JsonFileStore
from .sequence import ERROR, SEQUENCE_CANCELLED, SEQUENCE_END
from .timer import TimerSnapshot

ConsoleFactory = Callable[[], Console]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scare-study",
        description=(
            "Interrupt study sessions with a short scare and a quiz question "
            "drawn from your own notes."
        ),
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to scare_study.toml (defaults to the workspace config).",
    )
    parser.add_argument(
        "--workspace",
        type=Path,
        help=(
            "Override the workspace root (defaults to SCARE_STUDY_DATA_HOME "
            "or ~/.scare-study-data)."
        ),
    )
    parser.add_argument(
        "--interval",
        type=int,
        help="Minutes between interruptions (5-120).",
    )
    parser.add_argument(
        "--log-level",
        help="File log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=None,
        help="Mirror log records to stderr.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser(
        "init",
        help="Create the workspace and write the default config template.",
    )
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file if present.",
    )

    generate_parser = subparsers.add_parser(
        "generate",
        help="Build the question cache from study documents.",
    )
    generate_parser.add_argument(
        "paths",
        nargs="*",
        type=Path,
        help="Files or directories to read (defaults to [documents] paths).",
    )
    generate_parser.add_argument(
        "--force",
        action="store_true",
        help="Regenerate even when the document set is unchanged.",
    )

    run_parser = subparsers.add_parser(
        "run",
        help="Start the countdown and interrupt when it expires.",
    )
    run_parser.add_argument(
        "--once",
        action="store_true",
        help="Interrupt immediately, then exit after one sequence.",
    )
    run_parser.add_argument(
        "--stage-seconds",
        type=float,
        default=1.0,
        help="Pause between presentation stages.",
    )

    subparsers.add_parser(
        "status",
        help="Show the timer, session statistics and question pool.",
    )
    subparsers.add_parser(
        "reset",
        help="Reset session statistics, used questions and the countdown.",
    )
    return parser


def _load(
    args: argparse.Namespace,
    *,
    document_paths: Optional[Sequence[Path]] = None,
) -> settings_mod.LoadResult:
    overrides = settings_mod.SettingsOverrides(
        interval=args.interval,
        document_paths=document_paths or None,
        log_level=args.log_level,
        verbose=args.verbose,
    )
    result = settings_mod.load_settings(
        config_path=args.config,
        overrides=overrides,
        workspace_path=args.workspace,
    )
    configure_logger(
        log_dir=result.layout.path_for("logs"),
        level=result.settings.log_level,
        verbose=result.settings.verbose,
    )
    return result


def _build_app(
    loaded: settings_mod.LoadResult,
    scheduler: SchedScheduler,
    presenter: Optional[ConsolePresenter] = None,
) -> Application:
    store = JsonFileStore(loaded.layout.path_for("state"))
    app = Application(
        loaded.settings, store, scheduler, presenter=presenter
    )
    if presenter is not None:
        presenter.bind(app.orchestrator)
    return app


def _handle_init(args: argparse.Namespace, console: Console) -> int:
    try:
        layout = workspace_mod.ensure_workspace(path=args.workspace)
    except workspace_mod.WorkspaceError as exc:
        _print_error(str(exc))
        return 2
    target = args.config or (
        layout.path_for("config") / settings_mod.CONFIG_FILENAME
    )
    try:
        settings_mod.write_default_config(target, overwrite=args.force)
    except settings_mod.SettingsError as exc:
        _print_error(str(exc))
        return 2
    console.print(f"Workspace ready at {layout.home}")
    console.print(f"Wrote config template to {target}")
    return 0


def _handle_generate(args: argparse.Namespace, console: Console) -> int:
    try:
        loaded = _load(args, document_paths=args.paths)
    except settings_mod.SettingsError as exc:
        _print_error(str(exc))
        return 2
    if not loaded.settings.document_paths:
        _print_error(
            "No study documents configured. Pass paths or set "
            "[documents] paths in the config."
        )
        return 2

    app = _build_app(loaded, SchedScheduler())
    result = app.prepare_questions(force=args.force)
    if result is None:
        stats = app.engine.get_session_stats()
        console.print(
            f"Question cache is up to date ({stats['totalQuestions']} "
            "questions)."
        )
        return 0
    if result.error:
        _print_error(result.error)
        return 1
    source = "cached" if result.used_cache else "generated"
    console.print(f"Ready with {len(result.questions)} {source} question(s).")
    return 0


def _handle_run(args: argparse.Namespace, console: Console) -> int:
    try:
        loaded = _load(args)
    except settings_mod.SettingsError as exc:
        _print_error(str(exc))
        return 2

    scheduler = SchedScheduler()
    presenter = ConsolePresenter(
        console,
        lambda: console.input("[bold]> [/]"),
        scheduler,
        stage_seconds=max(0.0, args.stage_seconds),
    )
    app = _build_app(loaded, scheduler, presenter)
    app.start()

    if args.once:
        for event in (SEQUENCE_END, SEQUENCE_CANCELLED, ERROR):
            app.events.subscribe(event, lambda _payload: scheduler.stop())
        if not app.trigger_now() and not app.orchestrator.is_active():
            app.shutdown()
            return 1
    else:
        console.print(
            f"Next interruption in {app.timer.get_remaining_minutes()} "
            "minute(s). Press Ctrl+C to stop."
        )

    try:
        scheduler.run()
    except KeyboardInterrupt:
        console.print("\n[bold yellow]Stopping.[/]")
    finally:
        app.shutdown()
    return 0


def _handle_status(args: argparse.Namespace, console: Console) -> int:
    try:
        loaded = _load(args)
    except settings_mod.SettingsError as exc:
        _print_error(str(exc))
        return 2

    app = _build_app(loaded, SchedScheduler())
    app.tracker.load()
    app.engine.load_cache()
    status = app.status()
    snapshot = app.timer.load_snapshot()
    if snapshot is not None:
        status = replace(status, timer=snapshot)
    else:
        status = replace(
            status,
            timer=TimerSnapshot(
                remaining_time=loaded.settings.interval * 60 * 1000,
                is_running=False,
                started_at=None,
                interval=loaded.settings.interval,
            ),
        )
    _render_status(console, status)
    return 0


def _handle_reset(args: argparse.Namespace, console: Console) -> int:
    try:
        loaded = _load(args)
    except settings_mod.SettingsError as exc:
        _print_error(str(exc))
        return 2

    app = _build_app(loaded, SchedScheduler())
    app.tracker.load()
    app.engine.load_cache()
    app.reset_session()
    console.print("Session reset.")
    return 0


def _render_status(console: Console, status: AppStatus) -> None:
    table = Table(title="scare-study", box=box.SIMPLE, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    remaining_minutes = -(-max(0, status.timer.remaining_time) // 60000)
    table.add_row("Interval", f"{status.timer.interval} min")
    table.add_row("Timer", "running" if status.timer.is_running else "stopped")
    table.add_row("Remaining", f"{remaining_minutes} min")

    stats = status.statistics
    table.add_row("Session length", status.duration)
    table.add_row(
        "Answered",
        f"{stats.correct_answers}/{stats.questions_answered} "
        f"({status.accuracy}%)",
    )
    table.add_row(
        "Streak", f"{stats.current_streak} (best {stats.best_streak})"
    )

    questions = status.questions
    table.add_row(
        "Questions",
        f"{questions['remainingQuestions']} unused of "
        f"{questions['totalQuestions']}",
    )
    table.add_row("Documents", str(questions["documentCount"]))
    table.add_row("Generated", str(questions["cacheGenerated"] or "never"))
    console.print(table)


def main(
    argv: Sequence[str] | None = None,
    *,
    console_factory: Optional[ConsoleFactory] = None,
) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    console = (console_factory or Console)()

    handlers = {
        "init": _handle_init,
        "generate": _handle_generate,
        "run": _handle_run,
        "status": _handle_status,
        "reset": _handle_reset,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.error("Command not implemented yet.")
        return 2
    return handler(args, console)


def _print_error(message: str) -> None:
    sys.stderr.write(message + "\n")


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
