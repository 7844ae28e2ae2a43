"""Resumable countdown that triggers the interruption sequence.

The timer ticks once per second on the injected scheduler, flushes a
snapshot to the ``timerState`` section of the session document every ten
ticks, and survives restarts by replaying wall-clock time elapsed since the
countdown started.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, MutableMapping, Optional

from .core.events import EventBus
from .core.logging import get_logger
from .core.scheduler import Scheduler
from .core.store import DocumentStore, StoreError, update_section
from .settings import validate_interval

__all__ = [
    "SESSION_KEY",
    "TimerSnapshot",
    "TimerCoordinator",
]

SESSION_KEY = "session"
TIMER_SECTION = "timerState"

TICK_MS = 1000
SAVE_EVERY_TICKS = 10
EXPIRED = "expired"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class TimerSnapshot:
    remaining_time: int
    is_running: bool
    started_at: Optional[str]
    interval: int

    def to_dict(self) -> MutableMapping[str, Any]:
        return {
            "remainingTime": self.remaining_time,
            "isRunning": self.is_running,
            "startedAt": self.started_at,
            "interval": self.interval,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TimerSnapshot":
        started = payload.get("startedAt")
        return cls(
            remaining_time=int(payload.get("remainingTime", 0)),
            is_running=bool(payload.get("isRunning", False)),
            started_at=str(started) if started else None,
            interval=int(payload.get("interval", 0)),
        )


class TimerCoordinator:
    """Countdown toward the configured interval (5-120 minutes).

    ``interval_provider`` is read on every start and reset so configuration
    edits take effect on the next cycle; use :meth:`on_interval_changed` to
    apply one immediately.
    """

    def __init__(
        self,
        interval_provider: Callable[[], int],
        store: DocumentStore,
        scheduler: Scheduler,
        *,
        clock: Callable[[], datetime] = _utc_now,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._interval_provider = interval_provider
        self._store = store
        self._scheduler = scheduler
        self._clock = clock
        self._logger = logger or get_logger("timer")
        self._events = EventBus(logger=self._logger)

        self._handle: Any = None
        self._ticks = 0
        self.remaining_time = 0
        self.is_running = False
        self.started_at: Optional[str] = None
        self.current_interval = 0

    # ------------------------------------------------------------------
    # Lifecycle

    def initialize(self) -> None:
        """Resume a persisted countdown or start from a fresh interval."""
        self.current_interval = self._read_interval()
        snapshot = self.load_snapshot()
        if snapshot is None or not snapshot.is_running:
            self.reset()
            return

        started = _parse_timestamp(snapshot.started_at)
        if started is None:
            self.reset()
            return
        elapsed_ms = (self._clock() - started).total_seconds() * 1000
        remaining = int(snapshot.remaining_time - elapsed_ms)
        if remaining <= 0:
            self._logger.info("Persisted countdown already elapsed; resetting")
            self.reset()
            return

        self._logger.info(
            "Resuming countdown", extra={"remaining_ms": remaining}
        )
        self.remaining_time = remaining
        self.started_at = snapshot.started_at
        self._start_countdown()

    def start(self) -> None:
        if self.is_running:
            self._logger.debug("Timer already running")
            return
        self._start_fresh(self._read_interval())

    def stop(self) -> None:
        if not self.is_running:
            return
        self._cancel_tick()
        self.is_running = False
        self._save()

    def reset(self) -> None:
        self.stop()
        self.current_interval = self._read_interval()
        self.remaining_time = self.current_interval * 60 * 1000
        self.started_at = None
        self._save()

    def on_interval_changed(self, new_interval: int) -> None:
        """Adopt ``new_interval``; a running countdown restarts with it."""
        minutes = validate_interval(new_interval)
        was_running = self.is_running
        self._logger.info(
            "Timer interval changed",
            extra={"old": self.current_interval, "new": minutes},
        )
        self.stop()
        if was_running:
            self._start_fresh(minutes)
            return
        self.current_interval = minutes
        self.remaining_time = minutes * 60 * 1000
        self._save()

    def on_expire(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Subscribe to expiry; returns an unsubscribe callable."""
        return self._events.subscribe(EXPIRED, lambda _payload: callback())

    def destroy(self) -> None:
        self.stop()
        self._events.clear()

    # ------------------------------------------------------------------
    # Queries

    def get_remaining_time(self) -> int:
        return max(0, int(self.remaining_time))

    def get_remaining_minutes(self) -> int:
        return -(-self.get_remaining_time() // 60000)

    def get_status(self) -> TimerSnapshot:
        return TimerSnapshot(
            remaining_time=self.get_remaining_time(),
            is_running=self.is_running,
            started_at=self.started_at,
            interval=self.current_interval,
        )

    # ------------------------------------------------------------------
    # Internals

    def _read_interval(self) -> int:
        return validate_interval(self._interval_provider())

    def _start_fresh(self, minutes: int) -> None:
        self.current_interval = minutes
        self.remaining_time = minutes * 60 * 1000
        self.started_at = self._clock().isoformat()
        self._start_countdown()
        self._save()

    def _start_countdown(self) -> None:
        self._cancel_tick()
        self.is_running = True
        self._ticks = 0
        self._schedule_tick()

    def _schedule_tick(self) -> None:
        self._handle = self._scheduler.call_later(TICK_MS / 1000, self._tick)

    def _cancel_tick(self) -> None:
        if self._handle is not None:
            self._scheduler.cancel(self._handle)
            self._handle = None

    def _tick(self) -> None:
        self._handle = None
        if not self.is_running:
            return
        self.remaining_time -= TICK_MS
        if self.remaining_time <= 0:
            self._on_expired()
            return
        self._ticks += 1
        if self._ticks % SAVE_EVERY_TICKS == 0:
            self._save()
        self._schedule_tick()

    def _on_expired(self) -> None:
        self.remaining_time = 0
        self.stop()
        self._logger.info("Timer expired")
        self._events.emit(EXPIRED)
        # A listener may already have restarted the countdown.
        if not self.is_running:
            self.reset()

    def load_snapshot(self) -> Optional[TimerSnapshot]:
        """Read the persisted snapshot without touching the live countdown."""
        try:
            payload = self._store.load(SESSION_KEY)
        except (StoreError, OSError) as exc:
            self._logger.warning(
                "Session state unreadable; ignoring timer snapshot",
                extra={"error": str(exc)},
            )
            return None
        section = (payload or {}).get(TIMER_SECTION)
        if not isinstance(section, Mapping):
            return None
        try:
            return TimerSnapshot.from_dict(section)
        except (TypeError, ValueError) as exc:
            self._logger.warning(
                "Malformed timer snapshot ignored", extra={"error": str(exc)}
            )
            return None

    def _save(self) -> None:
        payload = self.get_status().to_dict()
        payload["savedAt"] = self._clock().isoformat()
        try:
            update_section(self._store, SESSION_KEY, TIMER_SECTION, payload)
        except (StoreError, OSError) as exc:
            self._logger.error(
                "Failed to save timer state", extra={"error": str(exc)}
            )
