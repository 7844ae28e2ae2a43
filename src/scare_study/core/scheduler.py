"""Deferred-callback seam for the single-threaded runtime.

The countdown tick and the post-answer termination delay are the only timed
work in scare-study. Both go through :class:`Scheduler` so production code
runs on :class:`SchedScheduler` while tests advance a virtual clock.
"""

from __future__ import annotations

import sched
import time
from typing import Any, Callable, Optional, Protocol

__all__ = ["Scheduler", "SchedScheduler"]


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> Any:
        """Run ``callback`` after ``delay`` seconds; return a handle."""

    def cancel(self, handle: Any) -> None:
        """Cancel a pending handle; unknown or fired handles are ignored."""


class SchedScheduler:
    """:class:`Scheduler` backed by :class:`sched.scheduler`.

    ``run()`` blocks the calling thread and dispatches callbacks until the
    queue drains or :meth:`stop` is called from inside a callback.
    """

    def __init__(
        self,
        timefunc: Callable[[], float] = time.monotonic,
        delayfunc: Callable[[float], None] = time.sleep,
    ) -> None:
        self._sched = sched.scheduler(timefunc, delayfunc)
        self._delay = delayfunc
        self._stopped = False

    def call_later(
        self, delay: float, callback: Callable[[], None]
    ) -> sched.Event:
        return self._sched.enter(max(0.0, delay), 0, callback)

    def cancel(self, handle: Optional[sched.Event]) -> None:
        if handle is None:
            return
        try:
            self._sched.cancel(handle)
        except ValueError:
            # Already fired or cancelled.
            return

    def stop(self) -> None:
        self._stopped = True
        for event in list(self._sched.queue):
            self.cancel(event)

    def run(self) -> None:
        self._stopped = False
        while not self._stopped and not self._sched.empty():
            deadline = self._sched.run(blocking=False)
            if deadline is not None and not self._stopped:
                self._delay(min(deadline, 0.25))

    @property
    def pending(self) -> int:
        return len(self._sched.queue)
