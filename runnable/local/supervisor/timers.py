import time
import heapq
import logging
import itertools
from typing import Callable, List, Optional, Tuple

log = logging.getLogger(__name__)


class Timer:
    """A one-shot callback scheduled on a Scheduler."""

    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def pending(self) -> bool:
        return not (self.cancelled or self.fired)


class Scheduler:
    """
    Non-blocking one-shot timers driven by the supervision loop.

    Nothing runs on its own: `run_due()` is called once per loop tick and fires
    every timer whose due time has been reached. A timer never fires before its
    due time, only at or after it.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock
        self._heap: List[Tuple[float, int, Timer]] = []
        self._counter = itertools.count()

    def __len__(self) -> int:
        return sum(1 for _, _, timer in self._heap if timer.pending)

    def call_later(self, delay: float, callback: Callable[[], None]) -> Timer:
        """
        Schedules `callback` to run `delay` seconds from now.

        :param delay: Seconds from now, negative values are treated as 0.
        :param callback: A callable taking no arguments.
        :return: The Timer, which can be cancelled.
        """
        timer = Timer(self.clock() + max(0.0, delay), callback)
        heapq.heappush(self._heap, (timer.due, next(self._counter), timer))
        return timer

    def next_due(self) -> Optional[float]:
        """Returns the due time of the earliest pending timer, if any."""
        while self._heap and not self._heap[0][2].pending:
            heapq.heappop(self._heap)
        return self._heap[0][0] if self._heap else None

    def run_due(self) -> int:
        """
        Fires all timers that are due.

        :return: The number of callbacks that ran.
        """
        now = self.clock()
        fired = 0
        while self._heap and self._heap[0][0] <= now:
            _, _, timer = heapq.heappop(self._heap)
            if not timer.pending:
                continue
            timer.fired = True
            try:
                timer.callback()
            except Exception as e:
                log.error(f"Timer callback {timer.callback!r} failed: {e}", exc_info=True)
            fired += 1
        return fired
