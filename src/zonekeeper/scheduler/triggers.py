"""Trigger sources that drive renewal ticks.

Brief:
  The renewal logic never sleeps or schedules itself; a Trigger decides when
  ticks happen. OnceTrigger serves cron-style invocations (one pass per
  process), IntervalTrigger serves the long-running daemon mode.
"""

from __future__ import annotations

import abc
import datetime
import logging
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Trigger(abc.ABC):
    """Invoke a tick callback according to some schedule."""

    @abc.abstractmethod
    def run(self, tick: Callable[[], Any]) -> Any:
        """Run ticks; return the result of the last tick that completed."""


class OnceTrigger(Trigger):
    def run(self, tick: Callable[[], Any]) -> Any:
        return tick()


class IntervalTrigger(Trigger):
    """Brief: Tick immediately, then once per interval until stopped.

    Inputs:
      - interval: Time between the start of consecutive waits.
      - stop_event: Optional threading.Event; setting it ends run().
      - max_ticks: Optional upper bound on ticks (None runs until stopped).

    Outputs:
      - run() returns the last tick's result.
    """

    def __init__(
        self,
        interval: datetime.timedelta,
        *,
        stop_event: Optional[threading.Event] = None,
        max_ticks: Optional[int] = None,
    ) -> None:
        if interval.total_seconds() <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.stop_event = stop_event or threading.Event()
        self.max_ticks = max_ticks
        self.ticks = 0

    def stop(self) -> None:
        self.stop_event.set()

    def run(self, tick: Callable[[], Any]) -> Any:
        result = None
        while not self.stop_event.is_set():
            try:
                result = tick()
            except Exception:
                logger.exception("Renewal tick failed; retrying at the next interval")
            self.ticks += 1
            if self.max_ticks is not None and self.ticks >= self.max_ticks:
                break
            self.stop_event.wait(self.interval.total_seconds())
        return result
