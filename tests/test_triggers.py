"""
Brief: Tests for zonekeeper.scheduler.triggers.

Inputs:
  - None

Outputs:
  - None
"""

import datetime
import threading

import pytest

from zonekeeper.scheduler.triggers import IntervalTrigger, OnceTrigger


def test_once_trigger_runs_single_tick():
    """
    Brief: OnceTrigger invokes the tick exactly once and returns its result.

    Inputs:
      - counting tick

    Outputs:
      - None: Asserts one call and the returned value
    """
    calls = []
    assert OnceTrigger().run(lambda: calls.append(1) or "done") == "done"
    assert calls == [1]


def test_interval_trigger_honours_max_ticks():
    """
    Brief: IntervalTrigger stops after max_ticks and returns the last result.

    Inputs:
      - 3 ticks with a 10ms interval

    Outputs:
      - None: Asserts tick count and result
    """
    counter = iter(range(100))
    trigger = IntervalTrigger(datetime.timedelta(milliseconds=10), max_ticks=3)
    assert trigger.run(lambda: next(counter)) == 2
    assert trigger.ticks == 3


def test_interval_trigger_stops_from_another_thread():
    """
    Brief: stop() ends a long wait promptly.

    Inputs:
      - 1 hour interval stopped after the first tick

    Outputs:
      - None: Asserts the runner thread exits
    """
    first_tick = threading.Event()
    trigger = IntervalTrigger(datetime.timedelta(hours=1))

    def tick():
        first_tick.set()
        return "ok"

    result = {}
    runner = threading.Thread(target=lambda: result.setdefault("value", trigger.run(tick)))
    runner.start()
    assert first_tick.wait(2)
    trigger.stop()
    runner.join(2)
    assert not runner.is_alive()
    assert result["value"] == "ok"
    assert trigger.ticks == 1


def test_interval_trigger_survives_failing_tick():
    """
    Brief: An exception in one tick does not end the loop.

    Inputs:
      - tick raising on its first call

    Outputs:
      - None: Asserts the second tick ran
    """
    calls = []

    def tick():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("transient")
        return len(calls)

    trigger = IntervalTrigger(datetime.timedelta(milliseconds=1), max_ticks=2)
    assert trigger.run(tick) == 2


def test_interval_must_be_positive():
    """
    Brief: A zero interval is rejected.

    Inputs:
      - timedelta(0)

    Outputs:
      - None: Asserts ValueError
    """
    with pytest.raises(ValueError):
        IntervalTrigger(datetime.timedelta(0))
