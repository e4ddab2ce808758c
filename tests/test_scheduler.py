"""Tests for SamplingScheduler and Debouncer."""

import threading
import time

import pytest

from statbar.scheduler import MIN_INTERVAL, Debouncer, SamplingScheduler


def wait_for(predicate, timeout=3.0):
    """Poll until predicate() is true or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestSamplingScheduler:
    """Tests for SamplingScheduler."""

    def test_align_without_coalescing(self):
        """Test deadlines are untouched when coalescing is off."""
        scheduler = SamplingScheduler(coalescing=False, leeway=0.5)

        assert scheduler.align(10.2) == 10.2

    def test_align_rounds_up_to_leeway(self):
        """Test deadlines slip at most one leeway to a shared boundary."""
        scheduler = SamplingScheduler(coalescing=True, leeway=0.5)

        assert scheduler.align(10.2) == pytest.approx(10.5)
        assert scheduler.align(10.5) == pytest.approx(10.5)
        assert 0 <= scheduler.align(7.01) - 7.01 <= 0.5

    def test_schedule_runs_callback_repeatedly(self):
        """Test a scheduled callback runs on every tick."""
        scheduler = SamplingScheduler(coalescing=False)
        calls = []

        scheduler.schedule("test", 0.1, lambda: calls.append(time.monotonic()))
        try:
            assert wait_for(lambda: len(calls) >= 3)
        finally:
            scheduler.stop()

    def test_timer_thread_is_daemon(self):
        """Test timer threads are named daemon threads."""
        scheduler = SamplingScheduler(coalescing=False)
        names = []

        def record():
            current = threading.current_thread()
            names.append((current.name, current.daemon))

        scheduler.schedule("network", 0.1, record)
        try:
            assert wait_for(lambda: names)
        finally:
            scheduler.stop()

        assert names[0] == ("SamplingScheduler-network", True)

    def test_callback_errors_do_not_stop_timer(self):
        """Test the timer keeps running after a failing callback."""
        scheduler = SamplingScheduler(coalescing=False)
        calls = []

        def flaky():
            calls.append(1)
            raise RuntimeError("sampling failed")

        scheduler.schedule("flaky", 0.1, flaky)
        try:
            assert wait_for(lambda: len(calls) >= 2)
        finally:
            scheduler.stop()

    def test_no_callbacks_after_cancel(self):
        """Test cancel guarantees no further callbacks."""
        scheduler = SamplingScheduler(coalescing=False)
        calls = []

        scheduler.schedule("test", 0.1, lambda: calls.append(1))
        assert wait_for(lambda: calls)
        scheduler.cancel("test")
        count = len(calls)
        time.sleep(0.3)

        assert len(calls) == count
        assert not scheduler.is_scheduled("test")

    def test_cancel_is_idempotent(self):
        """Test cancelling twice or cancelling unknown names is safe."""
        scheduler = SamplingScheduler()
        scheduler.schedule("test", 10.0, lambda: None)

        scheduler.cancel("test")
        scheduler.cancel("test")
        scheduler.cancel("never-scheduled")
        scheduler.stop()

    def test_cancel_returns_promptly_on_long_interval(self):
        """Test a long wait is interrupted by cancel."""
        scheduler = SamplingScheduler()
        scheduler.schedule("slow", 60.0, lambda: None)

        start = time.monotonic()
        scheduler.stop()

        assert time.monotonic() - start < 1.0

    def test_reschedule_takes_effect(self):
        """Test shortening the interval re-arms the running timer."""
        scheduler = SamplingScheduler(coalescing=False)
        calls = []
        scheduler.schedule("test", 60.0, lambda: calls.append(1))
        try:
            assert scheduler.reschedule("test", 0.1)
            assert scheduler.interval("test") == pytest.approx(0.1)
            assert wait_for(lambda: len(calls) >= 2)
        finally:
            scheduler.stop()

    def test_reschedule_unknown_returns_false(self):
        """Test rescheduling an unknown family reports failure."""
        assert SamplingScheduler().reschedule("missing", 1.0) is False

    def test_interval_minimum(self):
        """Test intervals are clamped to a minimum."""
        scheduler = SamplingScheduler()
        scheduler.schedule("fast", 0.001, lambda: None)
        try:
            assert scheduler.interval("fast") == MIN_INTERVAL
        finally:
            scheduler.stop()

    def test_set_coalescing(self):
        """Test coalescing can be toggled at runtime."""
        scheduler = SamplingScheduler(coalescing=True, leeway=0.5)

        scheduler.set_coalescing(False)
        assert scheduler.coalescing is False
        scheduler.set_coalescing(True, leeway=0.25)
        assert scheduler.leeway == 0.25

    def test_cancel_from_own_callback(self):
        """Test a callback may cancel its own timer without deadlocking."""
        scheduler = SamplingScheduler(coalescing=False)
        calls = []

        def once():
            calls.append(1)
            scheduler.cancel("once")

        scheduler.schedule("once", 0.1, once)
        assert wait_for(lambda: calls)
        time.sleep(0.3)

        assert calls == [1]


class TestDebouncer:
    """Tests for Debouncer."""

    def test_burst_collapses_to_one_call(self):
        """Test many triggers within the delay run the callback once."""
        calls = []
        debouncer = Debouncer(0.2, lambda: calls.append(1))

        for _ in range(10):
            debouncer.trigger()
            time.sleep(0.01)

        assert wait_for(lambda: calls)
        time.sleep(0.3)
        assert calls == [1]
        assert not debouncer.pending

    def test_cancel_prevents_call(self):
        """Test a cancelled trigger never fires."""
        calls = []
        debouncer = Debouncer(0.1, lambda: calls.append(1))

        debouncer.trigger()
        debouncer.cancel()
        time.sleep(0.3)

        assert calls == []
