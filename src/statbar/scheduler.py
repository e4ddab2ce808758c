"""Periodic timers for the sampling families."""

import logging
import math
import threading
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)

MIN_INTERVAL = 0.1  # seconds


class _PeriodicTimer:
    """A named daemon thread calling ``callback`` every ``interval`` seconds."""

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], None],
        scheduler: "SamplingScheduler",
    ) -> None:
        self.name = name
        self.interval = interval
        self._callback = callback
        self._scheduler = scheduler
        self._wake = threading.Event()
        self._cancelled = False
        self.thread = threading.Thread(
            target=self._run,
            daemon=True,
            name=f"SamplingScheduler-{name}",
        )

    def start(self) -> None:
        self.thread.start()

    def rearm(self) -> None:
        self._wake.set()

    def cancel(self) -> None:
        self._cancelled = True
        self._wake.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _run(self) -> None:
        deadline = self._scheduler.align(time.monotonic() + self.interval)
        while not self._cancelled:
            timeout = max(0.0, deadline - time.monotonic())
            if self._wake.wait(timeout=timeout):
                # Woken early: cancelled or interval changed
                self._wake.clear()
                deadline = self._scheduler.align(time.monotonic() + self.interval)
                continue
            if self._cancelled:
                break

            try:
                self._callback()
            except Exception:
                logger.exception("Sampling callback %r failed", self.name)

            now = time.monotonic()
            deadline += self.interval
            if deadline <= now:
                # Missed ticks are dropped rather than replayed
                deadline = now + self.interval
            deadline = self._scheduler.align(deadline)


class SamplingScheduler:
    """
    Runs one periodic timer per metric family.

    Each family gets its own daemon thread, so a slow sampler never delays
    another family and samples within a family stay in order. With
    coalescing enabled a deadline may slip by up to ``leeway`` seconds so
    that timers of different families wake up together.
    """

    def __init__(self, coalescing: bool = True, leeway: float = 0.5) -> None:
        """
        Initialize the SamplingScheduler.

        Args:
            coalescing: Whether deadlines may be delayed to align wakeups.
            leeway: Coalescing tolerance in seconds.
        """
        self._coalescing = coalescing
        self._leeway = max(0.0, leeway)
        self._timers: dict[str, _PeriodicTimer] = {}
        self._lock = threading.Lock()

    @property
    def coalescing(self) -> bool:
        return self._coalescing

    @property
    def leeway(self) -> float:
        return self._leeway

    def set_coalescing(self, enabled: bool, leeway: float | None = None) -> None:
        """Change coalescing for every timer; running timers are re-armed."""
        self._coalescing = enabled
        if leeway is not None:
            self._leeway = max(0.0, leeway)
        with self._lock:
            timers = list(self._timers.values())
        for timer in timers:
            timer.rearm()

    def align(self, deadline: float) -> float:
        """Round ``deadline`` up to the next leeway boundary when coalescing."""
        if not self._coalescing or self._leeway <= 0:
            return deadline
        return math.ceil(deadline / self._leeway) * self._leeway

    def schedule(self, name: str, interval: float, callback: Callable[[], None]) -> None:
        """
        Start calling ``callback`` every ``interval`` seconds.

        The first call happens one interval from now. Scheduling a name that
        is already scheduled replaces the old timer.
        """
        self.cancel(name)
        timer = _PeriodicTimer(name, max(MIN_INTERVAL, interval), callback, self)
        with self._lock:
            self._timers[name] = timer
        timer.start()
        logger.debug("Scheduled %s every %.2fs", name, timer.interval)

    def reschedule(self, name: str, interval: float) -> bool:
        """Change a family's interval; returns False if it is not scheduled."""
        with self._lock:
            timer = self._timers.get(name)
        if timer is None:
            return False
        timer.interval = max(MIN_INTERVAL, interval)
        timer.rearm()
        logger.debug("Rescheduled %s every %.2fs", name, timer.interval)
        return True

    def interval(self, name: str) -> float | None:
        with self._lock:
            timer = self._timers.get(name)
        return timer.interval if timer is not None else None

    def is_scheduled(self, name: str) -> bool:
        with self._lock:
            return name in self._timers

    def cancel(self, name: str, timeout: float | None = None) -> None:
        """
        Stop a family's timer.

        Safe from any thread and idempotent. Once this returns no new
        callback for the family will start.
        """
        with self._lock:
            timer = self._timers.pop(name, None)
        if timer is None:
            return
        timer.cancel()
        if timer.thread is not threading.current_thread() and timer.thread.is_alive():
            timer.thread.join(timeout=timeout)

    def stop(self, timeout: float | None = None) -> None:
        """Cancel every timer."""
        with self._lock:
            names = list(self._timers)
        for name in names:
            self.cancel(name, timeout=timeout)


class Debouncer:
    """Collapses bursts of ``trigger()`` calls into a single ``callback``."""

    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self._delay = delay
        self._callback = callback
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def trigger(self) -> None:
        """(Re)start the delay; the callback runs once it elapses quietly."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _fire(self) -> None:
        with self._lock:
            if self._timer is not threading.current_thread():
                return
            self._timer = None
        try:
            self._callback()
        except Exception:
            logger.exception("Debounced callback failed")
