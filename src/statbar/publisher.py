"""Published metrics surface read by the presentation layer."""

import logging
import threading
from collections.abc import Callable
from typing import Generic, TypeVar

from statbar.models import HostSample, NetworkSample, ProcessBandwidthRecord, TemperatureSample

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SnapshotCell(Generic[T]):
    """
    Single-writer, multi-reader holder for an immutable snapshot.

    ``set`` swaps the value under a lock and bumps ``version``; readers
    always see a complete value. Subscribers run on the writer's thread
    after the swap.
    """

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._version = 0
        self._lock = threading.Lock()
        self._subscribers: list[Callable[[T], None]] = []

    def get(self) -> T:
        """Return the latest published value."""
        return self._value

    @property
    def version(self) -> int:
        """Number of values published so far."""
        return self._version

    def set(self, value: T) -> None:
        """Publish a new value."""
        with self._lock:
            self._value = value
            self._version += 1
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(value)
            except Exception:
                logger.exception("Snapshot subscriber %r failed", callback)

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Call ``callback`` with every new value; returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe


class MetricsPublisher:
    """One snapshot cell per metric family."""

    def __init__(self) -> None:
        self.host: SnapshotCell[HostSample] = SnapshotCell(HostSample())
        self.network: SnapshotCell[NetworkSample] = SnapshotCell(NetworkSample())
        self.processes: SnapshotCell[tuple[ProcessBandwidthRecord, ...]] = SnapshotCell(())
        self.temperature: SnapshotCell[TemperatureSample] = SnapshotCell(TemperatureSample())
