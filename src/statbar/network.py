"""Network throughput from cumulative interface byte counters."""

import logging
from collections import deque
from collections.abc import Callable
from typing import Any

import psutil

from statbar.host import SAMPLING_ERRORS
from statbar.models import NetworkByteCounters, NetworkSample

logger = logging.getLogger(__name__)

HISTORY_CAPACITY = 40
LOOPBACK_PREFIX = "lo"


def is_loopback(name: str) -> bool:
    """True for loopback interface names (lo, lo0, ...)."""
    return name.startswith(LOOPBACK_PREFIX)


def global_counters(
    reader: Callable[..., dict[str, Any]] = psutil.net_io_counters,
) -> NetworkByteCounters | None:
    """
    Sum received/sent bytes over every non-loopback interface.

    Returns None when the interfaces cannot be read, so a failed read is
    never mistaken for zeroed counters.
    """
    try:
        per_nic = reader(pernic=True)
    except SAMPLING_ERRORS:
        logger.debug("Cannot enumerate network interfaces", exc_info=True)
        return None

    bytes_in = 0
    bytes_out = 0
    for name, counters in per_nic.items():
        if is_loopback(name):
            continue
        bytes_in += counters.bytes_recv
        bytes_out += counters.bytes_sent
    return NetworkByteCounters(bytes_in=bytes_in, bytes_out=bytes_out)


class NetworkThroughputTracker:
    """
    Turn cumulative byte counters into per-tick speeds.

    Keeps a bounded FIFO history of recent speeds and lifetime totals.
    Only the owning tick thread mutates state; ``tick`` returns an immutable
    ``NetworkSample`` for publishing.
    """

    def __init__(
        self,
        capacity: int = HISTORY_CAPACITY,
        counters: Callable[[], NetworkByteCounters | None] = global_counters,
    ) -> None:
        self._read_counters = counters
        self._baseline: NetworkByteCounters | None = None
        self._upload_history: deque[int] = deque(maxlen=capacity)
        self._download_history: deque[int] = deque(maxlen=capacity)
        self._upload_speed = 0
        self._download_speed = 0
        self._total_upload = 0
        self._total_download = 0
        self._reset_pending = False

    @property
    def capacity(self) -> int:
        return self._upload_history.maxlen or 0

    @property
    def primed(self) -> bool:
        return self._baseline is not None

    @property
    def upload_speed(self) -> int:
        return self._upload_speed

    @property
    def download_speed(self) -> int:
        return self._download_speed

    @property
    def total_upload(self) -> int:
        return self._total_upload

    @property
    def total_download(self) -> int:
        return self._total_download

    @property
    def upload_history(self) -> tuple[int, ...]:
        return tuple(self._upload_history)

    @property
    def download_history(self) -> tuple[int, ...]:
        return tuple(self._download_history)

    def prime(self) -> None:
        """
        Record the baseline so the first tick measures a real delta.

        A failed read leaves the tracker unprimed; the next tick primes it.
        """
        self._baseline = self._read_counters()

    def reset_totals(self) -> None:
        """Start new session totals from the next tick; safe from any thread."""
        self._reset_pending = True

    def tick(self, interval: float = 1.0) -> NetworkSample | None:
        """
        Measure the traffic since the previous tick.

        Returns None when there is nothing to publish: the tracker had no
        baseline yet, the counters could not be read, or a counter went
        backwards (interface reset). A failed read keeps the old baseline;
        otherwise the baseline advances.
        """
        current = self._read_counters()
        if current is None:
            return None
        previous = self._baseline
        self._baseline = current
        if previous is None:
            return None

        delta_in = current.bytes_in - previous.bytes_in
        delta_out = current.bytes_out - previous.bytes_out
        if delta_in < 0 or delta_out < 0:
            logger.debug("Network counters went backwards, skipping tick")
            return None

        if self._reset_pending:
            self._reset_pending = False
            self._total_upload = 0
            self._total_download = 0

        self._download_speed = delta_in
        self._upload_speed = delta_out
        self._total_download += delta_in
        self._total_upload += delta_out
        self._download_history.append(delta_in)
        self._upload_history.append(delta_out)
        return self.snapshot(interval)

    def snapshot(self, interval: float = 1.0) -> NetworkSample:
        """Current state as an immutable sample."""
        return NetworkSample(
            upload_speed=self._upload_speed,
            download_speed=self._download_speed,
            total_upload=self._total_upload,
            total_download=self._total_download,
            upload_history=tuple(self._upload_history),
            download_history=tuple(self._download_history),
            interval=interval,
        )
