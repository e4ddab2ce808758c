"""CPU and memory sampling from cumulative kernel counters."""

import logging
import os
from collections.abc import Callable

import psutil

from statbar.config import MemoryStrategy
from statbar.disk import DiskUsageProbe
from statbar.models import CPUTickCounters, HostSample, MemoryPageCounters

logger = logging.getLogger(__name__)

# Errors a kernel read may raise; anything else is a bug and propagates
SAMPLING_ERRORS = (OSError, psutil.Error)


def read_cpu_ticks() -> CPUTickCounters:
    """Read the cumulative user/system/idle/nice CPU times."""
    times = psutil.cpu_times()
    return CPUTickCounters(
        user=times.user,
        system=times.system,
        idle=times.idle,
        nice=getattr(times, "nice", 0.0),  # Not reported on Windows
    )


def _page_size() -> int:
    try:
        return os.sysconf("SC_PAGE_SIZE")
    except (AttributeError, ValueError, OSError):
        return 4096


def read_memory_pages() -> MemoryPageCounters:
    """
    Map psutil's virtual memory report onto page counters.

    psutil does not expose compressor or purgeable pages, so those stay 0.
    ``internal`` (anonymous application pages) is what psutil counts as
    used minus wired memory: active pages on macOS, non-cache memory on Linux.
    """
    vm = psutil.virtual_memory()
    page_size = _page_size()
    wired = getattr(vm, "wired", 0)
    return MemoryPageCounters(
        page_size=page_size,
        total=vm.total // page_size,
        free=vm.free // page_size,
        active=getattr(vm, "active", 0) // page_size,
        inactive=getattr(vm, "inactive", 0) // page_size,
        wired=wired // page_size,
        internal=max(0, vm.used - wired) // page_size,
    )


def memory_used_bytes(pages: MemoryPageCounters, strategy: MemoryStrategy) -> int:
    """Apply a memory heuristic; the result never goes below zero."""
    if strategy is MemoryStrategy.RECLAIMABLE:
        used_pages = (
            pages.total - pages.free - pages.inactive - pages.speculative - pages.purgeable
        )
    else:
        # App memory + wired + compressed
        used_pages = pages.internal - pages.purgeable + pages.wired + pages.compressed
    return max(0, used_pages * pages.page_size)


class HostStatsSampler:
    """
    Derive instantaneous CPU and memory usage from cumulative counters.

    Meant to be driven by one scheduler thread. Kernel read failures
    yield zeros for that tick and never raise.
    """

    def __init__(
        self,
        memory_strategy: MemoryStrategy = MemoryStrategy.APP_MEMORY,
        disk_probe: DiskUsageProbe | None = None,
        cpu_reader: Callable[[], CPUTickCounters] = read_cpu_ticks,
        memory_reader: Callable[[], MemoryPageCounters] = read_memory_pages,
    ) -> None:
        self.memory_strategy = memory_strategy
        self._disk_probe = disk_probe if disk_probe is not None else DiskUsageProbe()
        self._read_cpu = cpu_reader
        self._read_memory = memory_reader
        self._last_ticks: CPUTickCounters | None = None
        self._memory_total = self._physical_memory()

    @staticmethod
    def _physical_memory() -> int:
        try:
            return int(psutil.virtual_memory().total)
        except SAMPLING_ERRORS:
            logger.debug("Cannot read physical memory size", exc_info=True)
            return 0

    @property
    def memory_total(self) -> int:
        return self._memory_total

    def cpu_usage(self) -> float:
        """
        CPU usage over the interval since the previous call, 0.0 - 1.0.

        The first call only records a baseline and returns 0.
        """
        try:
            ticks = self._read_cpu()
        except SAMPLING_ERRORS:
            logger.debug("CPU tick read failed", exc_info=True)
            return 0.0

        last = self._last_ticks
        self._last_ticks = ticks
        if last is None:
            return 0.0

        total = ticks.total - last.total
        if total <= 0:
            return 0.0
        usage = (ticks.busy - last.busy) / total
        return min(1.0, max(0.0, usage))

    def memory_used(self) -> int:
        """Bytes in use according to the configured strategy."""
        try:
            pages = self._read_memory()
        except SAMPLING_ERRORS:
            logger.debug("Memory page read failed", exc_info=True)
            return 0
        return memory_used_bytes(pages, self.memory_strategy)

    def sample(self) -> HostSample:
        """Take one CPU/memory/disk sample."""
        disk_used, disk_total = self._disk_probe.sample()
        return HostSample(
            cpu_usage=self.cpu_usage(),
            memory_used=self.memory_used(),
            memory_total=self._memory_total,
            disk_used=disk_used,
            disk_total=disk_total,
        )
