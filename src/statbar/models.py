"""Data models for statbar."""

from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class HostSample:
    """Host utilization for one system tick."""

    cpu_usage: float = 0.0  # 0.0 - 1.0
    memory_used: int = 0  # Bytes
    memory_total: int = 0
    disk_used: int = 0  # (0, 0) means unknown
    disk_total: int = 0


@dataclass(slots=True, frozen=True)
class CPUTickCounters:
    """Cumulative CPU ticks since boot."""

    user: float
    system: float
    idle: float
    nice: float = 0.0

    @property
    def busy(self) -> float:
        return self.user + self.system + self.nice

    @property
    def total(self) -> float:
        return self.user + self.system + self.idle + self.nice


@dataclass(slots=True, frozen=True)
class MemoryPageCounters:
    """Memory page counters, converted to bytes through page_size."""

    page_size: int
    total: int = 0
    free: int = 0
    active: int = 0
    inactive: int = 0
    speculative: int = 0
    wired: int = 0
    compressed: int = 0
    internal: int = 0
    purgeable: int = 0


@dataclass(slots=True, frozen=True)
class NetworkByteCounters:
    """Cumulative byte counters summed across non-loopback interfaces."""

    bytes_in: int = 0
    bytes_out: int = 0


@dataclass(slots=True, frozen=True)
class NetworkSample:
    """Network throughput for one tick plus rolling history and totals."""

    upload_speed: int = 0  # Bytes per interval
    download_speed: int = 0
    total_upload: int = 0
    total_download: int = 0
    upload_history: tuple[int, ...] = field(default_factory=tuple)  # Oldest first
    download_history: tuple[int, ...] = field(default_factory=tuple)
    interval: float = 1.0  # Seconds the speeds were measured over


@dataclass(slots=True, frozen=True)
class ProcessBandwidthRecord:
    """Network activity of one process during one accounting cycle."""

    pid: int
    display_name: str
    upload_speed: int  # Delta of bytes_out
    download_speed: int  # Delta of bytes_in

    @property
    def total_speed(self) -> int:
        return self.upload_speed + self.download_speed


@dataclass(slots=True, frozen=True)
class TemperatureSample:
    """CPU temperature, None when no sensor is readable."""

    celsius: float | None = None
    sensor: str = ""
