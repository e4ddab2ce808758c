"""Tests for HostStatsSampler, DiskUsageProbe and TemperatureProbe."""

from collections import namedtuple

import psutil
import pytest

from statbar.config import MemoryStrategy
from statbar.disk import DiskUsageProbe
from statbar.host import HostStatsSampler, memory_used_bytes, read_cpu_ticks, read_memory_pages
from statbar.models import CPUTickCounters, HostSample, MemoryPageCounters
from statbar.temperature import TemperatureProbe


class StaticDisk(DiskUsageProbe):
    """Disk probe returning fixed values."""

    def __init__(self, used=0, total=0):
        super().__init__("/")
        self._values = (used, total)

    def sample(self):
        return self._values


def ticks_reader(samples):
    """Return a reader yielding the given counters (or raising exceptions) in order."""
    iterator = iter(samples)

    def read():
        value = next(iterator)
        if isinstance(value, Exception):
            raise value
        return value

    return read


def make_sampler(cpu=(), memory=None, disk=None, strategy=MemoryStrategy.APP_MEMORY):
    pages = memory or MemoryPageCounters(page_size=4096)
    return HostStatsSampler(
        memory_strategy=strategy,
        disk_probe=disk or StaticDisk(),
        cpu_reader=ticks_reader(cpu),
        memory_reader=lambda: pages,
    )


class TestCPUUsage:
    """Tests for CPU usage derived from tick deltas."""

    def test_first_sample_is_zero(self):
        """Test the first sample reports 0 whatever the counter magnitude."""
        sampler = make_sampler(cpu=[CPUTickCounters(user=1e9, system=1e9, idle=1, nice=1e9)])

        assert sampler.cpu_usage() == 0.0

    def test_usage_from_deltas(self):
        """Test usage is busy ticks over total ticks between samples."""
        sampler = make_sampler(
            cpu=[
                CPUTickCounters(user=100, system=50, idle=800, nice=50),
                CPUTickCounters(user=130, system=60, idle=850, nice=60),
            ]
        )

        sampler.cpu_usage()
        # busy delta 30+10+10 = 50, total delta 50+50 = 100
        assert sampler.cpu_usage() == pytest.approx(0.5)

    def test_zero_total_delta_is_zero(self):
        """Test an unchanged clock yields 0 rather than dividing by zero."""
        ticks = CPUTickCounters(user=10, system=10, idle=10, nice=0)
        sampler = make_sampler(cpu=[ticks, ticks])

        sampler.cpu_usage()
        assert sampler.cpu_usage() == 0.0

    def test_usage_stays_in_range_for_regressing_counters(self):
        """Test odd counter sequences never leave [0, 1]."""
        sequence = [
            CPUTickCounters(user=100, system=100, idle=100, nice=0),
            CPUTickCounters(user=50, system=300, idle=90, nice=0),
            CPUTickCounters(user=60, system=300, idle=500, nice=0),
            CPUTickCounters(user=900, system=300, idle=400, nice=0),
        ]
        sampler = make_sampler(cpu=sequence)

        for _ in sequence:
            assert 0.0 <= sampler.cpu_usage() <= 1.0

    def test_read_failure_returns_zero_and_keeps_baseline(self):
        """Test a failed read yields 0 and the next delta uses the old baseline."""
        sampler = make_sampler(
            cpu=[
                CPUTickCounters(user=0, system=0, idle=0, nice=0),
                OSError("host_statistics failed"),
                CPUTickCounters(user=25, system=0, idle=75, nice=0),
            ]
        )

        sampler.cpu_usage()
        assert sampler.cpu_usage() == 0.0
        assert sampler.cpu_usage() == pytest.approx(0.25)

    def test_psutil_error_is_handled(self):
        """Test psutil errors are treated like kernel failures."""
        sampler = make_sampler(cpu=[psutil.AccessDenied()])

        assert sampler.cpu_usage() == 0.0


class TestMemoryUsed:
    """Tests for the memory heuristics."""

    PAGES = MemoryPageCounters(
        page_size=4096,
        total=1000,
        free=100,
        active=300,
        inactive=200,
        speculative=50,
        wired=150,
        compressed=40,
        internal=400,
        purgeable=30,
    )

    def test_app_memory_strategy(self):
        """Test internal - purgeable + wired + compressed."""
        assert memory_used_bytes(self.PAGES, MemoryStrategy.APP_MEMORY) == (400 - 30 + 150 + 40) * 4096

    def test_reclaimable_strategy(self):
        """Test total - free - inactive - speculative - purgeable."""
        assert memory_used_bytes(self.PAGES, MemoryStrategy.RECLAIMABLE) == (
            1000 - 100 - 200 - 50 - 30
        ) * 4096

    @pytest.mark.parametrize("strategy", list(MemoryStrategy))
    def test_never_negative(self, strategy):
        """Test underflowing counter states clamp to zero."""
        pages = MemoryPageCounters(page_size=4096, total=10, free=50, purgeable=100)

        assert memory_used_bytes(pages, strategy) == 0

    def test_sampler_uses_strategy(self):
        """Test the sampler applies its configured strategy."""
        sampler = make_sampler(memory=self.PAGES, strategy=MemoryStrategy.RECLAIMABLE)

        assert sampler.memory_used() == 620 * 4096

    def test_memory_read_failure_returns_zero(self):
        """Test a failing memory read yields 0."""

        def broken():
            raise OSError("vm_statistics failed")

        sampler = HostStatsSampler(disk_probe=StaticDisk(), memory_reader=broken)

        assert sampler.memory_used() == 0


class TestHostSample:
    """Tests for HostStatsSampler.sample."""

    def test_sample_combines_readings(self):
        """Test sample() gathers CPU, memory and disk."""
        sampler = make_sampler(
            cpu=[CPUTickCounters(user=1, system=1, idle=1)],
            memory=MemoryPageCounters(page_size=1000, internal=5),
            disk=StaticDisk(used=10, total=100),
        )

        sample = sampler.sample()

        assert isinstance(sample, HostSample)
        assert sample.cpu_usage == 0.0
        assert sample.memory_used == 5000
        assert sample.memory_total == sampler.memory_total
        assert (sample.disk_used, sample.disk_total) == (10, 100)

    def test_real_readers(self):
        """Test the psutil-backed readers return sane values."""
        ticks = read_cpu_ticks()
        pages = read_memory_pages()

        assert ticks.total > 0
        assert pages.page_size > 0
        assert pages.total > 0
        assert HostStatsSampler().memory_total > 0


class TestDiskUsageProbe:
    """Tests for DiskUsageProbe."""

    def test_root_volume(self):
        """Test the root volume reports a plausible capacity."""
        used, total = DiskUsageProbe("/").sample()

        assert total > 0
        assert 0 <= used <= total

    def test_used_is_total_minus_free(self, monkeypatch):
        """Test used counts reserved blocks as used."""
        usage = namedtuple("usage", "total used free percent")
        monkeypatch.setattr(psutil, "disk_usage", lambda path: usage(1000, 700, 200, 77.8))

        assert DiskUsageProbe("/").sample() == (800, 1000)

    def test_inaccessible_path_is_unknown(self, tmp_path):
        """Test an unreadable path returns (0, 0)."""
        assert DiskUsageProbe(str(tmp_path / "missing")).sample() == (0, 0)


class TestTemperatureProbe:
    """Tests for TemperatureProbe."""

    def test_picks_hottest_cpu_sensor(self, monkeypatch):
        """Test the hottest reading of the first known family wins."""
        entry = namedtuple("shwtemp", "label current high critical")
        readings = {
            "nvme": [entry("Composite", 70.0, None, None)],
            "coretemp": [entry("Core 0", 45.0, None, None), entry("Core 1", 52.5, None, None)],
        }
        monkeypatch.setattr(psutil, "sensors_temperatures", lambda: readings, raising=False)

        sample = TemperatureProbe().sample()

        assert sample.celsius == 52.5
        assert sample.sensor == "coretemp"

    def test_unsupported_platform(self, monkeypatch):
        """Test platforms without sensors report None."""
        monkeypatch.delattr(psutil, "sensors_temperatures", raising=False)

        assert TemperatureProbe().sample().celsius is None

    def test_read_failure(self, monkeypatch):
        """Test a failing sensor read reports None."""

        def broken():
            raise OSError("no sensors")

        monkeypatch.setattr(psutil, "sensors_temperatures", broken, raising=False)

        assert TemperatureProbe().sample().celsius is None
