"""Telemetry engine wiring samplers, scheduler and publisher together."""

import logging
import threading

from statbar.config import ConfigStore, MonitorConfig
from statbar.disk import DiskUsageProbe
from statbar.host import HostStatsSampler
from statbar.network import NetworkThroughputTracker
from statbar.process_bandwidth import NameResolver, ProcessBandwidthMonitor
from statbar.publisher import MetricsPublisher
from statbar.scheduler import SamplingScheduler
from statbar.temperature import TemperatureProbe

logger = logging.getLogger(__name__)

SYSTEM = "system"
NETWORK = "network"
TEMPERATURE = "temperature"


class TelemetryEngine:
    """
    Owns every sampler and publishes their results.

    Host, network and temperature families tick on their own scheduler
    threads. The process bandwidth monitor runs independently and is
    started when the panel opens.
    """

    def __init__(
        self,
        config_store: ConfigStore | None = None,
        publisher: MetricsPublisher | None = None,
        host_sampler: HostStatsSampler | None = None,
        network_tracker: NetworkThroughputTracker | None = None,
        temperature_probe: TemperatureProbe | None = None,
        process_monitor: ProcessBandwidthMonitor | None = None,
        name_resolver: NameResolver | None = None,
    ) -> None:
        self.config_store = config_store or ConfigStore()
        self.publisher = publisher or MetricsPublisher()
        config = self.config_store.current

        self.host_sampler = host_sampler or HostStatsSampler(
            memory_strategy=config.memory_strategy,
            disk_probe=DiskUsageProbe(config.disk_path),
        )
        self.network_tracker = network_tracker or NetworkThroughputTracker(
            capacity=config.history_capacity
        )
        self.temperature_probe = temperature_probe or TemperatureProbe()
        self.process_monitor = process_monitor or ProcessBandwidthMonitor(
            self.config_store,
            cell=self.publisher.processes,
            name_resolver=name_resolver,
        )
        self.scheduler = SamplingScheduler(
            coalescing=config.use_efficient_timers,
            leeway=config.timer_leeway,
        )

        self._lock = threading.Lock()
        self._running = False
        self._unsubscribe = self.config_store.subscribe(self._on_config_change)

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Prime baselines, publish a first host sample and start the timers."""
        with self._lock:
            if self._running:
                return
            self._running = True

        config = self.config_store.current
        self.network_tracker.prime()
        self.update_system()  # CPU reads 0 until the first tick
        self.update_temperature()

        self.scheduler.schedule(SYSTEM, config.system_info_update_interval, self.update_system)
        self.scheduler.schedule(NETWORK, config.network_update_interval, self.update_network)
        self.scheduler.schedule(
            TEMPERATURE, config.temperature_update_interval, self.update_temperature
        )
        logger.info("Telemetry engine started")

    def stop(self) -> None:
        """Stop timers and the process monitor. Idempotent."""
        with self._lock:
            was_running = self._running
            self._running = False
        self.scheduler.stop()
        self.process_monitor.stop()
        if was_running:
            logger.info("Telemetry engine stopped")

    def close(self) -> None:
        self._unsubscribe()
        self.stop()
        self.process_monitor.close()

    def panel_opened(self) -> None:
        """Start per-process accounting while the panel is visible."""
        if not self.process_monitor.is_running:
            self.process_monitor.start()

    def panel_closed(self) -> None:
        if self.config_store.current.pause_when_panel_closed:
            self.process_monitor.stop()

    def update_system(self) -> None:
        self.publisher.host.set(self.host_sampler.sample())

    def update_network(self) -> None:
        interval = self.scheduler.interval(NETWORK) or self.config_store.current.network_update_interval
        sample = self.network_tracker.tick(interval)
        if sample is not None:
            self.publisher.network.set(sample)

    def update_temperature(self) -> None:
        self.publisher.temperature.set(self.temperature_probe.sample())

    def _on_config_change(self, old: MonitorConfig, new: MonitorConfig) -> None:
        if new.memory_strategy is not old.memory_strategy:
            self.host_sampler.memory_strategy = new.memory_strategy
        if (new.use_efficient_timers, new.timer_leeway) != (
            old.use_efficient_timers,
            old.timer_leeway,
        ):
            self.scheduler.set_coalescing(new.use_efficient_timers, new.timer_leeway)

        if not self._running:
            return
        if new.system_info_update_interval != old.system_info_update_interval:
            self.scheduler.reschedule(SYSTEM, new.system_info_update_interval)
        if new.network_update_interval != old.network_update_interval:
            self.scheduler.reschedule(NETWORK, new.network_update_interval)
        if new.temperature_update_interval != old.temperature_update_interval:
            self.scheduler.reschedule(TEMPERATURE, new.temperature_update_interval)
