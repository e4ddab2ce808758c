"""CPU temperature probe."""

import logging

import psutil

from statbar.models import TemperatureSample

logger = logging.getLogger(__name__)

# Sensor families that report the CPU package, in order of preference
CPU_SENSORS = ("coretemp", "k10temp", "cpu_thermal", "cpu-thermal", "acpitz")


class TemperatureProbe:
    """Read the hottest CPU sensor; ``celsius`` is None when unsupported."""

    def __init__(self, sensors: tuple[str, ...] = CPU_SENSORS) -> None:
        self._sensors = sensors

    def sample(self) -> TemperatureSample:
        reader = getattr(psutil, "sensors_temperatures", None)
        if reader is None:
            return TemperatureSample()
        try:
            readings = reader()
        except (OSError, psutil.Error):
            logger.debug("Temperature read failed", exc_info=True)
            return TemperatureSample()

        for family in self._sensors:
            entries = readings.get(family)
            if not entries:
                continue
            values = [entry.current for entry in entries if entry.current is not None]
            if values:
                return TemperatureSample(celsius=float(max(values)), sensor=family)
        return TemperatureSample()
