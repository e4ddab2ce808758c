"""Filesystem capacity probe."""

import logging

import psutil

logger = logging.getLogger(__name__)


class DiskUsageProbe:
    """
    Report used and total bytes of one mounted filesystem.

    ``(0, 0)`` means the capacity is unknown, not that the volume is empty.
    """

    def __init__(self, path: str = "/") -> None:
        self.path = path

    def sample(self) -> tuple[int, int]:
        """Return ``(used, total)`` in bytes, ``(0, 0)`` on any I/O error."""
        try:
            usage = psutil.disk_usage(self.path)
        except OSError:
            logger.debug("Cannot read capacity of %s", self.path, exc_info=True)
            return 0, 0
        # psutil's own "used" leaves out blocks reserved for root
        return usage.total - usage.free, usage.total
