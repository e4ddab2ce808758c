"""Per-process network bandwidth from a streaming accounting subprocess.

``nettop`` prints a CSV header followed by one line per process with
cumulative byte counters, then repeats that block every reporting interval.
``NettopStreamParser`` turns that text, delivered in arbitrary fragments,
into one sorted list of per-process deltas per accounting cycle.
``ProcessBandwidthMonitor`` supervises the subprocess and publishes each
completed cycle.
"""

import codecs
import logging
import os
import subprocess
import threading
from collections.abc import Callable, Sequence
from enum import Enum

from statbar.config import ConfigStore, MonitorConfig
from statbar.models import ProcessBandwidthRecord
from statbar.publisher import SnapshotCell
from statbar.scheduler import Debouncer

logger = logging.getLogger(__name__)

NETTOP_PATH = "/usr/bin/nettop"
HEADER_MARKER = "bytes_in,bytes_out"
CHUNK_SIZE = 65536

ProcessSnapshot = tuple[ProcessBandwidthRecord, ...]
NameResolver = Callable[[int, str], str]


def nettop_command(config: MonitorConfig) -> list[str]:
    """
    Build the nettop invocation.

    -P per process, -L 0 log forever, -J selects the byte columns and
    -s sets the reporting interval in whole seconds.
    """
    return [
        NETTOP_PATH,
        "-P",
        "-L",
        "0",
        "-J",
        "bytes_in,bytes_out",
        "-s",
        str(config.nettop_interval),
    ]


def _to_count(text: str) -> int | None:
    text = text.strip()
    if not text.isascii() or not text.isdigit():
        return None
    return int(text)


def _parse_columns(fields: Sequence[str], offset: int) -> tuple[str, int, int, int] | None:
    if len(fields) < offset + 3:
        return None
    name, sep, pid_text = fields[offset].strip().rpartition(".")
    if not sep:
        return None
    pid = _to_count(pid_text)
    bytes_in = _to_count(fields[offset + 1])
    bytes_out = _to_count(fields[offset + 2])
    if pid is None or bytes_in is None or bytes_out is None:
        return None
    return name, pid, bytes_in, bytes_out


def parse_data_line(line: str) -> tuple[str, int, int, int] | None:
    """
    Split ``name.pid,bytes_in,bytes_out[,...]`` into its parts.

    The name is everything before the last dot, since process names may
    contain dots. Lines carrying nettop's leading time column are accepted
    too. Returns None for anything else.
    """
    fields = line.split(",")
    parsed = _parse_columns(fields, 0)
    if parsed is None and len(fields) >= 4:
        parsed = _parse_columns(fields, 1)
    return parsed


class NettopStreamParser:
    """
    Incremental parser reconciling cumulative per-PID counters into deltas.

    Not thread-safe: one reader thread owns it. The PID baseline map is
    never pruned; a PID that disappears simply stops being updated.
    """

    def __init__(self, name_resolver: NameResolver | None = None) -> None:
        self._name_resolver = name_resolver
        self._pending = ""
        self._previous: dict[int, tuple[int, int]] = {}
        self._current: list[ProcessBandwidthRecord] = []

    @property
    def baselines(self) -> dict[int, tuple[int, int]]:
        """Copy of the last cumulative (bytes_in, bytes_out) per PID."""
        return dict(self._previous)

    @property
    def pending_records(self) -> int:
        return len(self._current)

    def feed(self, chunk: str) -> list[ProcessSnapshot]:
        """
        Consume a fragment of output.

        Returns the cycles completed by this fragment, oldest first. A
        trailing partial line is kept until the rest of it arrives.
        """
        lines = (self._pending + chunk).split("\n")
        self._pending = lines.pop()
        cycles: list[ProcessSnapshot] = []
        for line in lines:
            cycle = self.process_line(line)
            if cycle is not None:
                cycles.append(cycle)
        return cycles

    def flush(self) -> list[ProcessSnapshot]:
        """Process a buffered partial line, e.g. at end of stream."""
        line, self._pending = self._pending, ""
        cycle = self.process_line(line)
        return [cycle] if cycle is not None else []

    def process_line(self, line: str) -> ProcessSnapshot | None:
        """Handle one complete line; returns a finished cycle on a header line."""
        line = line.strip()
        if not line:
            return None
        if HEADER_MARKER in line:
            return self.finish_cycle()

        parsed = parse_data_line(line)
        if parsed is None:
            return None
        name, pid, bytes_in, bytes_out = parsed

        prev_in, prev_out = self._previous.get(pid, (bytes_in, bytes_out))
        self._previous[pid] = (bytes_in, bytes_out)
        delta_in = bytes_in - prev_in
        delta_out = bytes_out - prev_out
        if delta_in > 0 or delta_out > 0:
            # A reused PID can make one side go backwards; report it as idle
            self._current.append(
                ProcessBandwidthRecord(
                    pid=pid,
                    display_name=self._display_name(pid, name),
                    upload_speed=max(0, delta_out),
                    download_speed=max(0, delta_in),
                )
            )
        return None

    def finish_cycle(self) -> ProcessSnapshot:
        """Sort the accumulated records by total speed and start a new cycle."""
        snapshot = tuple(sorted(self._current, key=lambda r: r.total_speed, reverse=True))
        self._current = []
        return snapshot

    def _display_name(self, pid: int, name: str) -> str:
        if self._name_resolver is None:
            return name
        try:
            return self._name_resolver(pid, name) or name
        except Exception:
            logger.debug("Name resolver failed for pid %d", pid, exc_info=True)
            return name


class MonitorState(Enum):
    """Lifecycle of the accounting subprocess."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


class ProcessBandwidthMonitor:
    """
    Supervise the accounting subprocess and publish per-process bandwidth.

    ``start`` and ``stop`` are safe from any thread. Launch failures are
    logged and leave the monitor stopped; there is no automatic retry, so
    callers re-invoke ``start``.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        cell: SnapshotCell[ProcessSnapshot] | None = None,
        command: Callable[[MonitorConfig], list[str]] = nettop_command,
        name_resolver: NameResolver | None = None,
        stop_timeout: float = 2.0,
        restart_delay: float = 0.5,
    ) -> None:
        """
        Initialize the ProcessBandwidthMonitor.

        Args:
            config_store: Source of the interval and enable settings.
            cell: Where completed cycles are published.
            command: Builds the subprocess argv from the current config.
            name_resolver: Optional ``(pid, name) -> display name`` lookup.
            stop_timeout: Seconds to wait for the child after terminate/kill.
            restart_delay: Debounce window for configuration restarts.
        """
        self._config_store = config_store
        self._cell: SnapshotCell[ProcessSnapshot] = cell if cell is not None else SnapshotCell(())
        self._command = command
        self._name_resolver = name_resolver
        self._stop_timeout = stop_timeout

        self._lock = threading.RLock()
        self._state = MonitorState.STOPPED
        self._process: subprocess.Popen[bytes] | None = None
        self._reader: threading.Thread | None = None
        self._parser: NettopStreamParser | None = None
        self._generation = 0

        self._restart_debouncer = Debouncer(restart_delay, self._restart_if_running)
        self._unsubscribe = config_store.subscribe(self._on_config_change)

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is MonitorState.RUNNING

    @property
    def pid(self) -> int | None:
        """PID of the accounting subprocess while it runs."""
        process = self._process
        return process.pid if process is not None else None

    @property
    def processes(self) -> ProcessSnapshot:
        """Latest completed cycle, sorted by total speed descending."""
        return self._cell.get()

    def top_processes(self, limit: int | None = None) -> ProcessSnapshot:
        """The busiest processes of the latest cycle."""
        snapshot = self._cell.get()
        return snapshot if limit is None else snapshot[:limit]

    def start(self) -> None:
        """
        (Re)start the accounting subprocess.

        Any running child is stopped first. Does nothing when process
        monitoring is disabled in the config.
        """
        with self._lock:
            process, reader = self._detach()
            token = self._generation
        self._release(process, reader)

        config = self._config_store.current
        if not config.show_top_processes:
            return

        with self._lock:
            if self._generation != token:
                # stop() or another start() ran while the old child exited
                return
            self._state = MonitorState.STARTING
            argv = self._command(config)
            try:
                process = subprocess.Popen(
                    argv,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.DEVNULL,
                )
            except (OSError, ValueError) as exc:
                logger.warning("Failed to start %s: %s", " ".join(argv), exc)
                self._state = MonitorState.STOPPED
                return

            generation = self._generation
            self._parser = NettopStreamParser(self._name_resolver)
            self._process = process
            self._reader = threading.Thread(
                target=self._read_loop,
                args=(process, self._parser, generation),
                daemon=True,
                name="ProcessBandwidthMonitor",
            )
            self._state = MonitorState.RUNNING
            self._reader.start()
            logger.info("Started %s (pid %d)", argv[0], process.pid)

    def stop(self) -> None:
        """
        Stop the subprocess and release its handles. Idempotent.

        The reader is detached first, so no cycle is published after this
        returns. A child ignoring SIGTERM is killed after ``stop_timeout``.
        """
        with self._lock:
            process, reader = self._detach()
        self._release(process, reader)

    def restart(self) -> None:
        """Restart with a fresh subprocess if currently running."""
        self._restart_if_running()

    def request_restart(self) -> None:
        """Debounced ``restart``: a burst of requests yields one restart."""
        self._restart_debouncer.trigger()

    def close(self) -> None:
        """Stop and stop listening to config changes."""
        self._unsubscribe()
        self._restart_debouncer.cancel()
        self.stop()

    def _restart_if_running(self) -> None:
        if self._state is not MonitorState.STOPPED:
            self.start()

    def _on_config_change(self, old: MonitorConfig, new: MonitorConfig) -> None:
        if not new.show_top_processes:
            self._restart_debouncer.cancel()
            self.stop()
            return
        if new.nettop_interval != old.nettop_interval:
            self.request_restart()

    def _detach(self) -> tuple[subprocess.Popen[bytes] | None, threading.Thread | None]:
        # Caller holds the lock
        self._generation += 1
        process, reader = self._process, self._reader
        self._process = None
        self._reader = None
        self._parser = None
        self._state = MonitorState.STOPPED
        return process, reader

    def _release(
        self,
        process: subprocess.Popen[bytes] | None,
        reader: threading.Thread | None,
    ) -> None:
        if process is None:
            return
        if process.poll() is None:
            try:
                process.terminate()
                process.wait(timeout=self._stop_timeout)
            except ProcessLookupError:
                pass
            except subprocess.TimeoutExpired:
                logger.warning("Subprocess %d ignored SIGTERM, killing it", process.pid)
                process.kill()
                try:
                    process.wait(timeout=self._stop_timeout)
                except subprocess.TimeoutExpired:
                    logger.warning("Subprocess %d did not exit, abandoning it", process.pid)

        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=self._stop_timeout)
        if process.stdout is not None:
            try:
                process.stdout.close()
            except OSError:
                logger.debug("Error closing subprocess stdout", exc_info=True)

    def _read_loop(
        self,
        process: subprocess.Popen[bytes],
        parser: NettopStreamParser,
        generation: int,
    ) -> None:
        """Reader thread: feed subprocess output to the parser until EOF."""
        assert process.stdout is not None
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        fd = process.stdout.fileno()
        try:
            while True:
                chunk = os.read(fd, CHUNK_SIZE)
                if generation != self._generation:
                    return
                if not chunk:
                    break
                for cycle in parser.feed(decoder.decode(chunk)):
                    self._publish(cycle, generation)
        except OSError:
            if generation == self._generation:
                logger.debug("Reading subprocess output failed", exc_info=True)
        self._on_stream_end(process, generation)

    def _publish(self, snapshot: ProcessSnapshot, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._cell.set(snapshot)

    def _on_stream_end(self, process: subprocess.Popen[bytes], generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            process, reader = self._detach()
        returncode = process.poll() if process is not None else None
        logger.info("Accounting subprocess exited (returncode %s)", returncode)
        self._release(process, reader)
