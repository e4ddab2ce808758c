"""statbar - Textual dashboard reading the published telemetry."""

import argparse
import logging

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal, Vertical
from textual.widgets import DataTable, Footer, Sparkline, Static

from statbar.config import ConfigError, ConfigStore, load_config
from statbar.engine import TelemetryEngine
from statbar.formatting import format_bytes, format_speed
from statbar.models import HostSample, NetworkSample, ProcessBandwidthRecord, TemperatureSample

logger = logging.getLogger(__name__)

TOP_PROCESS_LIMIT = 10


def usage_bar(fraction: float, color: str, width: int = 20) -> str:
    """Render a 0.0 - 1.0 fraction as a markup bar."""
    filled = min(width, max(0, int(fraction * width)))
    return f"[{color}]█[/{color}]" * filled + "[dim]░[/dim]" * (width - filled)


class HeaderStats(Static):
    """Header widget showing CPU, memory, disk and temperature."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 5;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize HeaderStats."""
        super().__init__(*args, **kwargs)
        self._host = HostSample()
        self._temperature = TemperatureSample()

    def compose(self) -> ComposeResult:
        """Compose the header stats layout."""
        yield Horizontal(
            Static(self._get_cpu_info(), id="cpu-info"),
            Static(self._get_mem_info(), id="mem-info"),
        )

    def update_stats(self, host: HostSample, temperature: TemperatureSample) -> None:
        """Update the statistics from published samples."""
        self._host = host
        self._temperature = temperature
        self._refresh_display()

    def _refresh_display(self) -> None:
        try:
            self.query_one("#cpu-info", Static).update(self._get_cpu_info())
            self.query_one("#mem-info", Static).update(self._get_mem_info())
        except Exception:
            pass  # Widget not mounted yet

    def _get_cpu_info(self) -> str:
        usage = self._host.cpu_usage
        lines = [f"CPU  \\[{usage_bar(usage, 'green')}] {usage * 100:5.1f}%"]
        if self._temperature.celsius is not None:
            lines.append(f"Temp {self._temperature.celsius:5.1f}°C")
        return "\n".join(lines)

    def _get_mem_info(self) -> str:
        host = self._host
        if host.memory_total == 0:
            return "Loading memory info..."

        mem_fraction = host.memory_used / host.memory_total
        lines = [
            f"Mem  \\[{usage_bar(mem_fraction, 'cyan')}] "
            f"{format_bytes(host.memory_used)}/{format_bytes(host.memory_total)}"
        ]
        if host.disk_total > 0:
            disk_fraction = host.disk_used / host.disk_total
            lines.append(
                f"Disk \\[{usage_bar(disk_fraction, 'yellow')}] "
                f"{format_bytes(host.disk_used)}/{format_bytes(host.disk_total)}"
            )
        else:
            lines.append("Disk unknown")
        return "\n".join(lines)


class NetworkPanel(Vertical):
    """Current speeds, session totals and speed history."""

    DEFAULT_CSS = """
    NetworkPanel {
        height: auto;
        padding: 0 1;
    }

    NetworkPanel Sparkline {
        height: 2;
    }
    """

    def __init__(self, config_store: ConfigStore, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._config_store = config_store
        self.sample = NetworkSample()

    def compose(self) -> ComposeResult:
        yield Static(self._get_speed_info(), id="net-info")
        yield Sparkline([], id="upload-history")
        yield Sparkline([], id="download-history")

    def update_sample(self, sample: NetworkSample) -> None:
        self.sample = sample
        try:
            self.query_one("#net-info", Static).update(self._get_speed_info())
            self.query_one("#upload-history", Sparkline).data = list(sample.upload_history)
            self.query_one("#download-history", Sparkline).data = list(sample.download_history)
        except Exception:
            pass  # Widget not mounted yet

    def _get_speed_info(self) -> str:
        sample = self.sample
        config = self._config_store.current
        fmt = config.text_format
        style = config.unit_style
        return (
            f"↑ {format_speed(sample.upload_speed, fmt, style)}  "
            f"↓ {format_speed(sample.download_speed, fmt, style)}  "
            f"Total ↑ {format_bytes(sample.total_upload)} ↓ {format_bytes(sample.total_download)}"
        )


class ProcessTable(Container):
    """Container for the top processes table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, config_store: ConfigStore, *args, **kwargs) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._config_store = config_store

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"
        table.add_column("PID", key="pid", width=8)
        table.add_column("UP", key="up", width=10)
        table.add_column("DOWN", key="down", width=10)
        table.add_column("Process", key="name")

    def update_processes(self, processes: tuple[ProcessBandwidthRecord, ...]) -> None:
        """
        Show the busiest processes of the latest cycle.

        Rows are rebuilt because the ranking changes every cycle.
        """
        table = self.query_one("#process-table", DataTable)
        top = processes[:TOP_PROCESS_LIMIT]
        config = self._config_store.current
        fmt = config.text_format
        style = config.unit_style

        table.clear()
        for record in top:
            table.add_row(
                str(record.pid),
                format_speed(record.upload_speed, fmt, style),
                format_speed(record.download_speed, fmt, style),
                record.display_name[:40],
                key=str(record.pid),
            )


class StatbarApp(App):
    """Main statbar application."""

    TITLE = "statbar"
    SUB_TITLE = "Host Telemetry"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
        height: auto;
        min-height: 5;
    }

    Horizontal {
        height: auto;
    }

    #cpu-info {
        width: 1fr;
        padding-right: 2;
    }

    #mem-info {
        width: 1fr;
        padding-left: 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("p", "toggle_processes", "Processes"),
        ("r", "reset_totals", "Reset totals"),
    ]

    def __init__(self, engine: TelemetryEngine | None = None) -> None:
        """Initialize the StatbarApp."""
        super().__init__()
        self._engine = engine or TelemetryEngine()
        self._versions: dict[str, int] = {}
        self._panel_open = False

    @property
    def engine(self) -> TelemetryEngine:
        return self._engine

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        config_store = self._engine.config_store
        yield HeaderStats(id="header-stats")
        yield NetworkPanel(config_store, id="network-panel")
        yield ProcessTable(config_store)
        yield Footer()

    def on_mount(self) -> None:
        """Start the engine when the app is mounted."""
        self._engine.start()
        self._open_panel()
        self.set_interval(0.5, self._check_for_updates)

    def on_unmount(self) -> None:
        self._engine.stop()

    def _open_panel(self) -> None:
        self._panel_open = True
        self._engine.panel_opened()

    def _close_panel(self) -> None:
        self._panel_open = False
        self._engine.panel_closed()

    def _changed(self, name: str, version: int) -> bool:
        if self._versions.get(name) == version:
            return False
        self._versions[name] = version
        return True

    def _check_for_updates(self) -> None:
        """Read every published cell and refresh what changed."""
        publisher = self._engine.publisher
        try:
            host_changed = self._changed("host", publisher.host.version)
            temperature_changed = self._changed("temperature", publisher.temperature.version)
            if host_changed or temperature_changed:
                self.query_one("#header-stats", HeaderStats).update_stats(
                    publisher.host.get(), publisher.temperature.get()
                )
            if self._changed("network", publisher.network.version):
                self.query_one("#network-panel", NetworkPanel).update_sample(
                    publisher.network.get()
                )
            if self._changed("processes", publisher.processes.version):
                self.query_one(ProcessTable).update_processes(publisher.processes.get())
        except Exception:
            logger.exception("Refreshing the display failed")

    def action_toggle_processes(self) -> None:
        """Start or pause per-process accounting."""
        if self._panel_open:
            self._close_panel()
            self.notify("Process accounting paused")
        else:
            self._open_panel()
            self.notify("Process accounting resumed")

    def action_reset_totals(self) -> None:
        self._engine.network_tracker.reset_totals()
        self.notify("Session totals reset")

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._engine.stop()
        self.exit()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="statbar", description="Host telemetry dashboard")
    parser.add_argument("-c", "--config", help="TOML configuration file")
    parser.add_argument("--log-file", help="Write logs to this file")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Entry point for the statbar application."""
    args = parse_args(argv)
    if args.log_file:
        logging.basicConfig(
            filename=args.log_file,
            level=args.log_level.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    else:
        # Stray log output would corrupt the terminal UI
        logging.getLogger("statbar").addHandler(logging.NullHandler())
        logging.getLogger("statbar").propagate = False

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        raise SystemExit(f"statbar: {exc}") from exc

    app = StatbarApp(TelemetryEngine(ConfigStore(config)))
    try:
        app.run()
    finally:
        app.engine.close()


if __name__ == "__main__":
    main()
