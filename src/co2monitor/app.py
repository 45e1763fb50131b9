"""co2monitor - Textual status display."""

import logging
import os
from datetime import date

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.widgets import DataTable, Footer, Static

from co2monitor.accounting import (
    date_from_epoch_day,
    iso_week_number,
    sunday_week_number,
    week_start_from_epoch_week,
    ym_to_text,
)
from co2monitor.engine import Co2Engine
from co2monitor.formatting import co2_level, country_flag, format_short, format_with_unit, sparkline
from co2monitor.models import EngineStatus, IntensitySource, SoftwareGrams
from co2monitor.scheduler import Scheduler
from co2monitor.settings import Settings, default_settings_path

logger = logging.getLogger(__name__)

LOG_LEVEL_ENV = "CO2MONITOR_LOG_LEVEL"

LEVEL_COLORS = {
    "very-low": "green",
    "low": "green",
    "moderate": "yellow",
    "high": "dark_orange",
    "very-high": "red",
    "extreme": "red",
    "critical": "magenta",
}


def describe_intensity(status: EngineStatus) -> str:
    """One-line intensity description, e.g. ``Intensity: 240 g/kWh 🇬🇧 UK (Country Avg)``."""
    reading = status.intensity
    if reading is None:
        return "Intensity: —"
    parts = [f"Intensity: {reading.value_g_per_kwh:.0f} g/kWh"]
    if reading.country_code:
        flag = country_flag(reading.country_code)
        parts.append(f"{flag} {reading.country_code}" if flag else reading.country_code)
    if reading.source is IntensitySource.REMOTE_PROVIDER:
        parts.append("(ElectricityMaps)")
    elif reading.source is IntensitySource.COUNTRY_AVERAGE:
        parts.append("(Country Avg)")
    return " ".join(parts)


def describe_totals(status: EngineStatus, unit: str, week_start: str, today: date) -> str:
    totals = status.totals
    week_number = sunday_week_number(today) if week_start == "sunday" else iso_week_number(today)
    return (
        f"Today: {format_with_unit(totals.daily, unit)}  •  "
        f"Week: {format_with_unit(totals.weekly, unit)} (W{week_number})  •  "
        f"Month: {format_with_unit(totals.monthly, unit)}  •  "
        f"All-time: {format_with_unit(totals.cumulative, unit)}"
    )


def describe_periods(status: EngineStatus, week_start: str) -> str:
    totals = status.totals
    parts = []
    if totals.daily_epoch:
        parts.append(f"Day reset: {date_from_epoch_day(totals.daily_epoch)}")
    if totals.weekly_epoch:
        parts.append(f"Week start: {week_start_from_epoch_week(totals.weekly_epoch, week_start)}")
    if totals.monthly_epoch:
        parts.append(f"Month: {ym_to_text(totals.monthly_epoch)}")
    return "  •  ".join(parts) if parts else "Period: —"


class StatusHeader(Static):
    """Current estimate, intensity, trend and period totals."""

    DEFAULT_CSS = """
    StatusHeader {
        height: auto;
        min-height: 6;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, settings: Settings, *args, **kwargs) -> None:
        """Initialize StatusHeader."""
        super().__init__(*args, **kwargs)
        self._settings = settings
        self._status: EngineStatus | None = None

    def compose(self) -> ComposeResult:
        yield Static(self._render_text(), id="status-text")

    def update_status(self, status: EngineStatus) -> None:
        self._status = status
        try:
            self.query_one("#status-text", Static).update(self._render_text())
        except Exception:
            pass  # Widget not mounted yet

    def _render_text(self) -> str:
        status = self._status
        if status is None:
            return "Waiting for the first sample..."

        unit = self._settings.get_string("display-unit")
        week_start = self._settings.get_string("week-start-day")
        estimate = status.estimate
        value = format_with_unit(estimate.total_grams, unit)
        if self._settings.get_boolean("color-coding") and not self._settings.get_boolean("monochrome-mode"):
            color = LEVEL_COLORS[co2_level(estimate.total_grams)]
            value = f"[bold {color}]{value}[/bold {color}]"

        lines = [
            f"Current consumption: {value} over the last {status.interval_seconds}s"
            f"  (CPU {status.utilization_percent:5.1f}%, ~{status.watts:.1f} W)"
        ]
        if estimate.error:
            lines.append(f"[red]Estimation error: {estimate.error}[/red]")
        if self._settings.get_boolean("show-intensity"):
            line = describe_intensity(status)
            if status.intensity is not None:
                line += f"  (as of {status.intensity.captured_wall:%H:%M})"
            lines.append(line)
        if self._settings.get_boolean("show-trend"):
            lines.append(f"Trend: {sparkline(list(status.trend))}")
        today = status.updated_at.date() if status.updated_at else date.today()
        lines.append(describe_totals(status, unit, week_start, today))
        lines.append(describe_periods(status, week_start))
        return "\n".join(lines)


class ConsumerTable(Container):
    """Table of software names and grams, keyed by name."""

    DEFAULT_CSS = """
    ConsumerTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, title: str, *args, **kwargs) -> None:
        """Initialize ConsumerTable."""
        super().__init__(*args, **kwargs)
        self.border_title = title

    def compose(self) -> ComposeResult:
        yield DataTable()

    def on_mount(self) -> None:
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.add_column("Software", key="name")
        table.add_column("CO2", key="grams", width=14)

    def update_rows(self, rows: list[SoftwareGrams]) -> None:
        """
        Replace the table contents with ``rows``.

        Rows are cleared and re-added so the order follows the grams.
        """
        table = self.query_one(DataTable)
        table.clear()
        names: set[str] = set()
        for row in rows:
            if row.name in names or not row.grams > 0:
                continue
            table.add_row(row.name[:40], format_short(row.grams), key=row.name)
            names.add(row.name)


class Co2MonitorApp(App):
    """Live CO2 status for this machine."""

    TITLE = "co2monitor"
    SUB_TITLE = "CPU CO2 Consumption Monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    #status-header {
        dock: top;
        height: auto;
    }

    #consumers {
        height: 1fr;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("e", "export", "Export"),
        ("r", "reset_totals", "Reset totals"),
    ]

    def __init__(self, settings: Settings | None = None, engine: Co2Engine | None = None) -> None:
        """Initialize the Co2MonitorApp."""
        super().__init__()
        self._settings = settings if settings is not None else Settings()
        self._engine = engine if engine is not None else Co2Engine(self._settings)
        self._scheduler = Scheduler(self._engine, self._settings)
        self._shown_status: EngineStatus | None = None

    def compose(self) -> ComposeResult:
        yield StatusHeader(self._settings, id="status-header")
        yield Horizontal(
            ConsumerTable("Current interval", id="current-table"),
            ConsumerTable("Overall", id="overall-table"),
            id="consumers",
        )
        yield Footer()

    def on_mount(self) -> None:
        """Start the scheduler and poll the engine for new snapshots."""
        self._scheduler.start()
        self._scheduler.trigger_now()
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        status = self._engine.status
        if status is self._shown_status:
            return
        self._shown_status = status
        try:
            self._update_ui(status)
        except Exception:
            logger.exception("Status display update failed")

    def _update_ui(self, status: EngineStatus) -> None:
        self.query_one("#status-header", StatusHeader).update_status(status)
        self.query_one("#current-table", ConsumerTable).update_rows(list(status.estimate.per_process))
        overall = self.query_one("#overall-table", ConsumerTable)
        overall.update_rows(list(status.top_software))
        if status.software_count:
            shown = len(status.top_software)
            overall.border_subtitle = (
                f"Showing all {status.software_count} apps"
                if shown >= status.software_count
                else f"Showing top {shown} of {status.software_count} apps"
            )
        else:
            overall.border_subtitle = "No totals yet"

    def action_export(self) -> None:
        paths = self._engine.export_all()
        self.notify(f"Exported to {paths[0].parent}")

    async def action_reset_totals(self) -> None:
        await self._engine.reset_totals()
        self.notify("Totals reset")

    async def action_quit(self) -> None:
        """Stop the scheduler before exiting so no timer outlives the app."""
        await self._scheduler.stop()
        self._engine.close()
        self.exit()


def main() -> None:
    """Entry point for the co2monitor application."""
    settings_path = default_settings_path()
    settings_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=settings_path.parent / "co2monitor.log",
        level=os.environ.get(LOG_LEVEL_ENV, "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = Settings(settings_path)
    settings.load()
    app = Co2MonitorApp(settings)
    app.run()


if __name__ == "__main__":
    main()
