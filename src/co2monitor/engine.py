"""Estimation engine: one sampling cycle from CPU ticks to accounted grams."""

import logging
from collections import deque
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from co2monitor.accounting import PeriodAccountant
from co2monitor.attribution import ProcessSampler, attribute, clamp_top_n, clamp_window_ms
from co2monitor.history import ImportResult
from co2monitor.intensity import IntensityConfig, IntensityProvider
from co2monitor.metrics import ProcReader, compute_utilization_percent
from co2monitor.models import (
    EngineStatus,
    IntervalEstimate,
    PowerProfile,
    SoftwareGrams,
)
from co2monitor.power import estimate_watts, interval_grams, power_model
from co2monitor.settings import Settings
from co2monitor.tasks import TaskRegistry

logger = logging.getLogger(__name__)


class RollingWindow:
    """Average of the last N interval totals, N between 1 and 60."""

    def __init__(self, size: int = 1) -> None:
        self._values: deque[float] = deque(maxlen=self._clamp(size))

    @staticmethod
    def _clamp(size: int) -> int:
        return max(1, min(60, size))

    @property
    def size(self) -> int:
        return self._values.maxlen or 1

    @property
    def values(self) -> list[float]:
        return list(self._values)

    def resize(self, size: int) -> None:
        size = self._clamp(size)
        if size != self.size:
            self._values = deque(self._values, maxlen=size)

    def push(self, value: float) -> float:
        """Add a value and return the window average."""
        self._values.append(value)
        return sum(self._values) / len(self._values)

    def reset(self, value: float | None = None) -> None:
        self._values.clear()
        if value is not None:
            self._values.append(value)


class Co2Engine:
    """
    Runs sampling cycles and publishes an EngineStatus after each.

    Smoothing only changes the displayed value and the trend; totals and
    per-software attribution always use the raw interval grams.
    """

    def __init__(
        self,
        settings: Settings,
        reader: ProcReader | None = None,
        intensity: IntensityProvider | None = None,
        registry: TaskRegistry | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """
        Initialize the Co2Engine.

        Args:
            settings: Configuration and durable state.
            reader: procfs reader; defaults to /proc.
            intensity: Intensity provider; defaults to one with its own HTTP session.
            registry: Tracks the cycle's sleeps so shutdown can cancel them.
            clock: Local wall clock used for period rollover.
        """
        self._settings = settings
        self._clock = clock
        self.registry = registry if registry is not None else TaskRegistry()
        self.reader = reader if reader is not None else ProcReader()
        self.intensity = intensity if intensity is not None else IntensityProvider()
        self.sampler = ProcessSampler(self.reader, sleep=self.registry.sleep)
        self.accountant = PeriodAccountant(settings, clock)
        self.rolling = RollingWindow(settings.get_int("smoothing-window"))
        self._trend: deque[float] = deque(maxlen=60)
        self._prev_cpu = self.reader.read_global_cpu_times()
        self._status = self._build_status(IntervalEstimate(total_grams=0.0, raw_grams=0.0))

    @property
    def status(self) -> EngineStatus:
        """Snapshot from the last completed cycle."""
        return self._status

    def _smooth(self, raw: float) -> float:
        if not self._settings.get_boolean("smoothing-enabled"):
            self.rolling.reset(raw)
            return raw
        self.rolling.resize(self._settings.get_int("smoothing-window"))
        return self.rolling.push(raw)

    def _push_trend(self, value: float) -> None:
        length = max(10, min(300, self._settings.get_int("history-length")))
        if self._trend.maxlen != length:
            self._trend = deque(self._trend, maxlen=length)
        self._trend.append(value)

    def _build_status(
        self,
        estimate: IntervalEstimate,
        utilization: float = 0.0,
        watts: float = 0.0,
        updated_at: datetime | None = None,
    ) -> EngineStatus:
        history = self.accountant.history
        all_rows = history.software_rows(view_all=True)
        shown = history.software_rows(view_all=False)
        return EngineStatus(
            estimate=estimate,
            intensity=self.intensity.last_reading,
            totals=self.accountant.totals(),
            trend=tuple(self._trend),
            top_software=tuple(SoftwareGrams(name, grams) for name, grams in shown if grams > 0),
            software_count=sum(1 for _, grams in all_rows if grams > 0),
            utilization_percent=utilization,
            watts=watts,
            updated_at=updated_at,
            interval_seconds=max(2, self._settings.get_int("update-interval")),
        )

    async def run_cycle(self) -> EngineStatus:
        """
        Run one sampling cycle.

        Never raises for estimation failures: the cycle publishes a zeroed
        estimate carrying the error text instead.
        """
        settings = self._settings
        utilization = 0.0
        watts = 0.0
        try:
            interval = max(2, settings.get_int("update-interval"))
            safe = settings.get_boolean("safe-mode")
            profile = PowerProfile.parse(settings.get_string("cpu-profile"))
            reading = await self.intensity.resolve_intensity(IntensityConfig.from_settings(settings))

            window_ms = clamp_window_ms(settings.get_int("per-process-sample-ms"))
            await self.registry.sleep(window_ms / 1000.0)
            current = self.reader.read_global_cpu_times()
            utilization = compute_utilization_percent(self._prev_cpu, current)
            if current is not None:
                self._prev_cpu = current

            model = power_model(profile, self.reader.read_cpu_topology())
            watts = estimate_watts(model, utilization)
            raw = interval_grams(watts, interval, reading.value_g_per_kwh)
            displayed = self._smooth(raw)

            per_process: list[SoftwareGrams] = []
            if not safe and settings.get_boolean("per-software-monitoring"):
                shares = await self.sampler.shares_for_cycle(window_ms)
                per_process = attribute(raw, shares, clamp_top_n(settings.get_int("per-process-top-n")))

            async with self.accountant.lock:
                self.accountant.record_interval(raw, per_process)

            estimate = IntervalEstimate(total_grams=displayed, raw_grams=raw, per_process=tuple(per_process))
        except Exception as exc:
            logger.exception("Estimation cycle failed")
            estimate = IntervalEstimate(total_grams=0.0, raw_grams=0.0, error=str(exc) or type(exc).__name__)
            utilization = 0.0
            watts = 0.0

        self._push_trend(estimate.total_grams)
        self._status = self._build_status(estimate, utilization, watts, self._clock())
        return self._status

    def _refresh_status(self) -> None:
        """Rebuild the status after a user action, keeping the last estimate."""
        last = self._status
        self._status = self._build_status(last.estimate, last.utilization_percent, last.watts, last.updated_at)

    async def reset_totals(self) -> None:
        """User reset; waits for any in-flight accounting update."""
        async with self.accountant.lock:
            self.accountant.reset_totals()
            self._refresh_status()

    async def import_merge(self, path: Path) -> ImportResult:
        async with self.accountant.lock:
            result = self.accountant.import_merge(path)
            self._refresh_status()
        logger.info("Imported %s: %s", path, result)
        return result

    def export_history(self) -> Path:
        return self.accountant.history.export_daily_history()

    def export_all(self) -> list[Path]:
        """Write every export file; returns their paths."""
        history = self.accountant.history
        return [
            history.export_totals(self.accountant.totals()),
            history.export_daily_history(),
            history.export_software_totals(view_all=False),
            history.export_software_totals(view_all=True),
        ]

    def close(self) -> None:
        self.registry.cancel_all()
        self.intensity.close()
