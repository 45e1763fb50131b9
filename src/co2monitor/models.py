"""Data models for co2monitor."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class PowerProfile(Enum):
    """CPU class selecting the wattage heuristic."""

    LAPTOP = "laptop"
    DESKTOP = "desktop"
    SERVER = "server"
    LOWPOWER = "lowpower"

    @classmethod
    def parse(cls, value: str) -> "PowerProfile":
        """Map a settings string to a profile, defaulting to desktop."""
        try:
            return cls(value)
        except ValueError:
            return cls.DESKTOP


class IntensitySource(Enum):
    """Where an intensity value came from."""

    FIXED = "fixed"
    REMOTE_PROVIDER = "remote-provider"
    COUNTRY_AVERAGE = "country-average"


class ProviderKind(Enum):
    """Intensity provider selection as stored in settings."""

    FIXED = "fixed"
    ELECTRICITYMAPS = "electricitymaps"
    AUTO_COUNTRY = "auto-country"

    @classmethod
    def parse(cls, value: str) -> "ProviderKind":
        try:
            return cls(value)
        except ValueError:
            return cls.FIXED


@dataclass(slots=True, frozen=True)
class CpuSnapshot:
    """Aggregate CPU tick counters since boot."""

    idle_ticks: int
    total_ticks: int


@dataclass(slots=True, frozen=True)
class CpuTopology:
    """CPU frequency and core count."""

    mhz: float = 2200.0
    cores: int = 4


@dataclass(slots=True, frozen=True)
class ProcessTicks:
    """Accumulated user+system ticks of one process."""

    name: str
    ticks: int


@dataclass(slots=True, frozen=True)
class PowerModel:
    """Idle and full-load wattage for the whole CPU."""

    idle_watts: float
    max_active_watts: float


@dataclass(slots=True, frozen=True)
class IntensityReading:
    """Grid carbon intensity in gCO2/kWh."""

    value_g_per_kwh: float
    source: IntensitySource
    country_code: str | None
    captured_at: float  # time.monotonic() at capture, for cache ageing
    captured_wall: datetime = field(default_factory=datetime.now)  # local wall clock, for display


@dataclass(slots=True, frozen=True)
class ProcessShare:
    """A process name's fraction of total CPU time in a sampling window."""

    name: str
    share: float  # 0.0 - 1.0


@dataclass(slots=True, frozen=True)
class SoftwareGrams:
    """Emissions attributed to one software name."""

    name: str
    grams: float


@dataclass(slots=True, frozen=True)
class IntervalEstimate:
    """Result of one sampling cycle."""

    total_grams: float  # displayed value, smoothed when enabled
    raw_grams: float  # unsmoothed value used for accounting
    per_process: tuple[SoftwareGrams, ...] = ()
    error: str | None = None


@dataclass(slots=True, frozen=True)
class PeriodTotals:
    """Rolling totals and the epoch keys of their current periods."""

    daily: float = 0.0
    weekly: float = 0.0
    monthly: float = 0.0
    cumulative: float = 0.0
    daily_epoch: int = 0
    weekly_epoch: int = 0
    monthly_epoch: int = 0


@dataclass(slots=True, frozen=True)
class EngineStatus:
    """Read-only view of the engine, refreshed once per cycle."""

    estimate: IntervalEstimate
    intensity: IntensityReading | None
    totals: PeriodTotals
    trend: tuple[float, ...] = ()
    top_software: tuple[SoftwareGrams, ...] = ()
    software_count: int = 0
    utilization_percent: float = 0.0
    watts: float = 0.0
    updated_at: datetime | None = None
    interval_seconds: int = 0
