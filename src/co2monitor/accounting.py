"""Daily, weekly, monthly and cumulative emission totals."""

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path

from co2monitor.history import DEFAULT_PROFILE, HistoryManager, ImportResult, ProfileMap
from co2monitor.models import PeriodTotals, SoftwareGrams
from co2monitor.settings import Settings, SettingsWriteError

logger = logging.getLogger(__name__)

EPOCH = date(1970, 1, 1)


def epoch_day(day: date) -> int:
    """Days since 1970-01-01."""
    return (day - EPOCH).days


def _days_since_week_start(day: date, week_start: str) -> int:
    if week_start == "sunday":
        return (day.weekday() + 1) % 7
    return day.weekday()


def epoch_week(day: date, week_start: str = "monday") -> int:
    """Index of the week containing ``day``; weeks start on Monday or Sunday."""
    start = day - timedelta(days=_days_since_week_start(day, week_start))
    return epoch_day(start) // 7


def epoch_year_month(day: date) -> int:
    return day.year * 100 + day.month


def date_from_epoch_day(index: int) -> str:
    return (EPOCH + timedelta(days=index)).isoformat()


def week_start_from_epoch_week(index: int, week_start: str = "monday") -> str:
    """ISO date of the first day of the week with the given index."""
    for offset in range(7):
        day = EPOCH + timedelta(days=index * 7 + offset)
        if _days_since_week_start(day, week_start) == 0:
            return day.isoformat()
    raise ValueError(index)


def ym_to_text(ym: int) -> str:
    return f"{ym // 100}-{ym % 100:02d}"


def iso_week_number(day: date) -> int:
    return day.isocalendar()[1]


def sunday_week_number(day: date) -> int:
    """US-style week number: weeks start on Sunday, week 1 contains Jan 1."""
    first = date(day.year, 1, 1)
    first_dow = (first.weekday() + 1) % 7  # Sunday=0
    return ((day - first).days + first_dow) // 7 + 1


@dataclass(slots=True)
class Accumulator:
    """Grams accumulated within one period instance."""

    grams: float = 0.0
    epoch: int = 0  # 0 means unset

    def advance(self, current: int) -> tuple[int, float] | None:
        """
        Move to the period ``current``.

        Returns (finished epoch, finished grams) when a period rolled over.
        The first call only records the epoch and keeps the grams.
        """
        if self.epoch == 0:
            self.epoch = current
            return None
        if current == self.epoch:
            return None
        finished = (self.epoch, self.grams)
        self.grams = 0.0
        self.epoch = current
        return finished


class PeriodAccountant:
    """
    Owns all accumulators, per-software totals and the daily history.

    In-memory state is authoritative; every update is mirrored to the
    settings store and a failed write is retried on the next update.
    ``lock`` guards an update against interleaving user actions.
    """

    def __init__(self, settings: Settings, clock: Callable[[], datetime] = datetime.now) -> None:
        self._settings = settings
        self._clock = clock
        self.lock = asyncio.Lock()

        self.daily = Accumulator(settings.get_double("daily-total-g"), settings.get_int("daily-epoch-day"))
        self.weekly = Accumulator(settings.get_double("weekly-total-g"), settings.get_int("weekly-epoch-week"))
        self.monthly = Accumulator(settings.get_double("monthly-total-g"), settings.get_int("monthly-epoch-ym"))
        self.cumulative = settings.get_double("cumulative-total-g")
        self.software = ProfileMap.from_json(settings.get_string("software-totals-json"))
        self._history_map = ProfileMap.from_json(settings.get_string("daily-history-json"))
        self.history = HistoryManager(settings, self._history_map, self.software, clock)
        self._dirty = False

    @property
    def profile(self) -> str:
        return self._settings.get_string("profile-name") or DEFAULT_PROFILE

    @property
    def dirty(self) -> bool:
        """True while the last write to the settings store failed."""
        return self._dirty

    def totals(self) -> PeriodTotals:
        return PeriodTotals(
            daily=self.daily.grams,
            weekly=self.weekly.grams,
            monthly=self.monthly.grams,
            cumulative=self.cumulative,
            daily_epoch=self.daily.epoch,
            weekly_epoch=self.weekly.epoch,
            monthly_epoch=self.monthly.epoch,
        )

    def software_totals(self, profile: str | None = None) -> dict[str, float]:
        return self.software.get(profile or self.profile)

    def record_interval(
        self,
        raw_grams: float,
        software_rows: Iterable[SoftwareGrams] = (),
        now: datetime | None = None,
    ) -> PeriodTotals:
        """Roll periods over if needed, then add one interval's raw grams."""
        today = (now or self._clock()).date()
        week_start = self._settings.get_string("week-start-day")

        finished = self.daily.advance(epoch_day(today))
        if finished is not None:
            finished_epoch, finished_grams = finished
            logger.info("Day %s closed at %.6f g", date_from_epoch_day(finished_epoch), finished_grams)
            self.history.record_day(date_from_epoch_day(finished_epoch), finished_grams)
            if self._settings.get_boolean("auto-export-history") and not self._settings.get_boolean("safe-mode"):
                self.history.export_daily_history()
        self.weekly.advance(epoch_week(today, week_start))
        self.monthly.advance(epoch_year_month(today))

        self.daily.grams += raw_grams
        self.weekly.grams += raw_grams
        self.monthly.grams += raw_grams
        self.cumulative += raw_grams

        profile = self.profile
        for row in software_rows:
            self.software.add(profile, row.name or "unknown", row.grams)

        self.persist()
        return self.totals()

    def reset_totals(self, now: datetime | None = None) -> None:
        """Zero every accumulator and the active profile's software totals."""
        today = (now or self._clock()).date()
        self.daily = Accumulator(0.0, epoch_day(today))
        self.weekly = Accumulator()
        self.monthly = Accumulator()
        self.cumulative = 0.0
        self.software.clear(self.profile)
        self.persist()

    def import_merge(self, path: Path) -> ImportResult:
        result = self.history.import_merge(path)
        self.persist()
        return result

    def persist(self) -> None:
        """Mirror in-memory state to the settings store, best effort."""
        try:
            self._settings.set_many(
                {
                    "daily-total-g": self.daily.grams,
                    "weekly-total-g": self.weekly.grams,
                    "monthly-total-g": self.monthly.grams,
                    "cumulative-total-g": self.cumulative,
                    "daily-epoch-day": self.daily.epoch,
                    "weekly-epoch-week": self.weekly.epoch,
                    "monthly-epoch-ym": self.monthly.epoch,
                    "software-totals-json": self.software.to_json(),
                    "daily-history-json": self._history_map.to_json(),
                }
            )
        except SettingsWriteError as exc:
            if not self._dirty:
                logger.warning("Totals kept in memory, settings write failed: %s", exc)
            self._dirty = True
        else:
            self._dirty = False
