"""Profile-namespaced totals, daily history, and CSV/JSON export and import."""

import csv
import json
import logging
import math
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path

from co2monitor.models import PeriodTotals
from co2monitor.settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = "default"
TOTALS_FILENAME = "co2-consumption-totals.csv"
TOTALS_HEADER = ["timestamp", "daily_g", "weekly_g", "monthly_g", "all_time_g"]
HISTORY_HEADER = ["date", "grams"]
SOFTWARE_HEADER = ["software", "grams"]

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_-]")


def _as_grams(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        grams = float(value)
    except (TypeError, ValueError):
        return None
    return grams if math.isfinite(grams) else None


def is_iso_date(key: str) -> bool:
    """True for a valid YYYY-MM-DD string."""
    if not _ISO_DATE_RE.match(key):
        return False
    try:
        date.fromisoformat(key)
    except ValueError:
        return False
    return True


def safe_profile(profile: str) -> str:
    """Profile name usable inside a file name."""
    return _UNSAFE_RE.sub("_", profile or DEFAULT_PROFILE)


def sanitize_name(name: str) -> str:
    return re.sub(r"[,\r\n]", " ", name).strip()


class ProfileMap:
    """Mapping of profile name to (key -> grams)."""

    def __init__(self, data: Mapping[str, Mapping[str, float]] | None = None) -> None:
        self._data: dict[str, dict[str, float]] = {}
        for profile, entries in (data or {}).items():
            self.merge_add(profile, entries)

    @classmethod
    def from_json(cls, text: str) -> "ProfileMap":
        """Parse a JSON blob; a corrupt blob gives an empty map."""
        try:
            raw = json.loads(text) if text else {}
        except ValueError:
            logger.warning("Discarding corrupt totals blob")
            return cls()
        result = cls()
        if not isinstance(raw, dict):
            return result
        for profile, entries in raw.items():
            if isinstance(entries, dict):
                result.merge_add(str(profile), entries)
        return result

    def to_json(self) -> str:
        return json.dumps(self._data, sort_keys=True)

    def profiles(self) -> list[str]:
        return list(self._data)

    def get(self, profile: str) -> dict[str, float]:
        """Copy of one profile's entries."""
        return dict(self._data.get(profile, {}))

    def add(self, profile: str, key: str, grams: float) -> None:
        entries = self._data.setdefault(profile, {})
        entries[key] = entries.get(key, 0.0) + grams

    def merge_add(self, profile: str, entries: Mapping[str, object]) -> int:
        """Add every numeric entry; returns how many were merged."""
        merged = 0
        for key, value in entries.items():
            grams = _as_grams(value)
            if grams is None or not str(key).strip():
                continue
            self.add(profile, str(key).strip(), grams)
            merged += 1
        return merged

    def put(self, profile: str, key: str, grams: float) -> None:
        self._data.setdefault(profile, {})[key] = grams

    def trim_oldest(self, profile: str, keep: int) -> None:
        """Keep the ``keep`` lexicographically greatest keys of a profile."""
        entries = self._data.get(profile)
        if not entries:
            return
        newest = sorted(entries)[-keep:] if keep > 0 else []
        self._data[profile] = {key: entries[key] for key in newest}

    def clear(self, profile: str) -> None:
        self._data.pop(profile, None)


@dataclass(slots=True, frozen=True)
class ImportResult:
    """Counts from one import."""

    history_rows: int = 0
    software_rows: int = 0
    skipped: int = 0


def write_csv(path: Path, header: list[str], rows: Iterable[list[object]], append: bool = False) -> bool:
    """
    Write rows to a CSV file. Best effort: failures are logged, not raised.

    With ``append`` the header is written only when the file is created.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        write_header = not (append and path.exists())
        with path.open("a" if append else "w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f, lineterminator="\n")
            if write_header:
                writer.writerow(header)
            for row in rows:
                writer.writerow(row)
    except OSError as exc:
        logger.warning("Export to %s failed: %s", path, exc)
        return False
    return True


class HistoryManager:
    """
    Daily history and file exchange for the active profile.

    The history and software-totals maps are shared with the accounting
    engine, which persists them.
    """

    def __init__(
        self,
        settings: Settings,
        history: ProfileMap,
        software: ProfileMap,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._settings = settings
        self._history = history
        self._software = software
        self._clock = clock

    @property
    def profile(self) -> str:
        return self._settings.get_string("profile-name") or DEFAULT_PROFILE

    def export_directory(self) -> Path:
        configured = self._settings.get_string("export-directory")
        return Path(configured).expanduser() if configured else Path.home()

    def record_day(self, day: str, grams: float, profile: str | None = None) -> None:
        """Upsert one finished day, then drop the oldest beyond ``history-days``."""
        profile = profile or self.profile
        keep = max(1, self._settings.get_int("history-days"))
        self._history.put(profile, day, grams)
        self._history.trim_oldest(profile, keep)

    def history(self, profile: str | None = None) -> dict[str, float]:
        return self._history.get(profile or self.profile)

    def software_rows(self, view_all: bool = True, profile: str | None = None) -> list[tuple[str, float]]:
        """Software totals sorted by grams, descending, optionally cut to top-N."""
        rows = sorted(self._software.get(profile or self.profile).items(), key=lambda r: r[1], reverse=True)
        if not view_all and not self._settings.get_boolean("overall-show-all"):
            top_n = max(5, min(25, self._settings.get_int("per-process-top-n") or 10))
            rows = rows[:top_n]
        return rows

    def export_totals(self, totals: PeriodTotals) -> Path:
        """Append one line of running totals to co2-consumption-totals.csv."""
        path = self.export_directory() / TOTALS_FILENAME
        stamp = self._clock().astimezone().isoformat(timespec="seconds")
        row = [
            stamp,
            f"{totals.daily:.6f}",
            f"{totals.weekly:.6f}",
            f"{totals.monthly:.6f}",
            f"{totals.cumulative:.6f}",
        ]
        write_csv(path, TOTALS_HEADER, [row], append=True)
        return path

    def export_daily_history(self) -> Path:
        path = self.export_directory() / f"co2-daily-history-{safe_profile(self.profile)}.csv"
        rows = [[day, f"{grams:.6f}"] for day, grams in sorted(self.history().items())]
        write_csv(path, HISTORY_HEADER, rows)
        return path

    def export_software_totals(self, view_all: bool = False) -> Path:
        # 'top' honours overall-show-all; 'all' always writes every entry
        suffix = "all" if view_all else "top"
        path = self.export_directory() / f"co2-overall-software-{safe_profile(self.profile)}-{suffix}.csv"
        rows = [[sanitize_name(name), f"{grams:.6f}"] for name, grams in self.software_rows(view_all)]
        write_csv(path, SOFTWARE_HEADER, rows)
        return path

    def import_merge(self, path: Path) -> ImportResult:
        """
        Merge a CSV or JSON export into the maps.

        Date keys overwrite history entries; other keys add to software
        totals. Malformed rows are skipped one by one.
        """
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.warning("Import from %s failed: %s", path, exc)
            return ImportResult()

        if path.suffix.lower() == ".json" or text.lstrip().startswith("{"):
            return self._import_json(text)
        return self._import_csv(text)

    def _merge_entry(self, profile: str, key: str, value: object) -> str | None:
        key = key.strip()
        grams = _as_grams(value)
        if not key or grams is None:
            return None
        if is_iso_date(key):
            self._history.put(profile, key, grams)
            return "history"
        self._software.add(profile, key, grams)
        return "software"

    def _import_csv(self, text: str) -> ImportResult:
        counts = {"history": 0, "software": 0, "skipped": 0}
        profile = self.profile
        for index, line in enumerate(text.splitlines()):
            try:
                row = next(csv.reader([line]), [])
            except csv.Error as exc:
                logger.debug("Skipping unparsable import line %d: %s", index + 1, exc)
                counts["skipped"] += 1
                continue
            if not row or not "".join(row).strip():
                continue
            if index == 0 and row[0].strip().lower() in {"date", "name", "software"}:
                continue
            kind = self._merge_entry(profile, row[0], row[1]) if len(row) >= 2 else None
            counts[kind or "skipped"] += 1
        self._trim_history(profile)
        return ImportResult(counts["history"], counts["software"], counts["skipped"])

    def _import_json(self, text: str) -> ImportResult:
        try:
            data = json.loads(text)
        except ValueError as exc:
            logger.warning("Import skipped, invalid JSON: %s", exc)
            return ImportResult(skipped=1)
        if not isinstance(data, dict):
            return ImportResult(skipped=1)

        counts = {"history": 0, "software": 0, "skipped": 0}
        touched = {self.profile}
        for key, value in data.items():
            if isinstance(value, dict):
                # {profile: {key: grams}}
                touched.add(str(key))
                for inner_key, inner_value in value.items():
                    kind = self._merge_entry(str(key), str(inner_key), inner_value)
                    counts[kind or "skipped"] += 1
            else:
                kind = self._merge_entry(self.profile, str(key), value)
                counts[kind or "skipped"] += 1
        for profile in touched:
            self._trim_history(profile)
        return ImportResult(counts["history"], counts["software"], counts["skipped"])

    def _trim_history(self, profile: str) -> None:
        self._history.trim_oldest(profile, max(1, self._settings.get_int("history-days")))
