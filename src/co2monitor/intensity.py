"""Carbon-intensity resolution: fixed value, ElectricityMaps, or country average."""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import requests

from co2monitor.models import IntensityReading, IntensitySource, ProviderKind
from co2monitor.settings import Settings

logger = logging.getLogger(__name__)

ELECTRICITYMAPS_URL = "https://api.electricitymap.org/v3/carbon-intensity/latest"
GEOLOCATION_URL = "https://ipapi.co/json/"
REQUEST_TIMEOUT = 10.0
GEO_CACHE_SECONDS = 6 * 3600
COUNTRY_DATA_FILE = Path(__file__).parent / "data" / "country_intensity.json"

# gCO2/kWh, used when the bundled dataset is missing or lacks a country
BUILTIN_COUNTRY_INTENSITY: dict[str, float] = {
    "US": 388, "CA": 150, "FR": 60, "DE": 340, "GB": 230, "UK": 230,
    "ES": 180, "IT": 300, "SE": 30, "NO": 30, "FI": 120, "PL": 700,
    "NL": 400, "BE": 200, "CH": 30, "AT": 120, "DK": 200, "IE": 300,
    "PT": 180, "CZ": 520, "HU": 270, "RO": 300, "BG": 420, "GR": 430,
    "TR": 440, "RU": 420, "CN": 600, "IN": 700, "JP": 450, "KR": 500,
    "AU": 600, "NZ": 120, "BR": 90, "MX": 430, "ZA": 800,
}


class IntensityLookupError(Exception):
    """A network intensity or geolocation lookup failed."""


@dataclass(slots=True, frozen=True)
class IntensityConfig:
    """Provider settings for one resolution."""

    fixed_value: float = 400.0
    online: bool = False
    provider: ProviderKind = ProviderKind.FIXED
    api_key: str = ""
    zone: str = ""
    auto_detect_zone: bool = True
    cache_ttl: int = 300

    @classmethod
    def from_settings(cls, settings: Settings) -> "IntensityConfig":
        # Safe mode wins over every online option
        online = settings.get_boolean("use-online-intensity") and not settings.get_boolean("safe-mode")
        return cls(
            fixed_value=float(settings.get_int("carbon-intensity")),
            online=online,
            provider=ProviderKind.parse(settings.get_string("intensity-provider")),
            api_key=settings.get_string("electricitymaps-api-key").strip(),
            zone=settings.get_string("electricitymaps-zone").strip(),
            auto_detect_zone=settings.get_boolean("auto-detect-zone"),
            cache_ttl=max(10, min(3600, settings.get_int("provider-cache-ttl"))),
        )

    @property
    def effective_provider(self) -> ProviderKind:
        return self.provider if self.online else ProviderKind.FIXED

    def cache_key(self) -> tuple[Any, ...]:
        return (self.effective_provider, self.api_key, self.zone, self.auto_detect_zone, self.fixed_value)


def fetch_json(session: requests.Session, url: str, headers: dict[str, str] | None = None, **params: str) -> Any:
    """
    GET a JSON document. Blocking; run it in a worker thread.

    Raises:
        IntensityLookupError: On any transport, status or decoding failure.
    """
    try:
        response = session.get(url, headers=headers or {}, params=params or None, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
        return response.json()
    except (requests.RequestException, ValueError) as exc:
        raise IntensityLookupError(f"GET {url} failed: {exc}") from exc


class CountryTable:
    """Offline country averages, loaded on first use."""

    def __init__(self, path: Path = COUNTRY_DATA_FILE) -> None:
        self._path = path
        self._table: dict[str, float] | None = None

    def _load(self) -> dict[str, float]:
        table = dict(BUILTIN_COUNTRY_INTENSITY)
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Using built-in country intensities, cannot load %s: %s", self._path, exc)
            return table
        if isinstance(data, dict):
            for code, value in data.items():
                if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
                    table[str(code).upper()] = float(value)
        return table

    def lookup(self, code: str) -> float | None:
        """Intensity for a country code; UK and GB are synonyms."""
        if self._table is None:
            self._table = self._load()
        code = code.strip().upper()
        value = self._table.get(code)
        if value is None and code in ("GB", "UK"):
            value = self._table.get("UK" if code == "GB" else "GB")
        return value

    def clear(self) -> None:
        self._table = None


class GeoLocator:
    """IP geolocation with a six-hour cache of the last country code."""

    def __init__(self, session: requests.Session, clock: Callable[[], float] = time.monotonic) -> None:
        self._session = session
        self._clock = clock
        self._code: str | None = None
        self._fetched_at = 0.0

    async def country_code(self) -> str | None:
        now = self._clock()
        if self._code and now - self._fetched_at < GEO_CACHE_SECONDS:
            return self._code
        try:
            data = await asyncio.to_thread(fetch_json, self._session, GEOLOCATION_URL)
        except IntensityLookupError as exc:
            logger.warning("Geolocation lookup failed: %s", exc)
            return None
        code = data.get("country_code") if isinstance(data, dict) else None
        if not isinstance(code, str) or len(code) < 2:
            logger.warning("Geolocation response has no country_code")
            return None
        self._code = code.upper()
        self._fetched_at = now
        return self._code

    def clear(self) -> None:
        self._code = None
        self._fetched_at = 0.0


class IntensityStrategy(ABC):
    """One way of producing an intensity reading."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock

    @abstractmethod
    async def resolve(self, config: IntensityConfig) -> IntensityReading | None:
        """Return a reading, or None when this source cannot provide one."""


class FixedIntensity(IntensityStrategy):
    async def resolve(self, config: IntensityConfig) -> IntensityReading | None:
        return IntensityReading(
            value_g_per_kwh=config.fixed_value,
            source=IntensitySource.FIXED,
            country_code=None,
            captured_at=self._clock(),
        )


class ElectricityMapsIntensity(IntensityStrategy):
    """Live zone intensity from the ElectricityMaps API."""

    def __init__(self, session: requests.Session, geolocator: GeoLocator, clock: Callable[[], float] = time.monotonic) -> None:
        super().__init__(clock)
        self._session = session
        self._geolocator = geolocator

    async def resolve(self, config: IntensityConfig) -> IntensityReading | None:
        zone = config.zone
        if not zone and config.auto_detect_zone:
            zone = await self._geolocator.country_code() or ""
        if not config.api_key or not zone:
            logger.warning("ElectricityMaps needs an API key and a zone")
            return None

        try:
            data = await asyncio.to_thread(
                fetch_json,
                self._session,
                ELECTRICITYMAPS_URL,
                {"auth-token": config.api_key},
                zone=zone,
            )
        except IntensityLookupError as exc:
            logger.warning("ElectricityMaps fetch error: %s", exc)
            return None

        value = data.get("carbonIntensity") if isinstance(data, dict) else None
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            logger.warning("ElectricityMaps returned no usable carbonIntensity: %r", value)
            return None
        return IntensityReading(
            value_g_per_kwh=float(value),
            source=IntensitySource.REMOTE_PROVIDER,
            country_code=zone[:2].upper() if len(zone) >= 2 else None,
            captured_at=self._clock(),
        )


class CountryAverageIntensity(IntensityStrategy):
    """Bundled country average for the geolocated country."""

    def __init__(self, geolocator: GeoLocator, table: CountryTable, clock: Callable[[], float] = time.monotonic) -> None:
        super().__init__(clock)
        self._geolocator = geolocator
        self._table = table

    async def resolve(self, config: IntensityConfig) -> IntensityReading | None:
        code = await self._geolocator.country_code()
        if not code:
            return None
        value = self._table.lookup(code)
        if value is None or value <= 0:
            logger.warning("No country average for %s", code)
            return None
        return IntensityReading(
            value_g_per_kwh=value,
            source=IntensitySource.COUNTRY_AVERAGE,
            country_code="UK" if code == "GB" else code,
            captured_at=self._clock(),
        )


class IntensityProvider:
    """
    Resolves the current intensity, with a TTL cache.

    Owns the HTTP session, the geolocation cache and the country table.
    Fallback readings are not cached, so the next cycle tries again.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.monotonic,
        country_table: CountryTable | None = None,
    ) -> None:
        self._session = session if session is not None else requests.Session()
        self._clock = clock
        self.geolocator = GeoLocator(self._session, clock)
        self.country_table = country_table if country_table is not None else CountryTable()
        self._fixed = FixedIntensity(clock)
        self._strategies: dict[ProviderKind, IntensityStrategy] = {
            ProviderKind.FIXED: self._fixed,
            ProviderKind.ELECTRICITYMAPS: ElectricityMapsIntensity(self._session, self.geolocator, clock),
            ProviderKind.AUTO_COUNTRY: CountryAverageIntensity(self.geolocator, self.country_table, clock),
        }
        self._cached: IntensityReading | None = None
        self._cache_key: tuple[Any, ...] | None = None
        self._last: IntensityReading | None = None

    @property
    def last_reading(self) -> IntensityReading | None:
        return self._last

    async def resolve_intensity(self, config: IntensityConfig) -> IntensityReading:
        key = config.cache_key()
        if (
            self._cached is not None
            and self._cache_key == key
            and self._clock() - self._cached.captured_at < config.cache_ttl
        ):
            logger.debug("Intensity cache hit: %.0f g/kWh", self._cached.value_g_per_kwh)
            self._last = self._cached
            return self._cached

        strategy = self._strategies[config.effective_provider]
        reading = await strategy.resolve(config)
        if reading is None:
            reading = await self._fixed.resolve(config)
        else:
            self._cached = reading
            self._cache_key = key
        self._last = reading
        return reading

    def clear(self) -> None:
        """Drop cached readings, the geolocation cache and the country table."""
        self._cached = None
        self._cache_key = None
        self.geolocator.clear()
        self.country_table.clear()

    def close(self) -> None:
        self.clear()
        self._session.close()
