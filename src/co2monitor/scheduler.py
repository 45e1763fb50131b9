"""Periodic driver for the estimation engine."""

import asyncio
import logging
from typing import Any

from co2monitor.engine import Co2Engine
from co2monitor.settings import STATE_KEYS, Settings

logger = logging.getLogger(__name__)

MIN_INTERVAL_SECONDS = 2
EXPORT_KEYS = frozenset({"enable-periodic-export", "export-interval-min", "safe-mode"})


class Scheduler:
    """
    Runs one engine cycle per update interval.

    At most one cycle is in flight: a tick that fires during a cycle does
    nothing and the finishing cycle schedules the next tick. Every timer
    goes through the engine's task registry so ``stop`` can cancel it.
    """

    def __init__(self, engine: Co2Engine, settings: Settings) -> None:
        """
        Initialize the Scheduler.

        Args:
            engine: Engine whose cycles are driven.
            settings: Source of the interval and export options.
        """
        self._engine = engine
        self._settings = settings
        self._registry = engine.registry
        self._tick_handle: asyncio.TimerHandle | None = None
        self._export_handle: asyncio.TimerHandle | None = None
        self._handler_id: int | None = None
        self._busy = False
        self._started = False
        self.cycles_started = 0

    @property
    def is_running(self) -> bool:
        return self._started

    @property
    def busy(self) -> bool:
        """True while a cycle is in flight."""
        return self._busy

    def interval(self) -> int:
        return max(MIN_INTERVAL_SECONDS, self._settings.get_int("update-interval"))

    def start(self) -> None:
        """Start ticking. Must be called from a running event loop."""
        if self._started:
            return
        self._started = True
        self._handler_id = self._settings.connect(self._on_settings_changed)
        self._schedule_next()
        self._refresh_periodic_export()

    async def stop(self) -> None:
        """Cancel every pending timer and in-flight cycle."""
        if not self._started:
            return
        self._started = False
        if self._handler_id is not None:
            self._settings.disconnect(self._handler_id)
            self._handler_id = None
        self._tick_handle = None
        self._export_handle = None
        await self._registry.shutdown()

    def trigger_now(self) -> asyncio.Task[Any] | None:
        """Start a cycle immediately unless one is already running."""
        if not self._started or self._busy:
            return None
        self._busy = True
        self.cycles_started += 1
        return self._registry.spawn(self._run_cycle(), name="co2-cycle")

    def _schedule_next(self, reset: bool = False) -> None:
        self._registry.cancel(self._tick_handle)
        self._tick_handle = self._registry.call_later(self.interval(), self._on_tick)
        if reset:
            self.trigger_now()

    def _on_tick(self) -> None:
        self._tick_handle = None
        self.trigger_now()

    async def _run_cycle(self) -> None:
        try:
            await self._engine.run_cycle()
        except Exception:
            logger.exception("Cycle failed")
        finally:
            self._busy = False
            if self._started:
                self._schedule_next()

    def _on_settings_changed(self, key: str) -> None:
        if key in STATE_KEYS or not self._started:
            return
        if key in EXPORT_KEYS:
            self._refresh_periodic_export()
        # New parameters apply to an immediate cycle if idle, else to the next one
        self._schedule_next(reset=True)

    def _refresh_periodic_export(self) -> None:
        self._registry.cancel(self._export_handle)
        self._export_handle = None
        enabled = self._settings.get_boolean("enable-periodic-export") and not self._settings.get_boolean("safe-mode")
        if not enabled:
            return
        minutes = max(5, min(240, self._settings.get_int("export-interval-min") or 30))
        self._export_handle = self._registry.call_later(minutes * 60, self._on_periodic_export)

    def _on_periodic_export(self) -> None:
        self._export_handle = None
        try:
            self._engine.export_history()
        except Exception:
            logger.exception("Periodic export failed")
        if self._started:
            self._refresh_periodic_export()
