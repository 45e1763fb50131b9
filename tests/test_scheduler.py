"""Tests for the cycle scheduler."""

import asyncio

import pytest

from co2monitor.scheduler import Scheduler
from co2monitor.tasks import TaskRegistry


class GatedEngine:
    """Engine stand-in whose cycles wait until released."""

    def __init__(self) -> None:
        self.registry = TaskRegistry()
        self.release = asyncio.Event()
        self.cycles = 0
        self.finished = 0
        self.exports = 0

    async def run_cycle(self):
        self.cycles += 1
        await self.release.wait()
        self.finished += 1

    def export_history(self):
        self.exports += 1


def remaining(handle) -> float:
    return handle.when() - asyncio.get_running_loop().time()


@pytest.fixture
def engine():
    return GatedEngine()


@pytest.fixture
def scheduler(engine, settings):
    return Scheduler(engine, settings)


@pytest.mark.asyncio
async def test_start_schedules_first_tick(scheduler, settings):
    settings.set("update-interval", 30)
    scheduler.start()

    assert scheduler.is_running
    assert remaining(scheduler._tick_handle) == pytest.approx(30, abs=0.5)
    await scheduler.stop()


@pytest.mark.asyncio
async def test_interval_floor(scheduler, settings):
    settings.set("update-interval", 0)
    assert scheduler.interval() == 2


@pytest.mark.asyncio
async def test_trigger_is_not_reentrant(scheduler, engine):
    scheduler.start()
    task = scheduler.trigger_now()
    await asyncio.sleep(0)

    assert scheduler.busy
    assert scheduler.trigger_now() is None
    scheduler._on_tick()  # a tick during a cycle does nothing
    assert engine.cycles == 1

    engine.release.set()
    await task
    assert not scheduler.busy
    assert scheduler.cycles_started == 1
    await scheduler.stop()


@pytest.mark.asyncio
async def test_finished_cycle_schedules_next(scheduler, engine, settings):
    settings.set("update-interval", 5)
    engine.release.set()
    scheduler.start()
    scheduler._registry.cancel(scheduler._tick_handle)

    await scheduler.trigger_now()

    assert remaining(scheduler._tick_handle) == pytest.approx(5, abs=0.5)
    await scheduler.stop()


@pytest.mark.asyncio
async def test_trigger_before_start_does_nothing(scheduler, engine):
    assert scheduler.trigger_now() is None
    assert engine.cycles == 0


@pytest.mark.asyncio
async def test_stop_cancels_everything(scheduler, engine, settings):
    settings.set("enable-periodic-export", True)
    scheduler.start()
    task = scheduler.trigger_now()
    await asyncio.sleep(0)
    assert engine.registry.pending == 3  # tick, export timer, cycle

    await scheduler.stop()

    assert engine.registry.pending == 0
    assert task.cancelled()
    assert engine.finished == 0
    assert not scheduler.is_running
    # no tick rescheduled by the canceled cycle
    assert scheduler._tick_handle is None


@pytest.mark.asyncio
async def test_settings_change_triggers_cycle(scheduler, engine, settings):
    engine.release.set()
    scheduler.start()

    settings.set("update-interval", 20)
    await asyncio.sleep(0)

    assert scheduler.cycles_started == 1
    assert engine.cycles == 1
    await scheduler.stop()


@pytest.mark.asyncio
async def test_state_keys_are_ignored(scheduler, settings):
    scheduler.start()
    settings.set("daily-total-g", 1.0)
    assert scheduler.cycles_started == 0
    await scheduler.stop()


@pytest.mark.asyncio
async def test_settings_change_during_cycle_waits(scheduler, engine, settings):
    scheduler.start()
    task = scheduler.trigger_now()
    await asyncio.sleep(0)

    settings.set("carbon-intensity", 100)
    assert scheduler.cycles_started == 1

    engine.release.set()
    await task
    await scheduler.stop()


@pytest.mark.asyncio
async def test_stopped_scheduler_ignores_settings(scheduler, settings):
    scheduler.start()
    await scheduler.stop()
    settings.set("update-interval", 20)
    assert scheduler.cycles_started == 0


class TestPeriodicExport:
    @pytest.mark.asyncio
    async def test_disabled_by_default(self, scheduler):
        scheduler.start()
        assert scheduler._export_handle is None
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_interval_is_clamped(self, scheduler, settings):
        settings.set_many({"enable-periodic-export": True, "export-interval-min": 1})
        scheduler.start()
        assert remaining(scheduler._export_handle) == pytest.approx(300, abs=1)

        settings.set("export-interval-min", 1000)
        assert remaining(scheduler._export_handle) == pytest.approx(240 * 60, abs=1)
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_safe_mode_disables_export(self, scheduler, settings):
        settings.set("enable-periodic-export", True)
        scheduler.start()
        assert scheduler._export_handle is not None

        settings.set("safe-mode", True)
        assert scheduler._export_handle is None
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_export_fires_and_rearms(self, scheduler, engine, settings):
        settings.set("enable-periodic-export", True)
        scheduler.start()
        first = scheduler._export_handle

        scheduler._on_periodic_export()

        assert engine.exports == 1
        assert scheduler._export_handle is not None
        assert scheduler._export_handle is not first
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_export_errors_are_contained(self, scheduler, engine, settings):
        def broken():
            raise OSError("disk full")

        engine.export_history = broken
        settings.set("enable-periodic-export", True)
        scheduler.start()

        scheduler._on_periodic_export()

        assert scheduler._export_handle is not None
        await scheduler.stop()
