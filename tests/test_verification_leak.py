"""Verification Test: bounded state and no orphan timers.

Long runs must not grow memory: the trend, smoothing window, history and
process shares all have caps. Stopping the scheduler must leave no timer,
sleep or task behind.
"""

import asyncio
import gc
from datetime import timedelta
from unittest.mock import MagicMock

import psutil
import pytest
import requests

from co2monitor.engine import Co2Engine
from co2monitor.intensity import IntensityProvider
from co2monitor.metrics import ProcReader
from co2monitor.scheduler import Scheduler
from co2monitor.tasks import TaskRegistry

from conftest import write_cpu_stat, write_pid_stat


def get_current_memory_mb() -> float:
    """Get current process memory usage in MB."""
    process = psutil.Process()
    return process.memory_info().rss / (1024 * 1024)


class InstantRegistry(TaskRegistry):
    """Registry whose sleeps advance the fabricated procfs instead of waiting."""

    def __init__(self, on_sleep) -> None:
        super().__init__()
        self._on_sleep = on_sleep

    async def sleep(self, seconds: float) -> None:
        self._on_sleep()


def make_engine(settings, proc_root, clock, registry=None) -> Co2Engine:
    return Co2Engine(
        settings,
        reader=ProcReader(proc_root),
        intensity=IntensityProvider(session=MagicMock(spec=requests.Session)),
        registry=registry,
        clock=clock,
    )


class TestBoundedState:
    """Memory verification suite tests."""

    @pytest.mark.asyncio
    async def test_long_run_keeps_state_bounded(self, settings, proc_root, clock):
        settings.set_many({"smoothing-enabled": True, "smoothing-window": 10, "history-days": 7})
        for pid in range(1, 40):
            write_pid_stat(proc_root, pid, f"p{pid}", 0)

        state = {"cycle": 0}

        def advance():
            state["cycle"] += 1
            n = state["cycle"]
            write_cpu_stat(proc_root, user=100 + n * 100, system=50, idle=850 + n * 100)
            for pid in range(1, 40):
                write_pid_stat(proc_root, pid, f"p{pid}", n * (pid % 3))

        engine = make_engine(settings, proc_root, clock, InstantRegistry(advance))
        gc.collect()
        initial_memory = get_current_memory_mb()

        # one cycle per simulated hour over a month
        for _ in range(24 * 30):
            status = await engine.run_cycle()
            clock.now += timedelta(hours=1)

        gc.collect()
        memory_delta = get_current_memory_mb() - initial_memory

        assert status.estimate.error is None
        assert len(status.trend) == 60
        assert len(engine.rolling.values) == 10
        assert len(engine.accountant.history.history()) == 7
        assert len(engine.sampler.last_shares) <= 200
        assert memory_delta < 8.0, f"Memory increased by {memory_delta:.2f}MB"


class TestNoOrphanTimers:
    @pytest.mark.asyncio
    async def test_stop_leaves_nothing_pending(self, settings, proc_root, clock):
        settings.set_many({"enable-periodic-export": True, "update-interval": 2})
        engine = make_engine(settings, proc_root, clock)
        scheduler = Scheduler(engine, settings)

        scheduler.start()
        scheduler.trigger_now()
        await asyncio.sleep(0.05)  # cycle is inside its sampling sleep
        assert engine.registry.pending > 0

        await scheduler.stop()
        engine.close()

        assert engine.registry.pending == 0
        assert not scheduler.busy

    @pytest.mark.asyncio
    async def test_repeated_start_stop(self, settings, proc_root, clock):
        engine = make_engine(settings, proc_root, clock)
        scheduler = Scheduler(engine, settings)

        for i in range(20):
            scheduler.start()
            scheduler.trigger_now()
            settings.set("carbon-intensity", 300 + i)
            await asyncio.sleep(0)
            await scheduler.stop()
            assert engine.registry.pending == 0

        engine.close()

    @pytest.mark.asyncio
    async def test_stopped_engine_publishes_nothing(self, settings, proc_root, clock):
        settings.set("update-interval", 2)
        engine = make_engine(settings, proc_root, clock)
        scheduler = Scheduler(engine, settings)

        scheduler.start()
        await scheduler.stop()
        before = engine.status
        await asyncio.sleep(2.5)

        assert engine.status is before
