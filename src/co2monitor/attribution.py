"""Per-process share of CPU time and attribution of interval emissions."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from co2monitor.metrics import ProcReader
from co2monitor.models import ProcessShare, SoftwareGrams

logger = logging.getLogger(__name__)

MAX_SHARES = 200
RESAMPLE_EVERY = 6


def clamp_window_ms(window_ms: int) -> int:
    return max(50, min(1000, window_ms or 250))


def clamp_top_n(top_n: int) -> int:
    return max(5, min(25, top_n or 10))


def attribute(interval_grams: float, shares: list[ProcessShare], top_n: int) -> list[SoftwareGrams]:
    """Split interval grams over the ``top_n`` largest shares."""
    return [SoftwareGrams(name=s.name, grams=interval_grams * s.share) for s in shares[: clamp_top_n(top_n)]]


class ProcessSampler:
    """
    Measures each process name's share of CPU time over a short window.

    Sampling sleeps for the window, so full re-sampling happens only every
    sixth cycle; the cycles in between reuse the last shares.
    """

    def __init__(
        self,
        reader: ProcReader,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the ProcessSampler.

        Args:
            reader: Source of global and per-process ticks.
            sleep: Awaitable sleep used for the sampling window (seconds).
        """
        self._reader = reader
        self._sleep = sleep
        self._tick = 0
        self._last_shares: list[ProcessShare] = []

    @property
    def last_shares(self) -> list[ProcessShare]:
        return list(self._last_shares)

    async def sample_process_shares(self, window_ms: int) -> list[ProcessShare]:
        """Sample shares over ``window_ms`` (clamped to 50-1000 ms)."""
        before_cpu = self._reader.read_global_cpu_times()
        before = self._reader.process_ticks_snapshot()
        await self._sleep(clamp_window_ms(window_ms) / 1000.0)
        after_cpu = self._reader.read_global_cpu_times()
        after = self._reader.process_ticks_snapshot()

        if before_cpu is None or after_cpu is None:
            return []
        total_delta = after_cpu.total_ticks - before_cpu.total_ticks
        if total_delta <= 0:
            return []

        by_name: dict[str, float] = {}
        for pid, first in before.items():
            second = after.get(pid)
            if second is None:
                # exited during the window
                continue
            delta = second.ticks - first.ticks
            if delta <= 0:
                continue
            by_name[second.name] = by_name.get(second.name, 0.0) + delta / total_delta

        # per-PID and global counters are read at different moments; keep the sum within 1
        total_share = sum(by_name.values())
        if total_share > 1.0:
            by_name = {name: share / total_share for name, share in by_name.items()}

        shares = [ProcessShare(name=name, share=min(1.0, share)) for name, share in by_name.items()]
        shares.sort(key=lambda s: s.share, reverse=True)
        return shares[:MAX_SHARES]

    async def shares_for_cycle(self, window_ms: int) -> list[ProcessShare]:
        """Shares for this cycle, re-sampled on cycles 1, 7, 13, ..."""
        self._tick += 1
        if self._tick % RESAMPLE_EVERY == 1:
            self._last_shares = await self.sample_process_shares(window_ms)
            logger.debug("Sampled %d process names", len(self._last_shares))
        return list(self._last_shares)

    def reset(self) -> None:
        self._tick = 0
        self._last_shares = []
