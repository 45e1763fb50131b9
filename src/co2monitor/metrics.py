"""Raw CPU counters read from procfs."""

import logging
import re
from pathlib import Path

import psutil

from co2monitor.models import CpuSnapshot, CpuTopology, ProcessTicks

logger = logging.getLogger(__name__)

PROC_ROOT = Path("/proc")
MAX_PIDS = 500
DEFAULT_TOPOLOGY = CpuTopology(mhz=2200.0, cores=4)

_MHZ_RE = re.compile(r"^cpu MHz\s*:\s*([0-9.]+)", re.MULTILINE)
_PROCESSOR_RE = re.compile(r"^processor\s*:", re.MULTILINE)


def compute_utilization_percent(prev: CpuSnapshot | None, curr: CpuSnapshot | None) -> float:
    """
    Busy percentage between two snapshots.

    Returns 0.0 when a snapshot is missing or the total tick delta is not
    positive (first sample, counter reset).
    """
    if prev is None or curr is None:
        return 0.0
    total_delta = curr.total_ticks - prev.total_ticks
    idle_delta = curr.idle_ticks - prev.idle_ticks
    if total_delta <= 0:
        return 0.0
    percent = (total_delta - idle_delta) / total_delta * 100.0
    return min(100.0, max(0.0, percent))


class ProcReader:
    """
    Reader for the procfs text interface.

    Every read degrades to None or a default when the source is missing or
    malformed; nothing raises past this class.
    """

    def __init__(self, proc_root: Path = PROC_ROOT, max_pids: int = MAX_PIDS) -> None:
        """
        Initialize the ProcReader.

        Args:
            proc_root: Directory laid out like /proc.
            max_pids: Upper bound on processes read per snapshot.
        """
        self._root = Path(proc_root)
        self._max_pids = max_pids

    @property
    def proc_root(self) -> Path:
        return self._root

    def _read_text(self, path: Path) -> str | None:
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return None

    def read_global_cpu_times(self) -> CpuSnapshot | None:
        """Parse the aggregate ``cpu`` line of ``stat``."""
        text = self._read_text(self._root / "stat")
        if not text:
            return None

        parts = text.splitlines()[0].split()
        if not parts or parts[0] != "cpu":
            return None
        try:
            values = [int(v) for v in parts[1:]]
        except ValueError:
            return None
        if len(values) < 7:
            return None

        user, nice, system, idle, iowait, irq, softirq = values[:7]
        steal = values[7] if len(values) > 7 else 0
        idle_all = idle + iowait
        non_idle = user + nice + system + irq + softirq + steal
        return CpuSnapshot(idle_ticks=idle_all, total_ticks=idle_all + non_idle)

    def read_cpu_topology(self) -> CpuTopology:
        """
        Read CPU frequency and core count.

        Falls back to psutil for values missing from ``cpuinfo`` and then to
        2200 MHz / 4 cores.
        """
        mhz: float | None = None
        cores: int | None = None

        text = self._read_text(self._root / "cpuinfo")
        if text:
            match = _MHZ_RE.search(text)
            if match:
                try:
                    mhz = float(match.group(1))
                except ValueError:
                    mhz = None
            cores = len(_PROCESSOR_RE.findall(text)) or None

        if mhz is None or mhz <= 0:
            try:
                freq = psutil.cpu_freq()
                mhz = freq.current if freq and freq.current > 0 else None
            except (OSError, RuntimeError, NotImplementedError):
                mhz = None
        if cores is None:
            try:
                cores = psutil.cpu_count(logical=True)
            except (OSError, RuntimeError):
                cores = None

        return CpuTopology(
            mhz=mhz if mhz else DEFAULT_TOPOLOGY.mhz,
            cores=cores if cores else DEFAULT_TOPOLOGY.cores,
        )

    def list_processes(self) -> list[int]:
        """List numeric entries of the proc root."""
        try:
            return sorted(int(entry.name) for entry in self._root.iterdir() if entry.name.isdigit())
        except OSError:
            return []

    def read_process_cpu_ticks(self, pid: int) -> ProcessTicks | None:
        """
        Read one process's user+system ticks and short name.

        The name sits between the first '(' and the last ')' and may contain
        spaces. Returns None if the process vanished or the line is malformed.
        """
        text = self._read_text(self._root / str(pid) / "stat")
        if not text:
            return None

        left = text.find("(")
        right = text.rfind(")")
        if left < 0 or right <= left:
            return None
        name = text[left + 1 : right]
        rest = text[right + 2 :].split()
        # state is rest[0]; utime and stime are rest[11] and rest[12]
        if len(rest) < 13:
            return None
        try:
            ticks = int(rest[11]) + int(rest[12])
        except ValueError:
            return None
        return ProcessTicks(name=name or "unknown", ticks=ticks)

    def process_ticks_snapshot(self) -> dict[int, ProcessTicks]:
        """Read ticks for at most ``max_pids`` processes, skipping vanished ones."""
        snapshot: dict[int, ProcessTicks] = {}
        for pid in self.list_processes()[: self._max_pids]:
            entry = self.read_process_cpu_ticks(pid)
            if entry is None:
                continue
            snapshot[pid] = entry
        return snapshot
