"""Shared fixtures: a fabricated procfs tree and in-memory settings."""

from datetime import datetime
from pathlib import Path

import pytest

from co2monitor.settings import Settings


def write_cpu_stat(root: Path, user=0, nice=0, system=0, idle=0, iowait=0, irq=0, softirq=0, steal=0) -> None:
    """Write the aggregate cpu line of <root>/stat."""
    (root / "stat").write_text(
        f"cpu  {user} {nice} {system} {idle} {iowait} {irq} {softirq} {steal} 0 0\n"
        f"cpu0 {user} {nice} {system} {idle} {iowait} {irq} {softirq} {steal} 0 0\n"
        "intr 0\n"
    )


def write_pid_stat(root: Path, pid: int, name: str, utime: int, stime: int = 0) -> None:
    """Write <root>/<pid>/stat with the given name and tick counts."""
    pid_dir = root / str(pid)
    pid_dir.mkdir(exist_ok=True)
    (pid_dir / "stat").write_text(
        f"{pid} ({name}) S 1 1 1 0 -1 4194560 100 0 0 0 {utime} {stime} 0 0 20 0 1 0 100 1000 100\n"
    )


def write_cpuinfo(root: Path, mhz: float = 2200.0, cores: int = 4) -> None:
    blocks = [f"processor\t: {i}\nmodel name\t: Test CPU\ncpu MHz\t\t: {mhz:.3f}\n" for i in range(cores)]
    (root / "cpuinfo").write_text("\n".join(blocks))


@pytest.fixture
def proc_root(tmp_path: Path) -> Path:
    """A procfs-like directory with a desktop CPU at 2200 MHz and 4 cores."""
    root = tmp_path / "proc"
    root.mkdir()
    write_cpu_stat(root, user=100, system=50, idle=850)
    write_cpuinfo(root)
    return root


@pytest.fixture
def settings() -> Settings:
    """In-memory settings with defaults."""
    return Settings()


class FakeClock:
    """Settable local clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 12, 10, 0, 0))
