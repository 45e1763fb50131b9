"""Tests for the power and emissions model."""

import pytest

from co2monitor.models import CpuTopology, PowerModel, PowerProfile
from co2monitor.power import estimate_watts, interval_grams, power_model


def test_desktop_reference_model():
    model = power_model(PowerProfile.DESKTOP, CpuTopology(mhz=2200.0, cores=4))
    assert model.max_active_watts == pytest.approx(16.0)
    assert model.idle_watts == pytest.approx(4.0)


def test_worked_example():
    """50% on a 4-core desktop at 400 g/kWh for 10 s is about 0.01111 g."""
    model = power_model(PowerProfile.DESKTOP, CpuTopology(mhz=2200.0, cores=4))
    watts = estimate_watts(model, 50.0)

    assert watts == pytest.approx(10.0)
    assert interval_grams(watts, 10, 400.0) == pytest.approx(0.011111, rel=1e-4)


@pytest.mark.parametrize(
    "profile,per_core",
    [
        (PowerProfile.LAPTOP, 2.8),
        (PowerProfile.DESKTOP, 4.0),
        (PowerProfile.SERVER, 6.0),
        (PowerProfile.LOWPOWER, 1.5),
    ],
)
def test_per_core_table(profile, per_core):
    model = power_model(profile, CpuTopology(mhz=2200.0, cores=1))
    assert model.max_active_watts == pytest.approx(per_core)


def test_frequency_scale_is_clamped():
    slow = power_model(PowerProfile.DESKTOP, CpuTopology(mhz=100.0, cores=1))
    fast = power_model(PowerProfile.DESKTOP, CpuTopology(mhz=9000.0, cores=1))

    assert slow.max_active_watts == pytest.approx(2.0)
    assert fast.max_active_watts == pytest.approx(8.0)


def test_idle_is_capped_at_eight_watts():
    model = power_model(PowerProfile.SERVER, CpuTopology(mhz=2200.0, cores=64))
    assert model.idle_watts == 8.0


def test_zero_cores_counts_as_one():
    model = power_model(PowerProfile.DESKTOP, CpuTopology(mhz=2200.0, cores=0))
    assert model.max_active_watts == pytest.approx(4.0)


def test_watts_floor():
    model = PowerModel(idle_watts=0.1, max_active_watts=0.5)
    assert estimate_watts(model, 0.0) == 1.0


def test_watts_monotonic_in_utilization():
    model = power_model(PowerProfile.LAPTOP, CpuTopology(mhz=3000.0, cores=8))
    values = [estimate_watts(model, u) for u in range(0, 101, 5)]
    assert values == sorted(values)


def test_interval_grams_deterministic():
    assert interval_grams(12.5, 30, 250.0) == interval_grams(12.5, 30, 250.0)
    assert interval_grams(0.0, 30, 250.0) == 0.0
