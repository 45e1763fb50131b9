"""Heuristic CPU power and emissions model.

The numbers are estimates, not measurements: the same inputs always give the
same output.
"""

from co2monitor.models import CpuTopology, PowerModel, PowerProfile

# Active watts per core at 2200 MHz
PER_CORE_WATTS: dict[PowerProfile, float] = {
    PowerProfile.LAPTOP: 2.8,
    PowerProfile.DESKTOP: 4.0,
    PowerProfile.SERVER: 6.0,
    PowerProfile.LOWPOWER: 1.5,
}
REFERENCE_MHZ = 2200.0
IDLE_FRACTION = 0.25
IDLE_CAP_WATTS = 8.0
MIN_WATTS = 1.0


def power_model(profile: PowerProfile, topology: CpuTopology) -> PowerModel:
    """Idle and full-load wattage for a profile, scaled by CPU frequency."""
    freq_scale = max(0.5, min(2.0, topology.mhz / REFERENCE_MHZ))
    per_core = PER_CORE_WATTS.get(profile, PER_CORE_WATTS[PowerProfile.DESKTOP]) * freq_scale
    max_active = per_core * max(1, topology.cores)
    idle = min(IDLE_FRACTION * max_active, IDLE_CAP_WATTS)
    return PowerModel(idle_watts=idle, max_active_watts=max_active)


def estimate_watts(model: PowerModel, utilization_percent: float) -> float:
    """Linear interpolation between idle and full load, floored at 1 W."""
    span = model.max_active_watts - model.idle_watts
    return max(MIN_WATTS, model.idle_watts + span * (utilization_percent / 100.0))


def interval_grams(watts: float, interval_seconds: float, intensity_g_per_kwh: float) -> float:
    """CO2 grams emitted by ``watts`` drawn for ``interval_seconds``."""
    energy_wh = watts * (interval_seconds / 3600.0)
    energy_kwh = energy_wh / 1000.0
    return intensity_g_per_kwh * energy_kwh
