"""Text formatting of gram values for the status display."""

import math

SPARK_TICKS = "▁▂▃▄▅▆▇█"

# Upper bounds (grams per interval) of each level, lowest first
CO2_LEVELS: list[tuple[float, str]] = [
    (0.01, "very-low"),
    (0.05, "low"),
    (0.1, "moderate"),
    (0.2, "high"),
    (0.5, "very-high"),
    (1.0, "extreme"),
]


def format_with_unit(grams: float, unit: str = "g") -> str:
    """Format grams in g, mg or kg."""
    if unit not in ("g", "mg", "kg"):
        unit = "g"
    if not math.isfinite(grams) or grams <= 0:
        return {"mg": "0.0 mg", "kg": "0.000 kg"}.get(unit, "0.000 g")
    if unit == "mg":
        return f"{grams * 1000.0:.1f} mg"
    if unit == "kg":
        return f"{grams / 1000.0:.3f} kg"
    return f"{grams:.3f} g"


def format_short(grams: float) -> str:
    """Compact format; values under 1 mg get more decimals so they stay visible."""
    if not math.isfinite(grams) or grams <= 0:
        return "0.000 g"
    if grams >= 0.001:
        return f"{grams:.3f} g"
    mg = grams * 1000.0
    for threshold, precision in ((0.1, 3), (0.01, 4), (0.001, 5)):
        if mg >= threshold:
            return f"{mg:.{precision}f} mg"
    return f"{mg:.6f} mg"


def sparkline(values: list[float]) -> str:
    if not values:
        return "—"
    low, high = min(values), max(values)
    span = (high - low) or 1.0
    last = len(SPARK_TICKS) - 1
    return "".join(SPARK_TICKS[int((v - low) / span * last)] for v in values)


def co2_level(grams: float) -> str:
    """Severity level name for a per-interval gram value."""
    for bound, name in CO2_LEVELS:
        if grams < bound:
            return name
    return "critical"


def country_flag(code: str | None) -> str | None:
    """Regional-indicator flag for a two-letter country code."""
    if not code or len(code.strip()) < 2:
        return None
    code = code.strip().upper()[:2]
    if code == "UK":
        code = "GB"
    if not all("A" <= c <= "Z" for c in code):
        return None
    return "".join(chr(0x1F1E6 + ord(c) - ord("A")) for c in code)
