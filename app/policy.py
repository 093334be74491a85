from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from business_time import BUSINESS_TIMEZONE


# Window name -> (start, end) wall-clock labels. Sunday entries override the weekday table.
SHIFT_WINDOWS: Dict[str, Dict[str, Tuple[str, str]]] = {
    "weekday": {
        "opener": ("08:00", "16:30"),
        "early9": ("09:00", "17:30"),
        "mid10": ("10:00", "18:30"),
        "mid11": ("11:00", "19:30"),
        "closer": ("12:00", "20:30"),
        "short_morning": ("08:00", "13:30"),
        "short_mid": ("11:00", "16:30"),
        "short_mid10": ("10:00", "15:30"),
        "short_mid12": ("12:00", "17:30"),
        "short_evening": ("15:00", "20:30"),
        "gap_morning": ("08:00", "13:00"),
        "gap_mid": ("11:00", "16:00"),
        "gap_evening": ("15:30", "20:30"),
        "prod_afternoon": ("16:30", "20:30"),
    },
    "sunday": {
        "opener": ("10:00", "18:30"),
        "early9": ("10:00", "18:30"),
        "closer": ("11:00", "19:30"),
        "short_morning": ("10:00", "15:30"),
        "short_evening": ("14:00", "19:30"),
        "gap_morning": ("10:00", "15:00"),
        "gap_evening": ("14:30", "19:30"),
        "prod_afternoon": ("15:30", "19:30"),
    },
}

WINDOW_KINDS: Dict[str, str] = {
    "opener": "full",
    "early9": "full",
    "mid10": "full",
    "mid11": "full",
    "closer": "full",
    "short_morning": "short",
    "short_mid": "short",
    "short_mid10": "short",
    "short_mid12": "short",
    "short_evening": "short",
    "gap_morning": "gap",
    "gap_mid": "gap",
    "gap_evening": "gap",
    "prod_afternoon": "prod_afternoon",
}


@dataclass(frozen=True)
class SchedulingRules:
    """Numeric policy shared by every allocation phase."""

    full_shift_hours: float = 8.0
    short_shift_hours: float = 5.5
    gap_shift_hours: float = 5.0
    prod_afternoon_hours: float = 4.0
    meal_break_threshold_hours: float = 6.0
    meal_break_hours: float = 0.5
    full_time_threshold_hours: float = 32.0
    default_days_per_week: int = 5
    paid_holiday_hours: float = 8.0
    paid_holiday_service_days: int = 30
    max_fill_iterations: int = 50
    general_fill_base_shifts: int = 4
    busy_day_multipliers: Dict[int, float] = field(default_factory=lambda: {5: 1.3, 6: 1.3})
    busy_production_days: Tuple[int, ...] = (5, 6)
    default_apparel_stations: int = 2
    default_pricer_stations: int = 1
    openers_required: int = 2
    closers_required: int = 2
    managers_required: int = 1
    labor_targets: Dict[str, float] = field(
        default_factory=lambda: {"leadership": 0.25, "production": 0.35, "greeter": 0.15, "cashier": 0.25}
    )
    timezone: str = BUSINESS_TIMEZONE

    def paid_hours(self, clock_hours: float) -> float:
        if clock_hours >= self.meal_break_threshold_hours:
            return clock_hours - self.meal_break_hours
        return clock_hours

    def hours_for_kind(self, kind: str) -> float:
        return {
            "full": self.full_shift_hours,
            "short": self.short_shift_hours,
            "gap": self.gap_shift_hours,
            "prod_afternoon": self.prod_afternoon_hours,
        }[kind]

    def day_multiplier(self, day_index: int) -> float:
        return float(self.busy_day_multipliers.get(day_index, 1.0))


DEFAULT_RULES = SchedulingRules()


def _coerce_int(value: Any, fallback: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return fallback
    return number if number >= 0 else fallback


def _coerce_pct(value: Any, fallback: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if number > 1.0:
        number /= 100.0
    return max(0.0, min(number, 1.0))


def rules_from_settings(settings, base: Optional[SchedulingRules] = None) -> SchedulingRules:
    """Overlay a persisted GlobalSettings row (or mapping) onto the rule defaults."""
    base = base or DEFAULT_RULES
    if settings is None:
        return base

    def _read(name: str) -> Any:
        if isinstance(settings, dict):
            return settings.get(name)
        return getattr(settings, name, None)

    targets = dict(base.labor_targets)
    for category in ("leadership", "production", "greeter", "cashier"):
        raw = _read(f"{category}_pct")
        if raw is not None:
            targets[category] = _coerce_pct(raw, targets[category])
    return dataclasses.replace(
        base,
        openers_required=_coerce_int(_read("openers_required"), base.openers_required),
        closers_required=_coerce_int(_read("closers_required"), base.closers_required),
        managers_required=_coerce_int(_read("managers_required"), base.managers_required),
        labor_targets=targets,
    )


def station_limits(location, rules: Optional[SchedulingRules] = None) -> Dict[str, int]:
    """Return station caps for a location; 0 or missing falls back to the rule defaults."""
    rules = rules or DEFAULT_RULES
    apparel = _coerce_int(getattr(location, "apparel_processor_stations", 0), 0) if location else 0
    pricers = _coerce_int(getattr(location, "donation_pricing_stations", 0), 0) if location else 0
    return {
        "apparel": apparel if apparel > 0 else rules.default_apparel_stations,
        "pricers": pricers if pricers > 0 else rules.default_pricer_stations,
    }


def window_table(is_sunday: bool) -> Dict[str, Tuple[str, str]]:
    table = dict(SHIFT_WINDOWS["weekday"])
    if is_sunday:
        table.update(SHIFT_WINDOWS["sunday"])
    return table
