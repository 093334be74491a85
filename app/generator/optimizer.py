from __future__ import annotations

import math
from dataclasses import dataclass

from policy import DEFAULT_RULES, SchedulingRules

EPSILON = 1e-9


@dataclass(frozen=True)
class MixPlan:
    full: int = 0
    short: int = 0
    gap: int = 0
    total: float = 0.0

    @property
    def shifts(self) -> int:
        return self.full + self.short + self.gap


def _count_within(hours: float, unit: float) -> int:
    if hours <= 0 or unit <= 0:
        return 0
    return int(math.floor(hours / unit + EPSILON))


def optimal_plan(hours: float, days: int, rules: SchedulingRules = DEFAULT_RULES) -> MixPlan:
    """Best full/short/gap mix for ``hours`` remaining over at most ``days`` shifts.

    Full counts are tried from the largest down, so among equal totals the
    plan with more full shifts wins.
    """
    full_hours = rules.full_shift_hours
    short_hours = rules.short_shift_hours
    gap_hours = rules.gap_shift_hours
    days = max(0, int(days))
    best = MixPlan()
    max_full = min(days, _count_within(hours, full_hours))
    for full_count in range(max_full, -1, -1):
        hours_after_full = hours - full_count * full_hours
        days_after_full = days - full_count
        max_short = min(days_after_full, _count_within(hours_after_full, short_hours))
        for short_count in range(max_short + 1):
            hours_after_short = hours_after_full - short_count * short_hours
            days_after_short = days_after_full - short_count
            gap_count = min(days_after_short, _count_within(hours_after_short, gap_hours))
            total = full_count * full_hours + short_count * short_hours + gap_count * gap_hours
            if total > best.total + EPSILON and total <= hours + EPSILON:
                best = MixPlan(full_count, short_count, gap_count, total)
    return best
