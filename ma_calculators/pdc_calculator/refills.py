"""Refill helpers for medication-level outreach.

``calculate_refills_needed`` in the calculator is the one formula for
"refills needed". The helpers here only decide which days supply to divide
by (inferred from recent fill history) and then delegate to it.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date

from ma_calculators.pdc_calculator.calculator import (
    calculate_current_supply,
    calculate_refills_needed,
)
from ma_calculators.pdc_calculator.constants import DEFAULT_DAYS_SUPPLY
from ma_calculators.pdc_calculator.models import FillRecord, RefillEstimate


def calculate_coverage_shortfall(days_to_year_end: int, supply_on_hand: int) -> int:
    """Days short of year end if the patient never refills (0 if none)."""
    return max(0, days_to_year_end - supply_on_hand)


def calculate_supply_on_hand(last_fill: FillRecord | None, current_date: date) -> int:
    if last_fill is None:
        return 0
    return calculate_current_supply(last_fill.fill_date, last_fill.days_supply, current_date)


def infer_typical_days_supply(
    fills: Sequence[FillRecord],
    default: int = DEFAULT_DAYS_SUPPLY,
) -> int:
    """Rounded mean days supply of the given fills, or ``default``."""
    if not fills:
        return default
    average = round(sum(f.days_supply for f in fills) / len(fills))
    return average if average > 0 else default


def estimate_remaining_refills(
    coverage_shortfall: int,
    recent_fills: Sequence[FillRecord] = (),
    standard_days_supply: int = DEFAULT_DAYS_SUPPLY,
) -> RefillEstimate:
    """Estimate refills to reach year end using the patient's own fill pattern.

    This is not the number of refills left on the prescription.
    """
    if coverage_shortfall <= 0:
        return RefillEstimate(
            remaining_refills=0,
            estimated_days_per_refill=standard_days_supply,
            reasoning="No refills needed - adequate coverage to reach year-end",
        )

    days_per_refill = infer_typical_days_supply(recent_fills, default=standard_days_supply)
    # supply 0 turns the shortfall back into days-to-year-end for the shared formula
    remaining = calculate_refills_needed(coverage_shortfall, 0, days_per_refill)

    return RefillEstimate(
        remaining_refills=remaining,
        estimated_days_per_refill=days_per_refill,
        reasoning=f"Need {remaining} refill(s) of {days_per_refill}-day supply",
    )
