"""PDC (Proportion of Days Covered) calculator.

This module reconstructs a patient's coverage timeline for one measure and
measurement year:
1. Merges fill intervals so each calendar day is counted at most once (HEDIS)
2. Derives the treatment period (first fill through Dec 31)
3. Computes gap-day usage against the 20% allowance
4. Projects year-end PDC for "no more refills" and "perfect refilling"
5. Reports supply on hand, runout and refills needed as of the current date

Every function is pure. The current date is always a parameter.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import date
from typing import Any

from ma_calculators.pdc_calculator.constants import (
    DEFAULT_DAYS_SUPPLY,
    GAP_DAYS_ALLOWED_PERCENTAGE,
)
from ma_calculators.pdc_calculator.dates import (
    add_days,
    days_between,
    days_to_year_end,
    year_end,
    year_start,
)
from ma_calculators.pdc_calculator.dispense_processing import (
    dispense_from_fhir,
    extract_days_supply,
    extract_fill_date,
)
from ma_calculators.pdc_calculator.models import (
    DispenseRecord,
    FillRecord,
    GapDaysResult,
    MeasurementPeriod,
    PDCInput,
    PDCResult,
)


def calculate_covered_days_from_fills(
    fills: Iterable[FillRecord],
    treatment_end: date,
    treatment_start: date | None = None,
) -> int:
    """Count distinct calendar days covered by at least one fill.

    Each fill covers ``[fill_date, fill_date + days_supply)``. Intervals are
    sorted by start and swept left to right; overlapping or touching spans
    coalesce, so no day is counted twice regardless of input order. Days supply
    is clipped to the window before it is added to a date.

    Args:
        fills: Fill records in any order
        treatment_end: Last day (inclusive) that can count as covered
        treatment_start: Optional first day (inclusive) that can count

    Returns:
        Number of covered days inside the treatment window
    """
    window_end = add_days(treatment_end, 1)

    intervals: list[tuple[date, date]] = []
    for fill in fills:
        if fill.fill_date >= window_end:
            continue
        start = fill.fill_date
        end = add_days(start, min(fill.days_supply, days_between(start, window_end)))
        if treatment_start is not None and start < treatment_start:
            start = treatment_start
        if start < end:
            intervals.append((start, end))

    if not intervals:
        return 0

    intervals.sort()

    covered = 0
    merged_start, merged_end = intervals[0]
    for start, end in intervals[1:]:
        if start <= merged_end:
            merged_end = max(merged_end, end)
            continue
        covered += days_between(merged_start, merged_end)
        merged_start, merged_end = start, end

    covered += days_between(merged_start, merged_end)
    return covered


def calculate_treatment_period(first_fill_date: date, measurement_year: int) -> int:
    """Days from the first fill through Dec 31, both ends inclusive.

    Example:
        Jan 15, 2025 -> 351 days; Jan 1, 2024 -> 366 days.
    """
    return days_between(first_fill_date, year_end(measurement_year)) + 1


def calculate_gap_days(treatment_days: int, covered_days: int) -> GapDaysResult:
    """Gap day usage against the 20% allowance.

    ``gap_days_remaining`` is negative once the allowance is exceeded.
    """
    gap_days_used = treatment_days - covered_days
    gap_days_allowed = math.floor(treatment_days * GAP_DAYS_ALLOWED_PERCENTAGE)

    return GapDaysResult(
        gap_days_used=gap_days_used,
        gap_days_allowed=gap_days_allowed,
        gap_days_remaining=gap_days_allowed - gap_days_used,
    )


def calculate_pdc_status_quo(
    covered_days: int,
    current_supply_days: int,
    days_to_year_end: int,
    treatment_days: int,
) -> float:
    """Projected PDC if the patient never refills again.

    Supply on hand cannot count toward days past year end.
    """
    projected_covered = covered_days + min(current_supply_days, days_to_year_end)
    return min(100.0, projected_covered / treatment_days * 100)


def calculate_pdc_perfect(covered_days: int, days_to_year_end: int, treatment_days: int) -> float:
    """Projected PDC with flawless refilling through year end.

    If this is below 80% the patient cannot reach the target this year.
    """
    return min(100.0, (covered_days + days_to_year_end) / treatment_days * 100)


def calculate_days_to_runout(last_fill_date: date, days_supply: int, current_date: date) -> int:
    """Days until the last fill runs out; 0 is today, negative is already out."""
    return days_supply - days_between(last_fill_date, current_date)


def calculate_current_supply(last_fill_date: date, days_supply: int, current_date: date) -> int:
    """Days of medication still on hand from the last fill (never negative)."""
    return max(0, calculate_days_to_runout(last_fill_date, days_supply, current_date))


def calculate_refills_needed(
    days_to_year_end: int,
    current_supply: int,
    typical_days_supply: int = DEFAULT_DAYS_SUPPLY,
) -> int:
    """Refills required to stay covered through year end.

    Any positive shortfall needs at least one refill.
    """
    shortfall = max(0, days_to_year_end - current_supply)
    if shortfall == 0:
        return 0
    return max(1, math.ceil(shortfall / typical_days_supply))


def transform_dispenses_to_input(
    dispenses: Iterable[DispenseRecord | dict[str, Any]],
    measurement_year: int,
    current_date: date,
) -> PDCInput:
    """Adapt raw dispenses into calculator input.

    Dispenses without a usable fill date are dropped; a missing or
    non-positive days supply becomes 30. The period runs from the earliest
    fill (or Jan 1 when there are none) through Dec 31.

    Args:
        dispenses: ``DispenseRecord`` models or FHIR MedicationDispense-like dicts
        measurement_year: Calendar year being measured
        current_date: As-of date carried through to the calculator

    Returns:
        PDCInput with fills sorted by date
    """
    fills: list[FillRecord] = []
    for dispense in dispenses:
        record = dispense if isinstance(dispense, DispenseRecord) else dispense_from_fhir(dispense)
        fill_date = extract_fill_date(record)
        if fill_date is None:
            continue
        fills.append(FillRecord(fill_date=fill_date, days_supply=extract_days_supply(record)))

    fills.sort(key=lambda f: f.fill_date)

    period_start = fills[0].fill_date if fills else year_start(measurement_year)

    return PDCInput(
        fills=fills,
        measurement_period=MeasurementPeriod(start=period_start, end=year_end(measurement_year)),
        current_date=current_date,
    )


def calculate_pdc(pdc_input: PDCInput) -> PDCResult:
    """Calculate PDC, gap days, projections and supply state.

    A patient with no fills is a valid "never started" state: PDC is 0 and
    nothing is raised.

    Example:
        >>> from datetime import date
        >>> result = calculate_pdc(
        ...     PDCInput(
        ...         fills=[FillRecord(fill_date=date(2025, 1, 15), days_supply=30)],
        ...         measurement_period=MeasurementPeriod(
        ...             start=date(2025, 1, 15), end=date(2025, 12, 31)
        ...         ),
        ...         current_date=date(2025, 6, 1),
        ...     )
        ... )
        >>> result.covered_days
        30
    """
    period = pdc_input.measurement_period
    current_date = pdc_input.current_date

    treatment_days = days_between(period.start, period.end) + 1
    remaining_days = days_to_year_end(current_date, period.end)

    if not pdc_input.fills:
        gap_days = calculate_gap_days(treatment_days, 0)
        return PDCResult(
            pdc=0.0,
            covered_days=0,
            treatment_days=treatment_days,
            gap_days_used=gap_days.gap_days_used,
            gap_days_allowed=gap_days.gap_days_allowed,
            gap_days_remaining=gap_days.gap_days_remaining,
            pdc_status_quo=0.0,
            pdc_perfect=calculate_pdc_perfect(0, remaining_days, treatment_days),
            measurement_period=period,
            days_until_runout=0,
            current_supply=0,
            refills_needed=calculate_refills_needed(remaining_days, 0),
            last_fill_date=None,
            fill_count=0,
            days_to_year_end=remaining_days,
        )

    # sorted() is stable, so same-day fills keep input order and the last one wins
    sorted_fills = sorted(pdc_input.fills, key=lambda f: f.fill_date)
    last_fill = sorted_fills[-1]

    covered_days = calculate_covered_days_from_fills(
        sorted_fills, period.end, treatment_start=period.start
    )
    pdc = min(100.0, covered_days / treatment_days * 100)
    gap_days = calculate_gap_days(treatment_days, covered_days)

    current_supply = calculate_current_supply(
        last_fill.fill_date, last_fill.days_supply, current_date
    )

    return PDCResult(
        pdc=pdc,
        covered_days=covered_days,
        treatment_days=treatment_days,
        gap_days_used=gap_days.gap_days_used,
        gap_days_allowed=gap_days.gap_days_allowed,
        gap_days_remaining=gap_days.gap_days_remaining,
        pdc_status_quo=calculate_pdc_status_quo(
            covered_days, current_supply, remaining_days, treatment_days
        ),
        pdc_perfect=calculate_pdc_perfect(covered_days, remaining_days, treatment_days),
        measurement_period=period,
        days_until_runout=calculate_days_to_runout(
            last_fill.fill_date, last_fill.days_supply, current_date
        ),
        current_supply=current_supply,
        refills_needed=calculate_refills_needed(remaining_days, current_supply),
        last_fill_date=last_fill.fill_date,
        fill_count=len(sorted_fills),
        days_to_year_end=remaining_days,
    )


def calculate_pdc_from_dispenses(
    dispenses: Iterable[DispenseRecord | dict[str, Any]],
    measurement_year: int,
    current_date: date,
) -> PDCResult:
    """Adapter + calculator in one call."""
    return calculate_pdc(transform_dispenses_to_input(dispenses, measurement_year, current_date))
