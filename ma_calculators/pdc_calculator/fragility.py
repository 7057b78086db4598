"""Fragility tier classifier.

Turns a PDCResult plus outreach context into a tier, a priority score and
an urgency level. The tier is an ordered decision procedure:
1. COMPLIANT when the status-quo projection already reaches 80%
2. T5_UNSALVAGEABLE when even perfect refilling cannot reach 80%
3. F1-F5 from the delay budget (gap days remaining per refill remaining)
4. Q4 tightening promotes F2-F5 one step late in the year

The order matters: a compliant patient is never re-labelled by the delay
budget, and Q4 tightening only ever touches F-tiers.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from datetime import date

from ma_calculators.pdc_calculator.constants import (
    BONUS_MULTIPLE_MA_MEASURES,
    BONUS_NEW_PATIENT,
    BONUS_OUT_OF_MEDICATION,
    BONUS_Q4,
    CONTACT_WINDOWS,
    DELAY_BUDGET_THRESHOLDS,
    PDC_TARGET,
    PRIORITY_BASE_SCORES,
    Q4_DAYS_TO_YEAR_END_THRESHOLD,
    Q4_GAP_DAYS_THRESHOLD,
    Q4_TIER_PROMOTION,
    TIER_ACTIONS,
    TIER_LEVELS,
    URGENCY_THRESHOLDS,
)
from ma_calculators.pdc_calculator.dates import is_q4 as detect_q4
from ma_calculators.pdc_calculator.models import (
    FragilityFlags,
    FragilityInput,
    FragilityResult,
    FragilityTier,
    MAMeasure,
    PriorityBonuses,
    UrgencyLevel,
)


def calculate_delay_budget(gap_days_remaining: int, refills_remaining: int) -> float:
    """Average days each remaining refill can be late without breaking 80%.

    With no refills remaining there is nothing left to delay, so the budget
    is infinite.
    """
    if refills_remaining <= 0:
        return math.inf
    return gap_days_remaining / refills_remaining


def determine_tier_from_delay_budget(delay_budget: float) -> FragilityTier:
    """Map a delay budget to F1-F5 (<=2, <=5, <=10, <=20, above)."""
    for upper_bound, tier in DELAY_BUDGET_THRESHOLDS:
        if delay_budget <= upper_bound:
            return tier
    return FragilityTier.F5_SAFE


def apply_q4_tightening(
    tier: FragilityTier,
    days_to_year_end: int,
    gap_days_remaining: int,
) -> tuple[FragilityTier, bool]:
    """Promote an F-tier one step when the year is nearly over and slack is thin.

    Fires only when ``days_to_year_end < 60`` and ``gap_days_remaining <= 5``.
    COMPLIANT, T5_UNSALVAGEABLE and F1_IMMINENT are returned unchanged.

    Returns:
        Tuple of (final tier, whether a promotion happened)
    """
    promoted = Q4_TIER_PROMOTION.get(tier)
    if promoted is None:
        return tier, False

    if (
        days_to_year_end < Q4_DAYS_TO_YEAR_END_THRESHOLD
        and gap_days_remaining <= Q4_GAP_DAYS_THRESHOLD
    ):
        return promoted, True
    return tier, False


def calculate_priority_score(
    tier: FragilityTier,
    *,
    days_to_runout: int,
    current_date: date,
    measure_types: Sequence[MAMeasure],
    is_new_patient: bool,
    is_q4: bool | None = None,
) -> tuple[int, PriorityBonuses]:
    """Tier base score plus independent bonuses.

    Bonuses: +30 out of medication, +25 in Q4, +15 for two or more distinct
    MA measures, +10 for a new patient.

    Returns:
        Tuple of (priority score, bonus breakdown)
    """
    in_q4 = detect_q4(current_date) if is_q4 is None else is_q4

    bonuses = PriorityBonuses(
        base=PRIORITY_BASE_SCORES[tier],
        out_of_meds=BONUS_OUT_OF_MEDICATION if days_to_runout <= 0 else 0,
        q4=BONUS_Q4 if in_q4 else 0,
        multiple_ma=BONUS_MULTIPLE_MA_MEASURES if len(set(measure_types)) >= 2 else 0,
        new_patient=BONUS_NEW_PATIENT if is_new_patient else 0,
    )
    return bonuses.total, bonuses


def determine_urgency_level(priority_score: int) -> UrgencyLevel:
    for threshold, level in URGENCY_THRESHOLDS:
        if priority_score >= threshold:
            return level
    return UrgencyLevel.LOW


def calculate_fragility(fragility_input: FragilityInput) -> FragilityResult:
    """Classify a patient/measure into a fragility tier.

    Args:
        fragility_input: PDC result plus refill and outreach context

    Returns:
        FragilityResult with tier, priority score, urgency and flags
    """
    pdc_result = fragility_input.pdc_result

    delay_budget = calculate_delay_budget(
        pdc_result.gap_days_remaining, fragility_input.refills_remaining
    )
    q4_tightened = False

    if pdc_result.pdc_status_quo >= PDC_TARGET:
        tier = FragilityTier.COMPLIANT
    elif pdc_result.pdc_perfect < PDC_TARGET:
        tier = FragilityTier.T5_UNSALVAGEABLE
    else:
        tier, q4_tightened = apply_q4_tightening(
            determine_tier_from_delay_budget(delay_budget),
            pdc_result.days_to_year_end,
            pdc_result.gap_days_remaining,
        )

    in_q4 = (
        detect_q4(fragility_input.current_date)
        if fragility_input.is_q4 is None
        else fragility_input.is_q4
    )

    priority_score, bonuses = calculate_priority_score(
        tier,
        days_to_runout=pdc_result.days_until_runout,
        current_date=fragility_input.current_date,
        measure_types=fragility_input.measure_types,
        is_new_patient=fragility_input.is_new_patient,
        is_q4=in_q4,
    )

    return FragilityResult(
        tier=tier,
        tier_level=TIER_LEVELS[tier],
        delay_budget_per_refill=delay_budget,
        contact_window=CONTACT_WINDOWS[tier],
        action=TIER_ACTIONS[tier],
        priority_score=priority_score,
        urgency_level=determine_urgency_level(priority_score),
        flags=FragilityFlags(
            is_compliant=tier is FragilityTier.COMPLIANT,
            is_unsalvageable=tier is FragilityTier.T5_UNSALVAGEABLE,
            is_out_of_meds=pdc_result.days_until_runout <= 0,
            is_q4=in_q4,
            is_multiple_ma=len(set(fragility_input.measure_types)) >= 2,
            is_new_patient=fragility_input.is_new_patient,
            q4_tightened=q4_tightened,
        ),
        bonuses=bonuses,
    )
