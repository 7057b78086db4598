"""Thresholds and lookup tables for PDC and fragility tier calculation.

Every number the calculator and the tier classifier depend on lives here so
that tier math has exactly one source of truth.
"""

from ma_calculators.pdc_calculator.models import FragilityTier, UrgencyLevel

# PDC >= 80% is passing (HEDIS / CMS Star adherence threshold)
PDC_TARGET = 80.0

# Gap days allowed as a share of the treatment period
GAP_DAYS_ALLOWED_PERCENTAGE = 0.20

# Applied when a dispense carries no usable days supply
DEFAULT_DAYS_SUPPLY = 30

# A patient whose first fill falls within this many days is "new"
NEW_PATIENT_WINDOW_DAYS = 90

# Upper bound (inclusive) of the delay budget for each F-tier; anything above F4 is F5
DELAY_BUDGET_THRESHOLDS: list[tuple[float, FragilityTier]] = [
    (2, FragilityTier.F1_IMMINENT),
    (5, FragilityTier.F2_FRAGILE),
    (10, FragilityTier.F3_MODERATE),
    (20, FragilityTier.F4_COMFORTABLE),
]

# Q4 tightening fires when days_to_year_end < 60 AND gap_days_remaining <= 5
Q4_DAYS_TO_YEAR_END_THRESHOLD = 60
Q4_GAP_DAYS_THRESHOLD = 5

Q4_MONTHS = frozenset({10, 11, 12})

# COMPLIANT, T5_UNSALVAGEABLE and F1_IMMINENT are never promoted
Q4_TIER_PROMOTION: dict[FragilityTier, FragilityTier] = {
    FragilityTier.F5_SAFE: FragilityTier.F4_COMFORTABLE,
    FragilityTier.F4_COMFORTABLE: FragilityTier.F3_MODERATE,
    FragilityTier.F3_MODERATE: FragilityTier.F2_FRAGILE,
    FragilityTier.F2_FRAGILE: FragilityTier.F1_IMMINENT,
}

TIER_LEVELS: dict[FragilityTier, int] = {
    FragilityTier.T5_UNSALVAGEABLE: 0,
    FragilityTier.F1_IMMINENT: 1,
    FragilityTier.F2_FRAGILE: 2,
    FragilityTier.F3_MODERATE: 3,
    FragilityTier.F4_COMFORTABLE: 4,
    FragilityTier.F5_SAFE: 5,
    FragilityTier.COMPLIANT: 6,
}

PRIORITY_BASE_SCORES: dict[FragilityTier, int] = {
    FragilityTier.F1_IMMINENT: 100,
    FragilityTier.F2_FRAGILE: 80,
    FragilityTier.F3_MODERATE: 60,
    FragilityTier.F4_COMFORTABLE: 40,
    FragilityTier.F5_SAFE: 20,
    FragilityTier.COMPLIANT: 0,
    FragilityTier.T5_UNSALVAGEABLE: 0,
}

BONUS_OUT_OF_MEDICATION = 30
BONUS_Q4 = 25
BONUS_MULTIPLE_MA_MEASURES = 15
BONUS_NEW_PATIENT = 10

# F1 (100) + 30 + 25 + 15 + 10
MAX_PRIORITY_SCORE = 180

# Checked top-down; the first threshold the score reaches wins
URGENCY_THRESHOLDS: list[tuple[int, UrgencyLevel]] = [
    (150, UrgencyLevel.EXTREME),
    (100, UrgencyLevel.HIGH),
    (50, UrgencyLevel.MODERATE),
]

CONTACT_WINDOWS: dict[FragilityTier, str] = {
    FragilityTier.F1_IMMINENT: "24 hours",
    FragilityTier.F2_FRAGILE: "48 hours",
    FragilityTier.F3_MODERATE: "1 week",
    FragilityTier.F4_COMFORTABLE: "2 weeks",
    FragilityTier.F5_SAFE: "Monthly",
    FragilityTier.COMPLIANT: "Monitor only",
    FragilityTier.T5_UNSALVAGEABLE: "Special handling required",
}

TIER_ACTIONS: dict[FragilityTier, str] = {
    FragilityTier.F1_IMMINENT: "Immediate outreach required",
    FragilityTier.F2_FRAGILE: "Urgent outreach recommended",
    FragilityTier.F3_MODERATE: "Standard outreach",
    FragilityTier.F4_COMFORTABLE: "Monitor and schedule",
    FragilityTier.F5_SAFE: "Routine monitoring",
    FragilityTier.COMPLIANT: "No action needed - monitor only",
    FragilityTier.T5_UNSALVAGEABLE: "Special handling - cannot reach 80%",
}
