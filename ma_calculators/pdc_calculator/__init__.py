"""Medication Adherence PDC Calculator.

Implements HEDIS-style PDC (Proportion of Days Covered) for the CMS Star
Ratings MA measures (MAC, MAD, MAH) and the fragility tier classifier used
to prioritise pharmacist outreach.
"""

from ma_calculators.pdc_calculator.calculator import (
    calculate_pdc,
    calculate_pdc_from_dispenses,
    transform_dispenses_to_input,
)
from ma_calculators.pdc_calculator.fragility import calculate_fragility
from ma_calculators.pdc_calculator.models import (
    DispenseRecord,
    FillRecord,
    FragilityInput,
    FragilityResult,
    FragilityTier,
    MAMeasure,
    MeasurementPeriod,
    PatientAdherenceOutput,
    PatientSummary,
    PDCInput,
    PDCResult,
    UrgencyLevel,
)
from ma_calculators.pdc_calculator.orchestrator import AdherenceCalculator

__all__ = [
    "AdherenceCalculator",
    "DispenseRecord",
    "FillRecord",
    "FragilityInput",
    "FragilityResult",
    "FragilityTier",
    "MAMeasure",
    "MeasurementPeriod",
    "PDCInput",
    "PDCResult",
    "PatientAdherenceOutput",
    "PatientSummary",
    "UrgencyLevel",
    "calculate_fragility",
    "calculate_pdc",
    "calculate_pdc_from_dispenses",
    "transform_dispenses_to_input",
]
