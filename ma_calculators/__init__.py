"""Adherence calculators - Medication adherence scoring implementations.

Available calculators:
    - AdherenceCalculator: PDC and fragility tier scorer for MA measures
"""

from ma_calculators.pdc_calculator import AdherenceCalculator, DispenseRecord, PatientAdherenceOutput

__all__ = ["AdherenceCalculator", "DispenseRecord", "PatientAdherenceOutput"]
