"""Per-patient adherence scoring.

This module wires the pure pieces together for one patient:
1. Drops reversed dispenses and dispenses outside the measurement year
2. Classifies dispenses into MA measures by RxNorm code
3. Computes HEDIS-merged PDC and fragility per measure
4. Optionally computes PDC, fragility and a refill estimate per medication

Problems with a single measure, medication or patient are recorded on the
output instead of aborting the caller's batch.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from datetime import date
from typing import Any

from ma_calculators.pdc_calculator.calculator import calculate_pdc_from_dispenses
from ma_calculators.pdc_calculator.constants import NEW_PATIENT_WINDOW_DAYS, TIER_LEVELS
from ma_calculators.pdc_calculator.dates import days_between
from ma_calculators.pdc_calculator.dispense_processing import (
    extract_days_supply,
    extract_fill_date,
    filter_reversed_dispenses,
)
from ma_calculators.pdc_calculator.fragility import calculate_fragility
from ma_calculators.pdc_calculator.measures import classify_rxnorm_code
from ma_calculators.pdc_calculator.models import (
    DispenseRecord,
    FillRecord,
    FragilityInput,
    MAMeasure,
    MeasureScore,
    MedicationScore,
    PatientAdherenceOutput,
    PatientSummary,
)
from ma_calculators.pdc_calculator.refills import (
    calculate_coverage_shortfall,
    calculate_supply_on_hand,
    estimate_remaining_refills,
)

# Fills used to infer a patient's usual days supply
RECENT_FILL_COUNT = 3

# Bad input data surfaces as one of these; they are recorded, not raised
SCORING_ERRORS = (ValueError, ArithmeticError)


def group_dispenses_by_measure(
    dispenses: Iterable[DispenseRecord],
) -> dict[MAMeasure, list[DispenseRecord]]:
    """Group dispenses by MA measure; non-MA medications are dropped."""
    grouped: dict[MAMeasure, list[DispenseRecord]] = {}
    for dispense in dispenses:
        measure = classify_rxnorm_code(dispense.rxnorm_code)
        if measure is None:
            continue
        grouped.setdefault(measure, []).append(dispense)
    return grouped


def group_dispenses_by_medication(
    dispenses: Iterable[DispenseRecord],
) -> dict[str, list[DispenseRecord]]:
    grouped: dict[str, list[DispenseRecord]] = {}
    for dispense in dispenses:
        if not dispense.rxnorm_code:
            continue
        grouped.setdefault(dispense.rxnorm_code, []).append(dispense)
    return grouped


def is_new_patient(
    first_fill_date: date | None,
    current_date: date,
    window_days: int = NEW_PATIENT_WINDOW_DAYS,
) -> bool:
    """True when the first fill falls within the last ``window_days`` days."""
    if first_fill_date is None:
        return False
    return 0 <= days_between(first_fill_date, current_date) <= window_days


def summarize_patient(measures: Iterable[MeasureScore]) -> PatientSummary:
    """Roll measure scores up into the patient summary.

    The worst tier is the one with the lowest tier level (T5 before F1 before
    COMPLIANT). With no measures the tier and runout are None.
    """
    summary = PatientSummary()
    for measure_score in measures:
        tier = measure_score.fragility.tier
        if summary.worst_tier is None or TIER_LEVELS[tier] < TIER_LEVELS[summary.worst_tier]:
            summary.worst_tier = tier

        summary.highest_priority_score = max(
            summary.highest_priority_score, measure_score.fragility.priority_score
        )

        runout = measure_score.pdc_result.days_until_runout
        earliest = summary.days_until_earliest_runout
        if earliest is None or runout < earliest:
            summary.days_until_earliest_runout = runout

        summary.pdc_by_measure[measure_score.measure.value] = measure_score.pdc_result.pdc
    return summary


def count_batch_outcomes(results: Iterable[PatientAdherenceOutput]) -> tuple[int, int]:
    """(succeeded, failed) patient counts for a scored batch."""
    succeeded = failed = 0
    for result in results:
        if result.succeeded:
            succeeded += 1
        else:
            failed += 1
    return succeeded, failed


def _fills_from_dispenses(dispenses: Iterable[DispenseRecord]) -> list[FillRecord]:
    fills = []
    for dispense in dispenses:
        fill_date = extract_fill_date(dispense)
        if fill_date is None:
            continue
        fills.append(FillRecord(fill_date=fill_date, days_supply=extract_days_supply(dispense)))
    return sorted(fills, key=lambda f: f.fill_date)


class AdherenceCalculator:
    """Medication adherence (PDC) and fragility scorer for MA measures.

    Example:
        >>> from datetime import date
        >>> calculator = AdherenceCalculator(measurement_year=2025)
        >>> result = calculator.score(
        ...     "P001",
        ...     [
        ...         DispenseRecord(
        ...             fill_date=date(2025, 1, 15), days_supply=90, rxnorm_code="83367"
        ...         )
        ...     ],
        ...     current_date=date(2025, 3, 1),
        ... )
        >>> result.measures[0].measure
        <MAMeasure.MAC: 'MAC'>
    """

    def __init__(self, measurement_year: int, include_medication_level: bool = True):
        self.measurement_year = measurement_year
        self.include_medication_level = include_medication_level

    def _in_measurement_year(self, dispense: DispenseRecord) -> bool:
        fill_date = extract_fill_date(dispense)
        return fill_date is not None and fill_date.year == self.measurement_year

    def _score_medication(
        self,
        rxnorm_code: str,
        dispenses: list[DispenseRecord],
        *,
        measure_types: list[MAMeasure],
        new_patient: bool,
        current_date: date,
    ) -> MedicationScore:
        pdc_result = calculate_pdc_from_dispenses(dispenses, self.measurement_year, current_date)
        fills = _fills_from_dispenses(dispenses)

        supply_on_hand = calculate_supply_on_hand(fills[-1] if fills else None, current_date)
        shortfall = calculate_coverage_shortfall(pdc_result.days_to_year_end, supply_on_hand)
        estimate = estimate_remaining_refills(shortfall, fills[-RECENT_FILL_COUNT:])

        fragility = calculate_fragility(
            FragilityInput(
                pdc_result=pdc_result,
                refills_remaining=estimate.remaining_refills,
                measure_types=measure_types,
                is_new_patient=new_patient,
                current_date=current_date,
            )
        )

        display_name = next(
            (d.medication_display for d in dispenses if d.medication_display),
            rxnorm_code,
        )

        return MedicationScore(
            rxnorm_code=rxnorm_code,
            display_name=display_name,
            pdc_result=pdc_result,
            fragility=fragility,
            refill_estimate=estimate,
            supply_on_hand=supply_on_hand,
            coverage_shortfall=shortfall,
        )

    def _score_measure(
        self,
        measure: MAMeasure,
        dispenses: list[DispenseRecord],
        *,
        measure_types: list[MAMeasure],
        new_patient: bool,
        current_date: date,
        errors: list[str],
    ) -> MeasureScore:
        # All medications in the measure are merged into one coverage timeline
        pdc_result = calculate_pdc_from_dispenses(dispenses, self.measurement_year, current_date)
        fragility = calculate_fragility(
            FragilityInput(
                pdc_result=pdc_result,
                refills_remaining=pdc_result.refills_needed,
                measure_types=measure_types,
                is_new_patient=new_patient,
                current_date=current_date,
            )
        )

        medications: list[MedicationScore] = []
        if self.include_medication_level:
            for rxnorm_code, med_dispenses in group_dispenses_by_medication(dispenses).items():
                try:
                    medications.append(
                        self._score_medication(
                            rxnorm_code,
                            med_dispenses,
                            measure_types=measure_types,
                            new_patient=new_patient,
                            current_date=current_date,
                        )
                    )
                except SCORING_ERRORS as e:
                    errors.append(f"{measure.value} medication {rxnorm_code}: {e}")

        return MeasureScore(
            measure=measure,
            pdc_result=pdc_result,
            fragility=fragility,
            medications=medications,
        )

    def score(
        self,
        patient_id: str,
        dispenses: Iterable[DispenseRecord],
        current_date: date,
    ) -> PatientAdherenceOutput:
        """Score every MA measure a patient has dispenses for.

        Args:
            patient_id: Patient identifier, copied to the output
            dispenses: All of the patient's dispenses, any order
            current_date: As-of date for projections

        Returns:
            PatientAdherenceOutput; problems are listed in ``errors``
        """
        active = [
            d for d in filter_reversed_dispenses(dispenses) if self._in_measurement_year(d)
        ]
        output = PatientAdherenceOutput(
            patient_id=patient_id,
            measurement_year=self.measurement_year,
            current_date=current_date,
        )

        if not active:
            output.errors.append(
                f"No dispenses found for patient {patient_id} in {self.measurement_year}"
            )
            return output

        by_measure = group_dispenses_by_measure(active)
        if not by_measure:
            output.errors.append(
                f"No MA-qualifying medications found for patient {patient_id}"
            )
            return output

        measure_types = sorted(by_measure, key=lambda m: m.value)
        first_fill = min(
            extract_fill_date(d) for group in by_measure.values() for d in group
        )
        output.measure_types = measure_types
        output.is_new_patient = is_new_patient(first_fill, current_date)

        for measure in measure_types:
            try:
                output.measures.append(
                    self._score_measure(
                        measure,
                        by_measure[measure],
                        measure_types=measure_types,
                        new_patient=output.is_new_patient,
                        current_date=current_date,
                        errors=output.errors,
                    )
                )
            except SCORING_ERRORS as e:
                output.errors.append(f"{measure.value}: {e}")

        output.summary = summarize_patient(output.measures)
        return output

    def score_isolated(
        self,
        patient_id: str,
        dispenses: Iterable[DispenseRecord],
        current_date: date,
    ) -> PatientAdherenceOutput:
        """Like ``score``, but a failure is returned as an output with one error."""
        try:
            return self.score(patient_id, dispenses, current_date)
        except SCORING_ERRORS as e:
            return PatientAdherenceOutput(
                patient_id=patient_id,
                measurement_year=self.measurement_year,
                current_date=current_date,
                errors=[f"{type(e).__name__}: {e}"],
            )

    def score_batch(
        self,
        patients: Mapping[str, Sequence[DispenseRecord]],
        current_date: date,
    ) -> list[PatientAdherenceOutput]:
        """Score many patients; one output per patient in mapping order."""
        return [
            self.score_isolated(patient_id, dispenses, current_date)
            for patient_id, dispenses in patients.items()
        ]


def _ratio(percentage: float) -> float:
    return round(percentage / 100, 4)


def build_observation_record(
    patient_id: str,
    measurement_year: int,
    measure_score: MeasureScore,
) -> dict[str, Any]:
    """Flatten a measure score into the downstream observation record.

    Ratios are on a 0-1 scale. An infinite delay budget (no refills
    remaining) is reported as None.
    """
    pdc_result = measure_score.pdc_result
    fragility = measure_score.fragility
    delay_budget = fragility.delay_budget_per_refill

    return {
        "patient_id": patient_id,
        "measurement_year": measurement_year,
        "measure": measure_score.measure.value,
        "pdc": _ratio(pdc_result.pdc),
        "pdc_status_quo": _ratio(pdc_result.pdc_status_quo),
        "pdc_perfect": _ratio(pdc_result.pdc_perfect),
        "covered_days": pdc_result.covered_days,
        "treatment_days": pdc_result.treatment_days,
        "gap_days_remaining": pdc_result.gap_days_remaining,
        "delay_budget": None if math.isinf(delay_budget) else round(delay_budget, 2),
        "days_until_runout": pdc_result.days_until_runout,
        "fragility_tier": fragility.tier.value,
        "priority_score": fragility.priority_score,
        "urgency_level": fragility.urgency_level.value,
        "q4_adjusted": fragility.flags.q4_tightened,
        "treatment_period_start": pdc_result.measurement_period.start.isoformat(),
        "treatment_period_end": pdc_result.measurement_period.end.isoformat(),
    }
