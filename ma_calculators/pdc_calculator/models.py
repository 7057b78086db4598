"""Data models for the PDC calculator and fragility tier classifier."""

from __future__ import annotations

from datetime import date
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class MAMeasure(str, Enum):
    """CMS Medicare adherence measure categories."""

    MAC = "MAC"  # cholesterol (statins)
    MAD = "MAD"  # diabetes
    MAH = "MAH"  # hypertension (RAS antagonists)


class FragilityTier(str, Enum):
    COMPLIANT = "COMPLIANT"
    F1_IMMINENT = "F1_IMMINENT"
    F2_FRAGILE = "F2_FRAGILE"
    F3_MODERATE = "F3_MODERATE"
    F4_COMFORTABLE = "F4_COMFORTABLE"
    F5_SAFE = "F5_SAFE"
    T5_UNSALVAGEABLE = "T5_UNSALVAGEABLE"


class UrgencyLevel(str, Enum):
    EXTREME = "EXTREME"
    HIGH = "HIGH"
    MODERATE = "MODERATE"
    LOW = "LOW"


class FillRecord(BaseModel):
    """One dispense event that contributes coverage.

    Attributes:
        fill_date: Date the medication was handed over
        days_supply: Days of medication dispensed (must be positive)
    """

    model_config = ConfigDict(frozen=True)

    fill_date: date
    days_supply: int = Field(gt=0)


class MeasurementPeriod(BaseModel):
    """Treatment window (first fill or Jan 1 through Dec 31), both ends inclusive."""

    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    @model_validator(mode="after")
    def _check_order(self) -> MeasurementPeriod:
        if self.start > self.end:
            raise ValueError(
                f"measurement period start {self.start} is after end {self.end}"
            )
        return self


class PDCInput(BaseModel):
    """Input for a single patient / measure / year PDC calculation.

    Attributes:
        fills: Fill records in any order (may be empty)
        measurement_period: Treatment window
        current_date: "Today" for projections; always passed explicitly
    """

    model_config = ConfigDict(frozen=True)

    fills: list[FillRecord] = Field(default_factory=list)
    measurement_period: MeasurementPeriod
    current_date: date


class GapDaysResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    gap_days_used: int = Field(ge=0)
    gap_days_allowed: int = Field(ge=0)
    gap_days_remaining: int


class PDCResult(BaseModel):
    """Output from PDC calculation.

    Percentages are on a 0-100 scale. ``gap_days_remaining`` goes negative
    once the 20% gap allowance is exhausted; ``days_until_runout`` goes
    negative once the patient is out of medication.
    """

    model_config = ConfigDict(frozen=True)

    pdc: float = Field(ge=0, le=100)
    covered_days: int = Field(ge=0)
    treatment_days: int = Field(gt=0)
    gap_days_used: int = Field(ge=0)
    gap_days_allowed: int = Field(ge=0)
    gap_days_remaining: int
    pdc_status_quo: float = Field(ge=0, le=100)
    pdc_perfect: float = Field(ge=0, le=100)
    measurement_period: MeasurementPeriod
    days_until_runout: int
    current_supply: int = Field(ge=0)
    refills_needed: int = Field(ge=0)
    last_fill_date: date | None = None
    fill_count: int = Field(ge=0)
    days_to_year_end: int = Field(ge=0)


class FragilityFlags(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_compliant: bool
    is_unsalvageable: bool
    is_out_of_meds: bool
    is_q4: bool
    is_multiple_ma: bool
    is_new_patient: bool
    q4_tightened: bool


class PriorityBonuses(BaseModel):
    """Breakdown of the priority score: tier base plus each additive bonus."""

    model_config = ConfigDict(frozen=True)

    base: int
    out_of_meds: int = 0
    q4: int = 0
    multiple_ma: int = 0
    new_patient: int = 0

    @property
    def total(self) -> int:
        return self.base + self.out_of_meds + self.q4 + self.multiple_ma + self.new_patient


class FragilityInput(BaseModel):
    """Input for fragility tier classification.

    Attributes:
        pdc_result: Output of ``calculate_pdc``
        refills_remaining: Refills still needed to reach year end
        measure_types: MA measures the patient is in (1-3 entries)
        is_new_patient: First fill within the new-patient window
        current_date: Date used for Q4 detection
        is_q4: Explicit Q4 override; None means detect from ``current_date``
    """

    model_config = ConfigDict(frozen=True)

    pdc_result: PDCResult
    refills_remaining: int = Field(ge=0)
    measure_types: list[MAMeasure] = Field(min_length=1, max_length=3)
    is_new_patient: bool = False
    current_date: date
    is_q4: bool | None = None


class FragilityResult(BaseModel):
    """Output from fragility tier classification.

    ``delay_budget_per_refill`` is ``inf`` when no refills remain.
    """

    model_config = ConfigDict(frozen=True)

    tier: FragilityTier
    tier_level: int = Field(ge=0, le=6)
    delay_budget_per_refill: float
    contact_window: str
    action: str
    priority_score: int = Field(ge=0, le=180)
    urgency_level: UrgencyLevel
    flags: FragilityFlags
    bonuses: PriorityBonuses


class RefillEstimate(BaseModel):
    model_config = ConfigDict(frozen=True)

    remaining_refills: int = Field(ge=0)
    estimated_days_per_refill: int = Field(gt=0)
    reasoning: str


class DispenseRecord(BaseModel):
    """A medication dispense as delivered by the clinical data store.

    Fields are optional because upstream data is messy; the adapter decides
    what to drop (no fill date) and what to default (no days supply).
    """

    patient_id: str | None = None
    dispense_id: str | None = None
    fill_date: date | None = None
    days_supply: int | None = None
    rxnorm_code: str | None = None
    medication_display: str | None = None
    status: str = "completed"


class MedicationScore(BaseModel):
    """PDC and tier for one medication (RxNorm code) within a measure."""

    rxnorm_code: str
    display_name: str
    pdc_result: PDCResult
    fragility: FragilityResult
    refill_estimate: RefillEstimate
    supply_on_hand: int
    coverage_shortfall: int


class MeasureScore(BaseModel):
    """HEDIS-merged PDC and tier for one MA measure."""

    measure: MAMeasure
    pdc_result: PDCResult
    fragility: FragilityResult
    medications: list[MedicationScore] = Field(default_factory=list)


class PatientSummary(BaseModel):
    """Roll-up of a patient's measure results for worklist display.

    Attributes:
        worst_tier: Most urgent tier across measures (lowest tier level);
            None when no measure scored
        highest_priority_score: Largest measure priority score, 0 when none
        days_until_earliest_runout: Soonest runout across measures; None
            when no measure scored
        pdc_by_measure: Measure PDC (0-100) keyed by measure code (MAC, MAD,
            MAH); None for measures the patient is not in
    """

    worst_tier: FragilityTier | None = None
    highest_priority_score: int = 0
    days_until_earliest_runout: int | None = None
    pdc_by_measure: dict[str, float | None] = Field(
        default_factory=lambda: {measure.value: None for measure in MAMeasure}
    )


class PatientAdherenceOutput(BaseModel):
    """All measure results for a single patient.

    Attributes:
        patient_id: Patient identifier (from input)
        measurement_year: Calendar year measured
        current_date: As-of date used for projections
        measure_types: Distinct MA measures found in the patient's dispenses
        is_new_patient: First fill within the new-patient window
        measures: One entry per measure that scored successfully
        errors: Human-readable problems; never raised to the caller
        summary: Patient-level roll-up of ``measures``
    """

    patient_id: str
    measurement_year: int
    current_date: date
    measure_types: list[MAMeasure] = Field(default_factory=list)
    is_new_patient: bool = False
    measures: list[MeasureScore] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    summary: PatientSummary = Field(default_factory=PatientSummary)

    @property
    def succeeded(self) -> bool:
        """At least one measure scored and nothing was recorded in ``errors``."""
        return bool(self.measures) and not self.errors
