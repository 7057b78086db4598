from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from ma_calculators.pdc_calculator.constants import DEFAULT_DAYS_SUPPLY
from ma_calculators.pdc_calculator.dates import parse_fill_date
from ma_calculators.pdc_calculator.measures import RXNORM_SYSTEM
from ma_calculators.pdc_calculator.models import DispenseRecord

REVERSED_STATUSES = frozenset({"cancelled", "entered-in-error"})


def coerce_days_supply(value: Any) -> int | None:
    """Coerce a days-supply value (int, float, Decimal or numeric string) into an int."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError, OverflowError):
        return None


def normalize_status(value: Any) -> str:
    if value is None:
        return "completed"
    text = str(value).strip().lower()
    return text or "completed"


def _patient_id_from_reference(reference: Any) -> str | None:
    if not reference:
        return None
    # "Patient/123" -> "123"
    return str(reference).rsplit("/", 1)[-1] or None


def dispense_from_fhir(resource: Mapping[str, Any]) -> DispenseRecord:
    """Read a FHIR MedicationDispense-shaped mapping into a DispenseRecord.

    Only the fields PDC needs are read: ``whenHandedOver``,
    ``daysSupply.value``, the RxNorm coding and ``status``. An unparseable
    hand-over date becomes None rather than an error.
    """
    medication = resource.get("medicationCodeableConcept") or {}
    codings = medication.get("coding") or []
    rxnorm = next((c for c in codings if c.get("system") == RXNORM_SYSTEM), None)

    days_supply = resource.get("daysSupply")
    if isinstance(days_supply, Mapping):
        days_supply = days_supply.get("value")

    subject = resource.get("subject") or {}

    return DispenseRecord(
        patient_id=_patient_id_from_reference(subject.get("reference")),
        dispense_id=resource.get("id"),
        fill_date=parse_fill_date(resource.get("whenHandedOver")),
        days_supply=coerce_days_supply(days_supply),
        rxnorm_code=rxnorm.get("code") if rxnorm else None,
        medication_display=(rxnorm or {}).get("display") or medication.get("text"),
        status=normalize_status(resource.get("status")),
    )


def extract_fill_date(dispense: DispenseRecord) -> date | None:
    """Fill date of a dispense, or None when it has no usable date."""
    return parse_fill_date(dispense.fill_date)


def extract_days_supply(dispense: DispenseRecord) -> int:
    """Days supply of a dispense; missing, zero or negative values become 30."""
    value = dispense.days_supply
    if value is None or value <= 0:
        return DEFAULT_DAYS_SUPPLY
    return value


def is_reversed_dispense(dispense: DispenseRecord) -> bool:
    return normalize_status(dispense.status) in REVERSED_STATUSES


def filter_reversed_dispenses(dispenses: Iterable[DispenseRecord]) -> list[DispenseRecord]:
    return [d for d in dispenses if not is_reversed_dispense(d)]


def rows_to_dispenses(
    rows: Iterable[tuple[Any, ...]],
    *,
    measurement_year: int | None = None,
    invalid_days_supply: str = "default",
) -> tuple[list[DispenseRecord], dict[str, Any]]:
    """
    Convert raw database rows into DispenseRecord objects with validation.

    Expected row format:
    (patient_id, dispense_id, fill_date, days_supply, rxnorm_code, medication_display, status)

    Rows are dropped when they have no usable fill date, are reversed, or
    (if ``measurement_year`` is given) fall outside that year. A missing or
    non-positive days supply is defaulted to 30, or the row is skipped when
    ``invalid_days_supply="skip"``.
    """
    if invalid_days_supply not in {"default", "skip"}:
        raise ValueError("invalid_days_supply must be one of: default, skip")

    records: list[DispenseRecord] = []
    skipped = {
        "missing_fill_date": 0,
        "reversed": 0,
        "out_of_year": 0,
        "invalid_days_supply": 0,
    }

    for (
        patient_id,
        dispense_id,
        fill_date,
        days_supply,
        rxnorm_code,
        medication_display,
        status,
    ) in rows:
        parsed_date = parse_fill_date(fill_date)
        if parsed_date is None:
            skipped["missing_fill_date"] += 1
            continue

        status_text = normalize_status(status)
        if status_text in REVERSED_STATUSES:
            skipped["reversed"] += 1
            continue

        if measurement_year is not None and parsed_date.year != measurement_year:
            skipped["out_of_year"] += 1
            continue

        supply = coerce_days_supply(days_supply)
        if supply is None or supply <= 0:
            if invalid_days_supply == "skip":
                skipped["invalid_days_supply"] += 1
                continue
            supply = DEFAULT_DAYS_SUPPLY

        records.append(
            DispenseRecord(
                patient_id=str(patient_id),
                dispense_id=str(dispense_id) if dispense_id is not None else None,
                fill_date=parsed_date,
                days_supply=supply,
                rxnorm_code=str(rxnorm_code).strip() if rxnorm_code is not None else None,
                medication_display=str(medication_display) if medication_display else None,
                status=status_text,
            )
        )

    return records, {"skipped": sum(skipped.values()), "skipped_by_reason": skipped}


def group_dispenses_by_patient(
    dispenses: Iterable[DispenseRecord],
) -> dict[str, list[DispenseRecord]]:
    grouped: dict[str, list[DispenseRecord]] = {}
    for dispense in dispenses:
        if dispense.patient_id is None:
            continue
        grouped.setdefault(dispense.patient_id, []).append(dispense)
    return grouped
