from datetime import date
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import duckdb
import polars as pl
from dagster import AssetExecutionContext, Config, asset

from ma_calculators.pdc_calculator import AdherenceCalculator
from ma_calculators.pdc_calculator.dispense_processing import (
    group_dispenses_by_patient,
    rows_to_dispenses,
)
from ma_calculators.pdc_calculator.orchestrator import build_observation_record
from ma_dagster.db.bootstrap import ensure_adherence_warehouse, now_utc
from ma_dagster.db.run_registry import register_scoring_run, update_run_status
from ma_dagster.resources.duckdb_resource import DuckDBResource
from ma_dagster.utils.run_ids import (
    generate_run_timestamp,
    get_git_provenance,
    json_dumps,
)

CALCULATOR_NAME = "pdc_calculator"
MODEL_VERSION = "hedis_pdc_fragility_v1"
BATCH_SIZE = 10000
MAX_LOGGED_PATIENT_ERRORS = 20

# Columns must match main_runs.pdc_scores definition order
PDC_SCORE_SCHEMA: dict[str, Any] = {
    "run_id": pl.Utf8,
    "patient_id": pl.Utf8,
    "measure": pl.Utf8,
    "measurement_year": pl.Int32,
    "as_of_date": pl.Date,
    "pdc": pl.Float64,
    "pdc_status_quo": pl.Float64,
    "pdc_perfect": pl.Float64,
    "covered_days": pl.Int32,
    "treatment_days": pl.Int32,
    "gap_days_remaining": pl.Int32,
    "delay_budget": pl.Float64,
    "days_until_runout": pl.Int64,
    "refills_needed": pl.Int32,
    "fragility_tier": pl.Utf8,
    "priority_score": pl.Int32,
    "urgency_level": pl.Utf8,
    "q4_adjusted": pl.Boolean,
    "is_new_patient": pl.Boolean,
    "treatment_period_start": pl.Date,
    "treatment_period_end": pl.Date,
    "calculator": pl.Utf8,
    "model_version": pl.Utf8,
    "run_timestamp": pl.Utf8,
    "created_at": pl.Datetime,
    "medications": pl.Utf8,
    "details": pl.Utf8,
}


class InvalidDaysSupplyOption(str, Enum):
    default = "default"
    skip = "skip"


class PDCScoringConfig(Config):
    measurement_year: Optional[int] = None
    as_of_date: Optional[str] = None
    include_medication_level: bool = True
    invalid_days_supply: InvalidDaysSupplyOption = InvalidDaysSupplyOption.default
    group_id: Optional[int] = None
    group_description: Optional[str] = None
    run_description: str = "PDC scoring run"
    trigger_source: str = "dagster"


def _read_dispense_rows(con: duckdb.DuckDBPyConnection) -> list[tuple[Any, ...]]:
    return con.execute(
        """
        SELECT
            patient_id,
            dispense_id,
            fill_date,
            days_supply,
            rxnorm_code,
            medication_display,
            status
        FROM main_intermediate.int_medication_dispenses
        ORDER BY patient_id, fill_date
        """
    ).fetchall()


@asset
def score_patients_pdc(
    context: AssetExecutionContext, config: PDCScoringConfig, duckdb: DuckDBResource
) -> None:
    """Score patients' PDC and fragility tiers and write to main_runs.pdc_scores."""

    context.log.info(f"Connecting to DuckDB at: {duckdb.resolved_path}")
    con = duckdb.connect()

    ensure_adherence_warehouse(con)

    as_of_date = (
        date.fromisoformat(config.as_of_date) if config.as_of_date else date.today()
    )
    measurement_year = config.measurement_year or as_of_date.year

    run_id = context.run_id
    run_ts = generate_run_timestamp()
    git = get_git_provenance(cwd=str(Path(__file__).resolve().parents[2]))

    record = register_scoring_run(
        con,
        run_id=run_id,
        run_timestamp=run_ts,
        calculator=CALCULATOR_NAME,
        model_version=MODEL_VERSION,
        measurement_year=measurement_year,
        as_of_date=as_of_date,
        config_yml={
            "measurement_year": measurement_year,
            "resolved_as_of_date": as_of_date.isoformat(),
            **config.model_dump(),
        },
        git=git,
        group_id=config.group_id,
        group_description=config.group_description,
        run_description=config.run_description,
        trigger_source=config.trigger_source,
    )
    context.log.info(f"Registered run {run_id} in group {record.group_id}")

    try:
        rows = _read_dispense_rows(con)
        dispenses, stats = rows_to_dispenses(
            rows,
            measurement_year=measurement_year,
            invalid_days_supply=config.invalid_days_supply.value,
        )

        if stats["skipped"] > 0:
            context.log.warning(
                f"Skipped {stats['skipped']} dispense rows: {stats['skipped_by_reason']}"
            )

        patients = group_dispenses_by_patient(dispenses)
        calculator = AdherenceCalculator(
            measurement_year=measurement_year,
            include_medication_level=config.include_medication_level,
        )

        context.log.info(
            f"Starting PDC scoring for {len(patients)} patients "
            f"(measurement_year={measurement_year}, as_of_date={as_of_date.isoformat()})..."
        )

        out_rows: list[dict[str, Any]] = []
        created_at = now_utc()
        total_written = 0
        patients_succeeded = 0
        patients_with_errors = 0

        def flush_batch(rows: list[dict[str, Any]]) -> None:
            if not rows:
                return
            df = pl.DataFrame(rows, schema=PDC_SCORE_SCHEMA).select(list(PDC_SCORE_SCHEMA))
            con.execute("INSERT OR REPLACE INTO main_runs.pdc_scores SELECT * FROM df")

        for patient_id, patient_dispenses in patients.items():
            result = calculator.score_isolated(patient_id, patient_dispenses, as_of_date)

            if result.succeeded:
                patients_succeeded += 1
            if result.errors:
                patients_with_errors += 1
                if patients_with_errors <= MAX_LOGGED_PATIENT_ERRORS:
                    context.log.warning(f"Patient {patient_id}: {'; '.join(result.errors)}")

            for measure_score in result.measures:
                observation = build_observation_record(
                    patient_id, measurement_year, measure_score
                )
                medications = [
                    {
                        "rxnorm_code": med.rxnorm_code,
                        "display_name": med.display_name,
                        "pdc": round(med.pdc_result.pdc, 2),
                        "fragility_tier": med.fragility.tier.value,
                        "priority_score": med.fragility.priority_score,
                        "supply_on_hand": med.supply_on_hand,
                        "coverage_shortfall": med.coverage_shortfall,
                        "remaining_refills": med.refill_estimate.remaining_refills,
                    }
                    for med in measure_score.medications
                ]

                out_rows.append(
                    {
                        **observation,
                        "run_id": run_id,
                        "as_of_date": as_of_date,
                        "refills_needed": measure_score.pdc_result.refills_needed,
                        "is_new_patient": result.is_new_patient,
                        "treatment_period_start": measure_score.pdc_result.measurement_period.start,
                        "treatment_period_end": measure_score.pdc_result.measurement_period.end,
                        "calculator": CALCULATOR_NAME,
                        "model_version": MODEL_VERSION,
                        "run_timestamp": run_ts,
                        "created_at": created_at,
                        "medications": json_dumps(medications),
                        "details": json_dumps(
                            {
                                "measure_types": [m.value for m in result.measure_types],
                                "bonuses": measure_score.fragility.bonuses.model_dump(),
                                "flags": measure_score.fragility.flags.model_dump(),
                                "contact_window": measure_score.fragility.contact_window,
                                "action": measure_score.fragility.action,
                                "errors": result.errors,
                                "patient_summary": result.summary.model_dump(mode="json"),
                            }
                        ),
                    }
                )

            if len(out_rows) >= BATCH_SIZE:
                flush_batch(out_rows)
                total_written += len(out_rows)
                out_rows = []
                context.log.info(f"Scored and wrote {total_written} patient-measure rows")

        flush_batch(out_rows)
        total_written += len(out_rows)

        if patients_with_errors:
            context.log.warning(
                f"{patients_with_errors}/{len(patients)} patients reported scoring errors"
            )

        update_run_status(con, run_id=run_id, status="success")
        context.log.info(
            f"Scored {len(patients)} patients: {patients_succeeded} succeeded, "
            f"{len(patients) - patients_succeeded} with errors or no MA measures"
        )
        context.log.info(
            f"Wrote {total_written} rows to main_runs.pdc_scores for run_timestamp={run_ts}"
        )

    except Exception:
        update_run_status(con, run_id=run_id, status="failed")
        raise

    finally:
        con.close()
