from __future__ import annotations

import argparse
import csv
import os
import yaml
from datetime import date, datetime
from pathlib import Path

import duckdb

from ma_calculators.pdc_calculator import AdherenceCalculator
from ma_calculators.pdc_calculator.dispense_processing import (
    group_dispenses_by_patient,
    rows_to_dispenses,
)
from ma_calculators.pdc_calculator.orchestrator import (
    build_observation_record,
    count_batch_outcomes,
)


def _get_repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _default_duckdb_path() -> str:
    env_path = os.environ.get("DUCKDB_PATH")
    if env_path:
        return env_path
    return str((_get_repo_root() / "medication_adherence.duckdb").resolve())


def _coerce_as_of_date(value: date | str | None) -> date:
    if value is None:
        return date.today()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def score_from_duckdb_to_csv(
    *,
    duckdb_path: str,
    output_csv_path: str,
    measurement_year: int,
    as_of_date: date | str | None = None,
    schema: str = "main_intermediate",
    table: str = "int_medication_dispenses",
    limit: int | None = None,
    invalid_days_supply: str = "default",
    include_medication_level: bool = True,
) -> int:
    """Read medication dispenses from DuckDB and write PDC / fragility scores to CSV.

    Returns number of rows written (one per patient-measure).

    Expected input relation: `{schema}.{table}` with columns:
    - patient_id, dispense_id, fill_date, days_supply, rxnorm_code, medication_display, status

    `limit` keeps the first N patients (by patient_id) with their full
    dispense history, so every scored patient has a complete PDC.
    """
    current_date = _coerce_as_of_date(as_of_date)

    con = duckdb.connect(str(Path(duckdb_path).expanduser().resolve()))
    try:
        sql = f"""
        SELECT
            patient_id,
            dispense_id,
            fill_date,
            days_supply,
            rxnorm_code,
            medication_display,
            status
        FROM {schema}.{table}
        """.strip()
        if limit is not None:
            sql += f"""
        WHERE patient_id IN (
            SELECT DISTINCT patient_id
            FROM {schema}.{table}
            ORDER BY patient_id
            LIMIT {int(limit)}
        )"""
        sql += "\nORDER BY patient_id, fill_date"

        rows = con.execute(sql).fetchall()
    finally:
        con.close()

    dispenses, stats = rows_to_dispenses(
        rows,
        measurement_year=measurement_year,
        invalid_days_supply=invalid_days_supply,
    )
    patients = group_dispenses_by_patient(dispenses)

    calculator = AdherenceCalculator(
        measurement_year=measurement_year,
        include_medication_level=include_medication_level,
    )
    results = calculator.score_batch(patients, current_date)

    output_path = Path(output_csv_path).expanduser().resolve()
    output_path.parent.mkdir(parents=True, exist_ok=True)

    fieldnames = [
        "patient_id",
        "measurement_year",
        "as_of_date",
        "measure",
        "pdc",
        "pdc_status_quo",
        "pdc_perfect",
        "covered_days",
        "treatment_days",
        "gap_days_remaining",
        "delay_budget",
        "days_until_runout",
        "refills_needed",
        "fragility_tier",
        "priority_score",
        "urgency_level",
        "q4_adjusted",
        "treatment_period_start",
        "treatment_period_end",
    ]

    yaml_dir = output_path.parent / "yaml_details"
    yaml_dir.mkdir(parents=True, exist_ok=True)

    written = 0
    patients_with_errors = 0
    with output_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()

        for result in results:
            if result.errors:
                patients_with_errors += 1

            for measure_score in result.measures:
                record = build_observation_record(
                    result.patient_id, measurement_year, measure_score
                )

                if written < 20:
                    yaml_data = {
                        **record,
                        "as_of_date": current_date.isoformat(),
                        "is_new_patient": result.is_new_patient,
                        "measure_types": [m.value for m in result.measure_types],
                        "bonuses": measure_score.fragility.bonuses.model_dump(),
                        "flags": measure_score.fragility.flags.model_dump(),
                        "medications": [
                            {
                                "rxnorm_code": med.rxnorm_code,
                                "display_name": med.display_name,
                                "pdc": round(med.pdc_result.pdc, 2),
                                "fragility_tier": med.fragility.tier.value,
                                "supply_on_hand": med.supply_on_hand,
                                "coverage_shortfall": med.coverage_shortfall,
                                "refill_estimate": med.refill_estimate.model_dump(),
                            }
                            for med in measure_score.medications
                        ],
                        "errors": result.errors,
                        "patient_summary": result.summary.model_dump(mode="json"),
                    }
                    detail_name = f"{result.patient_id}_{measure_score.measure.value}.yml"
                    with (yaml_dir / detail_name).open("w", encoding="utf-8") as yf:
                        yaml.dump(yaml_data, yf, sort_keys=False)

                writer.writerow(
                    {
                        **record,
                        "as_of_date": current_date.isoformat(),
                        "refills_needed": measure_score.pdc_result.refills_needed,
                    }
                )
                written += 1

    skipped = int(stats.get("skipped", 0))
    if skipped:
        total_rows = len(rows)
        pct = (skipped / total_rows) * 100 if total_rows > 0 else 0
        reasons = stats.get("skipped_by_reason", {})
        reasons_str = ", ".join(f"{k}={v}" for k, v in sorted(reasons.items()) if v)
        print(f"Skipped {skipped}/{total_rows} ({pct:.2f}%) dispense rows: {reasons_str}")

    if patients_with_errors:
        print(f"{patients_with_errors}/{len(results)} patients reported scoring errors")

    succeeded, failed = count_batch_outcomes(results)
    print(f"Scored {len(results)} patients: {succeeded} succeeded, {failed} failed")

    return written


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="ma_calculators.pdc_calculator.duckdb_to_csv",
        description=(
            "Read main_intermediate.int_medication_dispenses from DuckDB and write "
            "PDC and fragility tier scores to CSV."
        ),
    )
    p.add_argument(
        "--duckdb-path",
        default=_default_duckdb_path(),
        help="Path to DuckDB file (default: DUCKDB_PATH env var or repo medication_adherence.duckdb)",
    )
    p.add_argument(
        "--output-csv",
        required=False,
        help="Output CSV path. Defaults to tmp_exports/YYYYMMDD_HHMMSSffffff_pdc_scores_out.csv",
    )
    p.add_argument(
        "--measurement-year",
        type=int,
        default=date.today().year,
        help="Calendar year being measured (default: current year)",
    )
    p.add_argument(
        "--as-of-date",
        default=None,
        help="As-of date for projections, YYYY-MM-DD (default: today)",
    )
    p.add_argument(
        "--schema",
        default="main_intermediate",
        help="DuckDB schema containing the input relation",
    )
    p.add_argument(
        "--table",
        default="int_medication_dispenses",
        help="DuckDB table/view name containing the input relation",
    )
    p.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Optional patient limit for quick smoke tests (first N patients, full history)",
    )
    p.add_argument(
        "--invalid-days-supply",
        choices=["default", "skip"],
        default="default",
        help="What to do if days_supply is missing or not positive: default to 30 or skip row",
    )
    p.add_argument(
        "--no-medication-level",
        action="store_true",
        help="Only score at the measure level",
    )
    return p


def main(argv: list[str] | None = None) -> int:
    args = _build_arg_parser().parse_args(argv)

    output_csv = args.output_csv
    if not output_csv:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S%f")
        output_csv = str(Path(__file__).parent / "tmp_exports" / f"{timestamp}_pdc_scores_out.csv")

    count = score_from_duckdb_to_csv(
        duckdb_path=args.duckdb_path,
        output_csv_path=output_csv,
        measurement_year=int(args.measurement_year),
        as_of_date=args.as_of_date,
        schema=str(args.schema),
        table=str(args.table),
        limit=args.limit,
        invalid_days_supply=str(args.invalid_days_supply),
        include_medication_level=not args.no_medication_level,
    )

    print(f"Wrote {count} rows to {Path(output_csv).expanduser().resolve()}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
