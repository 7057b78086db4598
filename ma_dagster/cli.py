from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Optional

import typer

from ma_calculators.pdc_calculator.duckdb_to_csv import score_from_duckdb_to_csv
from ma_dagster.db.bootstrap import ensure_adherence_warehouse
from ma_dagster.resources.duckdb_resource import DEFAULT_WAREHOUSE_PATH, DuckDBResource

app = typer.Typer(
    no_args_is_help=True,
    help="Medication adherence CLI - Database and scoring utilities",
)

DEFAULT_DUCKDB_PATH = str(DEFAULT_WAREHOUSE_PATH)


@app.command(name="db-bootstrap")
def db_bootstrap(
    duckdb_path: str = typer.Option(DEFAULT_DUCKDB_PATH, "--duckdb-path"),
) -> None:
    """Create core schemas + tables in DuckDB.

    Creates: `main_intermediate`, `main_runs`.
    """

    res = DuckDBResource(path=duckdb_path)
    con = res.connect()
    try:
        ensure_adherence_warehouse(con)
    finally:
        con.close()

    typer.echo(f"Bootstrapped warehouse at {res.resolved_path}")


@app.command(name="export-csv")
def export_csv(
    output_csv: str = typer.Option(..., "--output-csv"),
    duckdb_path: str = typer.Option(DEFAULT_DUCKDB_PATH, "--duckdb-path"),
    measurement_year: int = typer.Option(date.today().year, "--measurement-year"),
    as_of_date: Optional[str] = typer.Option(None, "--as-of-date", help="YYYY-MM-DD"),
    limit: Optional[int] = typer.Option(
        None, "--limit", help="Score only the first N patients (full history each)"
    ),
    invalid_days_supply: str = typer.Option("default", "--invalid-days-supply"),
    medication_level: bool = typer.Option(True, "--medication-level/--no-medication-level"),
) -> None:
    """Score dispenses from DuckDB and write one CSV row per patient-measure."""

    count = score_from_duckdb_to_csv(
        duckdb_path=duckdb_path,
        output_csv_path=output_csv,
        measurement_year=measurement_year,
        as_of_date=as_of_date,
        limit=limit,
        invalid_days_supply=invalid_days_supply,
        include_medication_level=medication_level,
    )

    typer.echo(f"Wrote {count} rows to {Path(output_csv).expanduser().resolve()}")


if __name__ == "__main__":
    app()
