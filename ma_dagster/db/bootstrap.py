from __future__ import annotations

from datetime import UTC, datetime

import duckdb


def ensure_core_schemas(con: duckdb.DuckDBPyConnection) -> None:
    con.execute("CREATE SCHEMA IF NOT EXISTS main_intermediate")
    con.execute("CREATE SCHEMA IF NOT EXISTS main_runs")


def ensure_dispense_input(con: duckdb.DuckDBPyConnection) -> None:
    # Normally materialized upstream; created empty so scoring can run on a fresh warehouse.
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS main_intermediate.int_medication_dispenses (
            patient_id VARCHAR,
            dispense_id VARCHAR,
            fill_date DATE,
            days_supply INTEGER,
            rxnorm_code VARCHAR,
            medication_display VARCHAR,
            status VARCHAR
        )
        """
    )


def ensure_run_registry(con: duckdb.DuckDBPyConnection) -> None:
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS main_runs.run_registry (
            run_id VARCHAR PRIMARY KEY,
            run_timestamp VARCHAR,
            group_id BIGINT,
            group_description VARCHAR,
            run_description VARCHAR,
            calculator VARCHAR,
            model_version VARCHAR,
            measurement_year INTEGER,
            as_of_date DATE,
            config_yml VARCHAR,
            git_commit VARCHAR,
            git_commit_clean BOOLEAN,
            status VARCHAR,
            trigger_source VARCHAR,
            created_at TIMESTAMP,
            updated_at TIMESTAMP
        )
        """
    )

    # Not unique so sub-second collisions still insert
    con.execute(
        "CREATE INDEX IF NOT EXISTS idx_run_registry_timestamp ON main_runs.run_registry (run_timestamp)"
    )


def ensure_marts_tables(con: duckdb.DuckDBPyConnection) -> None:
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS main_runs.pdc_scores (
            run_id VARCHAR,
            patient_id VARCHAR,
            measure VARCHAR,
            measurement_year INTEGER,
            as_of_date DATE,
            pdc DOUBLE,
            pdc_status_quo DOUBLE,
            pdc_perfect DOUBLE,
            covered_days INTEGER,
            treatment_days INTEGER,
            gap_days_remaining INTEGER,
            delay_budget DOUBLE,
            days_until_runout BIGINT,
            refills_needed INTEGER,
            fragility_tier VARCHAR,
            priority_score INTEGER,
            urgency_level VARCHAR,
            q4_adjusted BOOLEAN,
            is_new_patient BOOLEAN,
            treatment_period_start DATE,
            treatment_period_end DATE,
            calculator VARCHAR,
            model_version VARCHAR,
            run_timestamp VARCHAR,
            created_at TIMESTAMP,
            medications JSON,
            details JSON,
            PRIMARY KEY (run_id, patient_id, measure)
        )
        """
    )


def ensure_adherence_warehouse(con: duckdb.DuckDBPyConnection) -> None:
    ensure_core_schemas(con)
    ensure_dispense_input(con)
    ensure_run_registry(con)
    ensure_marts_tables(con)


def now_utc() -> datetime:
    # Naive UTC; DuckDB TIMESTAMP columns carry no zone
    return datetime.now(UTC).replace(tzinfo=None)
