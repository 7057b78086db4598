from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

import duckdb

from ma_dagster.db.bootstrap import now_utc
from ma_dagster.utils.run_ids import GitProvenance, json_dumps

RUN_STATUSES = ("started", "success", "failed")


@dataclass(frozen=True)
class RunRecord:
    """One row of main_runs.run_registry: a PDC scoring run and its inputs."""

    run_id: str
    run_timestamp: str
    group_id: int
    calculator: str
    model_version: str
    measurement_year: int
    as_of_date: date
    config_yml: dict[str, Any]
    git: GitProvenance
    group_description: str | None = None
    run_description: str | None = None
    trigger_source: str | None = None
    status: str = "started"
    created_at: datetime | None = None


def allocate_group_id(con: duckdb.DuckDBPyConnection) -> int:
    row = con.execute(
        "SELECT COALESCE(MAX(group_id), 0) + 1 AS next_id FROM main_runs.run_registry"
    ).fetchone()
    return int(row[0])


def register_scoring_run(
    con: duckdb.DuckDBPyConnection,
    *,
    run_id: str,
    run_timestamp: str,
    calculator: str,
    model_version: str,
    measurement_year: int,
    as_of_date: date,
    config_yml: dict[str, Any],
    git: GitProvenance,
    group_id: int | None = None,
    group_description: str | None = None,
    run_description: str | None = None,
    trigger_source: str | None = None,
) -> RunRecord:
    """Insert a ``started`` registry row; a new group is allocated when none is given."""
    record = RunRecord(
        run_id=run_id,
        run_timestamp=run_timestamp,
        group_id=allocate_group_id(con) if group_id is None else int(group_id),
        calculator=calculator,
        model_version=model_version,
        measurement_year=measurement_year,
        as_of_date=as_of_date,
        config_yml=config_yml,
        git=git,
        group_description=group_description,
        run_description=run_description,
        trigger_source=trigger_source,
        created_at=now_utc(),
    )

    con.execute(
        """
        INSERT INTO main_runs.run_registry (
            run_id,
            run_timestamp,
            status,
            run_description,
            group_id,
            group_description,
            calculator,
            model_version,
            measurement_year,
            as_of_date,
            created_at,
            updated_at,
            trigger_source,
            git_commit,
            git_commit_clean,
            config_yml
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            record.run_id,
            record.run_timestamp,
            record.status,
            record.run_description,
            record.group_id,
            record.group_description,
            record.calculator,
            record.model_version,
            record.measurement_year,
            record.as_of_date,
            record.created_at,
            record.created_at,
            record.trigger_source,
            record.git.commit,
            record.git.clean,
            json_dumps(record.config_yml),
        ],
    )
    return record


def update_run_status(
    con: duckdb.DuckDBPyConnection,
    *,
    run_id: str,
    status: str,
) -> None:
    if status not in RUN_STATUSES:
        raise ValueError(f"Unknown run status {status!r}; expected one of {RUN_STATUSES}")
    con.execute(
        """
        UPDATE main_runs.run_registry
        SET status = ?, updated_at = ?
        WHERE run_id = ?
        """,
        [status, now_utc(), run_id],
    )
