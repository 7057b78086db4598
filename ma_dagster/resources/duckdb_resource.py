from __future__ import annotations

from pathlib import Path

import duckdb
from dagster import ConfigurableResource

DEFAULT_WAREHOUSE_PATH = Path(__file__).resolve().parents[2] / "medication_adherence.duckdb"


class DuckDBResource(ConfigurableResource):
    """The medication adherence warehouse (dispenses in, PDC scores out).

    ``connect`` opens a fresh connection; the caller closes it.
    """

    path: str = str(DEFAULT_WAREHOUSE_PATH)

    @property
    def resolved_path(self) -> Path:
        return Path(self.path).expanduser().resolve()

    def connect(self) -> duckdb.DuckDBPyConnection:
        self.resolved_path.parent.mkdir(parents=True, exist_ok=True)
        return duckdb.connect(str(self.resolved_path))
