from pathlib import Path

import yaml
from dagster import Definitions, define_asset_job

from ma_dagster.assets.scoring import score_patients_pdc
from ma_dagster.resources.duckdb_resource import DuckDBResource

CONFIG_DIR = Path(__file__).resolve().parent / "configs"

# Load default scoring config
with (CONFIG_DIR / "pdc_scoring_example.yaml").open() as f:
    default_scoring_config = yaml.safe_load(f)

scoring_job = define_asset_job(
    name="scoring_job",
    selection=["score_patients_pdc"],
    description="""
    # PDC Scoring Job

    Calculates PDC and fragility tiers for every patient in the intermediate table.

    **Steps:**
    1. Reads dispenses from `int_medication_dispenses`
    2. Merges coverage per MA measure (MAC, MAD, MAH) and classifies fragility
    3. Writes results to `main_runs.pdc_scores`
    """,
    tags={"team": "pharmacy", "priority": "high"},
    config=default_scoring_config,
)


definitions = Definitions(
    assets=[score_patients_pdc],
    resources={
        "duckdb": DuckDBResource(),
    },
    jobs=[scoring_job],
)
