"""🔄 Pipeline Framework - dbt-like SQL + YAML models on DuckDB.

Supports:
- SQL models with {{ ref() }}, {{ source() }} and {% if %} templating
- YAML configuration for documentation and tests
- view, table, incremental and ephemeral materializations
- SCD type 2 snapshots and CSV seeds
- Source freshness checks

Example SQL model:
    -- pipelines/silver/fct_ratings.sql
    -- @materialized: incremental
    -- @unique_key: user_id, movie_id

    SELECT user_id, movie_id, rating, rating_timestamp
    FROM {{ ref('src_ratings') }}
    {% if is_incremental() %}
    WHERE rating_timestamp > (SELECT MAX(rating_timestamp) FROM {{ this }})
    {% endif %}
"""

from .config import ColumnConfig, FreshnessConfig, PipelineConfig, load_pipeline_config
from .executor import PipelineExecutor, PipelineResult
from .freshness import FreshnessResult, check_freshness
from .incremental import check_schema_change, detect_watermark_column
from .loader import (
    LoadedPipeline,
    build_dag,
    discover_pipelines,
    load_pipeline,
    select_pipelines,
    topological_sort,
)
from .parser import ParsedPipeline, SQLParser, surrogate_key
from .snapshot import SnapshotConfig, run_snapshot

__all__ = [
    # Parser
    "SQLParser",
    "ParsedPipeline",
    "surrogate_key",
    # Config
    "PipelineConfig",
    "ColumnConfig",
    "FreshnessConfig",
    "load_pipeline_config",
    # Loader
    "LoadedPipeline",
    "load_pipeline",
    "discover_pipelines",
    "build_dag",
    "topological_sort",
    "select_pipelines",
    # Executor
    "PipelineExecutor",
    "PipelineResult",
    # Incremental
    "check_schema_change",
    "detect_watermark_column",
    # Snapshots
    "SnapshotConfig",
    "run_snapshot",
    # Freshness
    "FreshnessResult",
    "check_freshness",
]
