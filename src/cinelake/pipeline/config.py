"""📋 Pipeline Configuration - Pydantic models for pipeline YAML files.

Pipeline configs define:
- Documentation (description, column descriptions)
- Tests (not_null, unique, accepted_values, relationships, ...)
- Materialization overrides
- Ownership and tags
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field


class TestConfig(BaseModel):
    """Custom table-level test configuration."""

    name: str = Field(description="Test name")
    sql: str = Field(description="SQL that returns count of failures")
    expect: int = Field(default=0, description="Expected result (0 = no failures)")
    severity: Literal["warn", "error"] = Field(default="error")


class ColumnConfig(BaseModel):
    """Column documentation and tests."""

    name: str = Field(description="Column name")
    type: str = Field(default="", description="Documented column type")
    description: str = Field(default="", description="Column description")
    tests: list[str | dict] = Field(
        default_factory=list,
        description=(
            "Column tests: ['not_null', 'unique', "
            "{'accepted_values': {'values': [...]}}, "
            "{'relationships': {'to': \"ref('dim_movies')\", 'field': 'movie_id'}}]"
        ),
    )


class FreshnessConfig(BaseModel):
    """Data freshness SLA configuration."""

    warn_after: dict = Field(
        default_factory=lambda: {"hours": 24},
        description="Warn if data is older than this",
    )
    error_after: dict = Field(
        default_factory=lambda: {"hours": 48},
        description="Error if data is older than this",
    )

    def get_warn_timedelta(self) -> timedelta:
        """Get warn threshold as timedelta."""
        return timedelta(**self.warn_after)

    def get_error_timedelta(self) -> timedelta:
        """Get error threshold as timedelta."""
        return timedelta(**self.error_after)


class PipelineConfig(BaseModel):
    """Complete pipeline configuration from YAML.

    Example YAML:
        description: "One row per rating event"
        owner: analytics@cinelake.dev

        columns:
          - name: user_id
            tests:
              - not_null
              - relationships:
                  to: ref('dim_users')
                  field: user_id
          - name: rating
            tests:
              - accepted_values:
                  values: [0.5, 1.0, 1.5, 2.0, 2.5, 3.0, 3.5, 4.0, 4.5, 5.0]
                  quote: false

        tests:
          - name: no_future_ratings
            sql: |
              SELECT COUNT(*) FROM {{ this }}
              WHERE rating_timestamp > now()
            expect: 0
    """

    description: str = Field(default="", description="Pipeline description")
    owner: str | None = Field(default=None, description="Owner email or team")
    tags: list[str] = Field(default_factory=list, description="Selection tags")

    columns: list[ColumnConfig] = Field(
        default_factory=list, description="Column definitions and tests"
    )

    tests: list[TestConfig] = Field(
        default_factory=list, description="Custom data tests"
    )

    # Materialization settings (can override SQL header)
    materialized: str | None = Field(
        default=None,
        description="Materialization strategy: view, table, incremental, ephemeral",
    )
    unique_key: list[str] = Field(
        default_factory=list, description="Unique key columns for incremental"
    )
    on_schema_change: Literal["ignore", "fail", "append_new_columns"] | None = Field(
        default=None,
        description="What an incremental run does when the model's columns change",
    )

    @classmethod
    def from_yaml(cls, path: Path | str) -> "PipelineConfig":
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_dict(cls, data: dict) -> "PipelineConfig":
        """Create from a dictionary."""
        return cls(**data)

    def get_column(self, name: str) -> ColumnConfig | None:
        """Get a column config by name."""
        for col in self.columns:
            if col.name == name:
                return col
        return None


def load_pipeline_config(sql_path: Path | str) -> PipelineConfig:
    """Load pipeline config from YAML file matching SQL file.

    Args:
        sql_path: Path to the SQL file (e.g., "dim_movies.sql")

    Returns:
        PipelineConfig from matching YAML (e.g., "dim_movies.yaml")
        or empty config if no YAML exists
    """
    sql_path = Path(sql_path)
    yaml_path = sql_path.with_suffix(".yaml")

    if yaml_path.exists():
        return PipelineConfig.from_yaml(yaml_path)

    # Also check .yml extension
    yml_path = sql_path.with_suffix(".yml")
    if yml_path.exists():
        return PipelineConfig.from_yaml(yml_path)

    # Return empty config if no YAML found
    return PipelineConfig()
