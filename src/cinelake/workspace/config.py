"""🏢 Workspace Configuration - Pydantic models for workspace.yaml."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

from cinelake.pipeline.config import FreshnessConfig

Materialization = Literal["view", "table", "incremental", "ephemeral"]


class LayerConfig(BaseModel):
    """Medallion layer configuration."""

    target_schema: str = Field(description="Schema the layer's models are built in")
    materialized: Materialization = Field(
        default="view",
        description="Default materialization for models in this layer",
    )


class LayersConfig(BaseModel):
    """All medallion layers configuration."""

    bronze: LayerConfig = Field(
        default_factory=lambda: LayerConfig(target_schema="bronze", materialized="view")
    )
    silver: LayerConfig = Field(
        default_factory=lambda: LayerConfig(target_schema="silver", materialized="table")
    )
    gold: LayerConfig = Field(
        default_factory=lambda: LayerConfig(target_schema="gold", materialized="table")
    )

    def get(self, layer: str) -> LayerConfig:
        """Get a layer's configuration by name."""
        if layer not in ("bronze", "silver", "gold"):
            raise ValueError(f"Unknown layer: {layer}")
        return getattr(self, layer)


class SourceTableConfig(BaseModel):
    """A raw table exposed to models through source()."""

    name: str = Field(description="Table name inside the source")
    description: str = Field(default="")
    path: str | None = Field(
        default=None,
        description="CSV/Parquet file backing the table (relative to the workspace)",
    )
    loaded_at_field: str | None = Field(
        default=None,
        description="Column or expression holding the load timestamp",
    )
    freshness: FreshnessConfig | None = Field(default=None)


class SourceConfig(BaseModel):
    """A group of raw tables; the source name is also its schema."""

    name: str = Field(description="Source name, used as the schema")
    description: str = Field(default="")
    loaded_at_field: str | None = Field(default=None)
    freshness: FreshnessConfig | None = Field(default=None)
    tables: list[SourceTableConfig] = Field(default_factory=list)

    def get_table(self, name: str) -> SourceTableConfig | None:
        """Get a source table by name."""
        for table in self.tables:
            if table.name == name:
                return table
        return None


class SeedsConfig(BaseModel):
    """Seed loading configuration."""

    target_schema: str = Field(default="seeds")
    column_types: dict[str, dict[str, str]] = Field(
        default_factory=dict,
        description="Per-seed column type overrides: {seed: {column: TYPE}}",
    )


class SnapshotsConfig(BaseModel):
    """Snapshot defaults."""

    target_schema: str = Field(default="snapshots")


class ResourceOverrides(BaseModel):
    """Workspace-specific resource overrides."""

    threads: int | None = None
    memory_limit: str | None = None


class ResourcesConfig(BaseModel):
    """Workspace resource configuration."""

    profile: Literal["tiny", "small", "medium", "large"] = Field(default="small")
    overrides: ResourceOverrides = Field(default_factory=ResourceOverrides)


class WorkspaceConfig(BaseModel):
    """Complete workspace configuration.

    Loaded from workspace.yaml in the workspace directory.

    Example:
        name: movielens
        version: "1.0"
        description: "MovieLens analytics warehouse"
        database: movielens.duckdb

        sources:
          - name: raw
            tables:
              - name: movies
                path: data/movies.csv
              - name: ratings
                path: data/ratings.csv

        seeds:
          column_types:
            seed_movie_release_dates:
              release_date: DATE

        vars:
          min_relevance: 0.0

        schedule: daily_6am
    """

    name: str = Field(description="Workspace identifier")
    version: str = Field(default="1.0", description="Workspace config version")
    description: str = Field(default="", description="Workspace description")
    database: str = Field(
        default="warehouse.duckdb",
        description="DuckDB database file (relative to the workspace) or :memory:",
    )

    resources: ResourcesConfig = Field(default_factory=ResourcesConfig)
    layers: LayersConfig = Field(default_factory=LayersConfig)
    sources: list[SourceConfig] = Field(default_factory=list)
    seeds: SeedsConfig = Field(default_factory=SeedsConfig)
    snapshots: SnapshotsConfig = Field(default_factory=SnapshotsConfig)
    vars: dict[str, Any] = Field(default_factory=dict)
    schedule: str | None = Field(
        default=None,
        description="Cron expression or preset for the orchestrator",
    )

    @classmethod
    def from_yaml(cls, path: Path | str) -> "WorkspaceConfig":
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_directory(cls, workspace_dir: Path | str) -> "WorkspaceConfig":
        """Load configuration from a workspace directory."""
        workspace_dir = Path(workspace_dir)
        config_path = workspace_dir / "workspace.yaml"

        if not config_path.exists():
            raise FileNotFoundError(
                f"No workspace.yaml found in {workspace_dir}. "
                f"Create one to configure this workspace."
            )

        return cls.from_yaml(config_path)

    def to_yaml(self, path: Path | str) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w") as f:
            yaml.dump(
                self.model_dump(exclude_none=True),
                f,
                default_flow_style=False,
                sort_keys=False,
            )

    def get_source(self, name: str) -> SourceConfig | None:
        """Get a source by name."""
        for source in self.sources:
            if source.name == name:
                return source
        return None
