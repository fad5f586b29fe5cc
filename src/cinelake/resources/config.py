"""⚙️ Resource Configuration - Pydantic models for engine limits and environment."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DuckDBConfig(BaseModel):
    """DuckDB-specific configuration."""

    threads: int = Field(default=2, ge=1, le=64)
    memory_limit: str = Field(default="4GB")
    preserve_insertion_order: bool = Field(default=True)


class ResourceConfig(BaseModel):
    """Resource configuration for a cinelake run.

    Controls DuckDB memory usage and parallelism.
    Can be loaded from a named profile or set programmatically.
    """

    max_parallel_pipelines: int = Field(
        default=2,
        ge=1,
        le=32,
        description="Maximum concurrent pipeline executions (orchestrator hint)",
    )

    duckdb: DuckDBConfig = Field(default_factory=DuckDBConfig)

    @classmethod
    def from_profile(cls, profile: str) -> "ResourceConfig":
        """Load a named profile (tiny, small, medium, large)."""
        from .profiles import load_profile

        return cls(**load_profile(profile))

    def to_duckdb_settings(self) -> dict[str, str]:
        """Generate DuckDB SET statements."""
        return {
            "memory_limit": f"'{self.duckdb.memory_limit}'",
            "threads": str(self.duckdb.threads),
            "preserve_insertion_order": str(self.duckdb.preserve_insertion_order).lower(),
        }


class Settings(BaseSettings):
    """Environment-based settings (CINELAKE_* variables)."""

    model_config = SettingsConfigDict(env_prefix="CINELAKE_", case_sensitive=False)

    # Default workspace path when --workspace is not given
    workspace: str | None = Field(default=None)

    # Overrides the database declared in workspace.yaml
    database: str | None = Field(default=None)

    # Resource profile
    profile: Literal["tiny", "small", "medium", "large"] | None = Field(default=None)

    # Artifact directory, relative to the workspace
    target_dir: str = Field(default="target")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings from environment."""
    return Settings()


def get_resource_config(profile: str | None = None) -> ResourceConfig:
    """Get resource configuration for a profile (or CINELAKE_PROFILE, or small)."""
    settings = get_settings()
    return ResourceConfig.from_profile(profile or settings.profile or "small")
