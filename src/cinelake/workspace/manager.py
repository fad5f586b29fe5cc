"""🏢 Workspace Manager - Create, load, and manage workspaces."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cinelake.engine.duckdb import DuckDBEngine
    from cinelake.resources.config import ResourceConfig

from .config import WorkspaceConfig


class Workspace:
    """A workspace: SQL pipelines, snapshots, seeds and tests over one database.

    Each workspace has:
    - Its own DuckDB database file
    - Its own sources, seeds and variables
    - Its own resource limits
    - Its own pipeline definitions

    Example:
        workspace = Workspace.load("movielens")
        engine = workspace.get_engine()
        df = engine.query("SELECT * FROM silver.dim_movies")
    """

    def __init__(self, path: Path, config: WorkspaceConfig):
        self.path = Path(path)
        self.config = config
        self._engine: DuckDBEngine | None = None
        self._resources: ResourceConfig | None = None
        self._sources_registered = False

    @classmethod
    def load(cls, name_or_path: str | Path) -> Workspace:
        """Load a workspace by name or path.

        Args:
            name_or_path: Workspace name (looked up in workspaces/) or full path

        Example:
            ws = Workspace.load("movielens")
            ws = Workspace.load("/path/to/workspace")
        """
        path = Path(name_or_path)

        # If not a path, look up in standard locations
        if not path.exists():
            path = _find_workspace(str(name_or_path))

        config = WorkspaceConfig.from_directory(path)
        return cls(path=path, config=config)

    @classmethod
    def create(
        cls,
        name: str,
        base_dir: Path | str | None = None,
        description: str = "",
        database: str = "warehouse.duckdb",
    ) -> Workspace:
        """Create a new workspace with default structure.

        Args:
            name: Workspace name
            base_dir: Parent directory for workspaces (default: ./workspaces)
            description: Optional workspace description
            database: DuckDB database file or :memory:

        Returns:
            Created Workspace instance
        """
        if base_dir is None:
            base_dir = _get_workspaces_dir()
        else:
            base_dir = Path(base_dir)

        workspace_dir = base_dir / name

        # Create directory structure
        for subdir in ["bronze", "silver", "gold"]:
            (workspace_dir / "pipelines" / subdir).mkdir(parents=True, exist_ok=True)
        for subdir in ["snapshots", "seeds", "macros", "tests", "data"]:
            (workspace_dir / subdir).mkdir(parents=True, exist_ok=True)

        config = WorkspaceConfig(
            name=name,
            description=description,
            database=database,
        )
        config.to_yaml(workspace_dir / "workspace.yaml")

        print(f"✅ Created workspace: {name}")
        print(f"   Path: {workspace_dir}")
        print(f"   Database: {database}")

        return cls(path=workspace_dir, config=config)

    @property
    def name(self) -> str:
        """Workspace name."""
        return self.config.name

    @property
    def database_path(self) -> str:
        """Database location, honouring CINELAKE_DATABASE."""
        from cinelake.resources.config import get_settings

        database = get_settings().database or self.config.database
        if database == ":memory:":
            return database
        path = Path(database)
        if not path.is_absolute():
            path = self.path / path
        return str(path)

    @property
    def target_path(self) -> Path:
        """Directory for compiled SQL and run artifacts."""
        from cinelake.resources.config import get_settings

        return self.path / get_settings().target_dir

    @property
    def resources(self) -> ResourceConfig:
        """Get resource configuration for this workspace."""
        if self._resources is None:
            from cinelake.resources.config import get_resource_config, get_settings

            # Environment profile wins over the workspace profile
            profile = get_settings().profile or self.config.resources.profile
            self._resources = get_resource_config(profile)

            # Apply overrides
            overrides = self.config.resources.overrides
            if overrides.threads:
                self._resources.duckdb.threads = overrides.threads
            if overrides.memory_limit:
                self._resources.duckdb.memory_limit = overrides.memory_limit

        return self._resources

    def get_engine(self) -> DuckDBEngine:
        """Get a DuckDB engine for this workspace, with file sources registered."""
        if self._engine is None:
            from cinelake.engine.duckdb import DuckDBEngine

            self._engine = DuckDBEngine.for_workspace(self)

        if not self._sources_registered:
            self._register_sources(self._engine)
            self._sources_registered = True

        return self._engine

    def _register_sources(self, engine: DuckDBEngine) -> None:
        """Expose file-backed source tables as views in their source schema."""
        for source in self.config.sources:
            engine.ensure_schema(source.name)
            for table in source.tables:
                if not table.path:
                    continue
                path = Path(table.path)
                if not path.is_absolute():
                    path = self.path / path
                if not path.exists() and not any(c in str(path) for c in "*?["):
                    raise FileNotFoundError(
                        f"Source file for {source.name}.{table.name} not found: {path}"
                    )
                engine.register_file_view(source.name, table.name, path)

    def layer_schema(self, layer: str) -> str:
        """Schema name for a layer (bronze, silver, gold, snapshots, seeds)."""
        if layer == "snapshots":
            return self.config.snapshots.target_schema
        if layer == "seeds":
            return self.config.seeds.target_schema
        return self.config.layers.get(layer).target_schema

    def list_pipelines(self) -> dict[str, list[str]]:
        """List pipeline files in this workspace by layer.

        Returns:
            Dict mapping layer to list of file names
        """
        result: dict[str, list[str]] = {"bronze": [], "silver": [], "gold": []}

        for layer in result.keys():
            layer_dir = self.path / "pipelines" / layer
            if layer_dir.exists():
                result[layer] = sorted(f.name for f in layer_dir.glob("*.sql"))

        result["snapshots"] = sorted(
            f.name for f in (self.path / "snapshots").glob("*.sql")
        )
        result["seeds"] = sorted(f.name for f in (self.path / "seeds").glob("*.csv"))
        return result

    def close(self) -> None:
        """Close the workspace engine."""
        if self._engine is not None:
            self._engine.close()
            self._engine = None
            self._sources_registered = False

    def __repr__(self) -> str:
        return f"Workspace(name={self.name!r}, database={self.config.database!r})"


def _get_workspaces_dir() -> Path:
    """Get the default workspaces directory."""
    for path in [
        Path("workspaces"),
        Path.home() / "cinelake" / "workspaces",
    ]:
        if path.exists():
            return path

    # Default to current directory
    return Path("workspaces")


def _find_workspace(name: str) -> Path:
    """Find a workspace by name in standard locations."""
    base = _get_workspaces_dir()
    path = base / name

    if path.exists():
        return path

    raise FileNotFoundError(
        f"Workspace '{name}' not found in {base}. "
        f"Available workspaces: {list_workspaces()}"
    )


def list_workspaces() -> list[str]:
    """List all available workspaces."""
    base = _get_workspaces_dir()
    if not base.exists():
        return []

    workspaces = []
    for path in base.iterdir():
        if path.is_dir() and (path / "workspace.yaml").exists():
            workspaces.append(path.name)

    return sorted(workspaces)


def get_workspace(name: str | None = None) -> Workspace:
    """Get a workspace by name or path.

    Args:
        name: Workspace name or path (default: CINELAKE_WORKSPACE or "movielens")
    """
    if name is None:
        from cinelake.resources.config import get_settings

        name = get_settings().workspace or os.getenv("WORKSPACE", "movielens")
    return Workspace.load(name)
