"""🏢 Workspaces - One directory, one database, one set of pipelines.

Example:
    from cinelake.workspace import Workspace

    ws = Workspace.load("movielens")
    engine = ws.get_engine()
    engine.query("SELECT COUNT(*) FROM silver.fct_ratings")
"""

from .config import (
    LayerConfig,
    LayersConfig,
    SeedsConfig,
    SnapshotsConfig,
    SourceConfig,
    SourceTableConfig,
    WorkspaceConfig,
)
from .manager import Workspace, get_workspace, list_workspaces

__all__ = [
    "Workspace",
    "WorkspaceConfig",
    "LayerConfig",
    "LayersConfig",
    "SourceConfig",
    "SourceTableConfig",
    "SeedsConfig",
    "SnapshotsConfig",
    "get_workspace",
    "list_workspaces",
]
