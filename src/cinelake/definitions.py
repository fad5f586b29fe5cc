"""🎬 Dagster Definitions - cinelake warehouse.

Loads the workspace named by CINELAKE_WORKSPACE (default: movielens) and
exposes its seeds, models and snapshots as assets:

    dagster dev -m cinelake.definitions
"""

from cinelake.orchestration import build_definitions
from cinelake.workspace.manager import get_workspace

print("🎬 cinelake loading...")

workspace = get_workspace()
defs = build_definitions(workspace)
workspace.close()

print(f"   Workspace: {workspace.name} ({workspace.path})")
print("🎬 cinelake ready!")
