"""🗓️ Orchestration - Dagster assets, job and schedule for a workspace.

Every seed, model and snapshot becomes one asset:

    AssetKey([workspace, layer, name])

Ephemeral models are not assets: their upstream nodes become direct
dependencies of whatever refs them. Each asset builds its node through
PipelineExecutor, so Dagster runs behave exactly like `cinelake build`.
"""

from pathlib import Path
from typing import TYPE_CHECKING

from dagster import (
    AssetExecutionContext,
    AssetKey,
    AssetsDefinition,
    AssetSelection,
    DefaultScheduleStatus,
    Definitions,
    Failure,
    MaterializeResult,
    ScheduleDefinition,
    asset,
    define_asset_job,
    in_process_executor,
)

from cinelake.pipeline.loader import LoadedPipeline, discover_pipelines

if TYPE_CHECKING:
    from cinelake.workspace.manager import Workspace


# Common cron presets
CRON_PRESETS = {
    "hourly": "0 * * * *",
    "daily": "0 0 * * *",
    "daily_6am": "0 6 * * *",
    "daily_midnight": "0 0 * * *",
    "weekly": "0 0 * * 0",
    "monthly": "0 0 1 * *",
    "every_15min": "*/15 * * * *",
    "every_30min": "*/30 * * * *",
}


def resolve_cron(cron_expr: str) -> str:
    """Resolve cron expression, supporting presets.

    Args:
        cron_expr: Cron expression or preset name (hourly, daily, etc.)

    Returns:
        Standard cron expression
    """
    return CRON_PRESETS.get(cron_expr.lower(), cron_expr)


def asset_key(workspace_name: str, node: LoadedPipeline) -> AssetKey:
    """Asset key of a node: [workspace, layer, name]."""
    return AssetKey([workspace_name, node.layer, node.name])


def asset_deps(node: LoadedPipeline, by_name: dict[str, LoadedPipeline]) -> list[str]:
    """Names of the non-ephemeral nodes a node reads, looking through ephemerals."""
    deps: list[str] = []
    stack = list(node.dependencies)
    seen: set[str] = set()

    while stack:
        name = stack.pop(0)
        if name in seen or name not in by_name:
            continue
        seen.add(name)
        upstream = by_name[name]
        if upstream.materialized == "ephemeral":
            stack.extend(upstream.dependencies)
        else:
            deps.append(name)

    return deps


def _create_node_asset(
    workspace_path: Path,
    workspace_name: str,
    node: LoadedPipeline,
    by_name: dict[str, LoadedPipeline],
) -> AssetsDefinition:
    """Create a Dagster asset that builds one node."""
    node_name = node.name

    @asset(
        key=asset_key(workspace_name, node),
        deps=[asset_key(workspace_name, by_name[dep]) for dep in asset_deps(node, by_name)],
        description=node.config.description or f"{node.layer.title()} {node.resource_type}: {node_name}",
        group_name=node.layer,
        metadata={
            "path": str(node.path),
            "relation": node.relation,
            "materialized": node.materialized,
            "workspace": workspace_name,
        },
        kinds={"duckdb"},
    )
    def node_asset(context: AssetExecutionContext) -> MaterializeResult:
        """Build the node in the workspace database."""
        from cinelake.pipeline.executor import PipelineExecutor
        from cinelake.workspace.manager import Workspace

        workspace = Workspace.load(workspace_path)
        try:
            executor = PipelineExecutor(workspace)
            result = executor.run(executor.get_pipeline(node_name))
        finally:
            workspace.close()

        if result.status == "error":
            raise Failure(description=f"{node_name} failed: {result.error}")

        context.log.info(f"{node_name}: {result.rows_written} rows in {result.duration_ms}ms")
        return MaterializeResult(
            metadata={
                "rows_written": result.rows_written,
                "rows_total": result.rows_total or 0,
                "relation": result.relation or "",
                "incremental": result.is_incremental,
            }
        )

    return node_asset


def build_assets(workspace: "Workspace") -> list[AssetsDefinition]:
    """One asset per seed, model and snapshot (ephemeral models excluded)."""
    nodes = discover_pipelines(workspace)
    by_name = {node.name: node for node in nodes}

    return [
        _create_node_asset(workspace.path, workspace.name, node, by_name)
        for node in nodes
        if node.materialized != "ephemeral"
    ]


def build_definitions(workspace: "Workspace") -> Definitions:
    """Assets, a job over all of them and the workspace schedule."""
    assets = build_assets(workspace)

    # DuckDB allows one writer per database file
    job = define_asset_job(
        name=f"{workspace.name}_build",
        selection=AssetSelection.all(),
        executor_def=in_process_executor,
        description=f"Build every node of {workspace.name} in dependency order",
    )

    schedules = []
    if workspace.config.schedule:
        schedules.append(
            ScheduleDefinition(
                name=f"{workspace.name}_schedule",
                job=job,
                cron_schedule=resolve_cron(workspace.config.schedule),
                execution_timezone="UTC",
                default_status=DefaultScheduleStatus.STOPPED,
            )
        )

    return Definitions(assets=assets, jobs=[job], schedules=schedules)
