"""📂 Pipeline Loader - Discover workspace nodes and order them as a DAG.

Supports:
- SQL models (pipelines/{bronze,silver,gold}/*.sql + optional *.yaml config)
- Snapshots (snapshots/*.sql + optional *.yaml config)
- Seeds (seeds/*.csv)
- Node selection: name, +name, name+, layer:<layer>, tag:<tag>
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from cinelake.workspace.manager import Workspace

from .config import PipelineConfig, load_pipeline_config
from .parser import ParsedPipeline, SQLParser

LAYERS = ("bronze", "silver", "gold")
MATERIALIZATIONS = ("view", "table", "incremental", "ephemeral")

ResourceType = Literal["model", "snapshot", "seed"]


@dataclass
class LoadedPipeline:
    """A fully loaded node ready for execution."""

    # Identity
    name: str
    path: Path
    layer: str  # bronze, silver, gold, snapshots, seeds
    resource_type: ResourceType = "model"

    # Where the node is built
    schema: str = ""

    # Parsed SQL (models and snapshots)
    parsed: ParsedPipeline | None = None

    # Configuration (from YAML)
    config: PipelineConfig = field(default_factory=PipelineConfig)

    # Layer default when neither YAML nor SQL header sets one
    default_materialized: str = "view"

    @property
    def relation(self) -> str:
        """Fully qualified relation name (schema.name)."""
        return f"{self.schema}.{self.name}"

    @property
    def materialized(self) -> str:
        """Effective materialization: YAML > SQL header > layer default."""
        if self.resource_type == "snapshot":
            return "snapshot"
        if self.resource_type == "seed":
            return "seed"
        if self.config.materialized:
            return self.config.materialized
        if self.parsed and self.parsed.materialized:
            return self.parsed.materialized
        return self.default_materialized

    @property
    def is_incremental(self) -> bool:
        """Check if this is an incremental pipeline."""
        return self.materialized == "incremental"

    @property
    def unique_key(self) -> list[str]:
        """Get unique key columns."""
        if self.config.unique_key:
            return self.config.unique_key
        if self.parsed:
            return self.parsed.unique_key
        return []

    @property
    def on_schema_change(self) -> str:
        """Schema drift policy for incremental runs."""
        if self.config.on_schema_change:
            return self.config.on_schema_change
        if self.parsed and self.parsed.on_schema_change:
            return self.parsed.on_schema_change
        return "ignore"

    @property
    def tags(self) -> list[str]:
        """Selection tags from YAML and SQL header."""
        tags = list(self.config.tags)
        if self.parsed:
            tags.extend(t for t in self.parsed.tags if t not in tags)
        return tags

    @property
    def dependencies(self) -> list[str]:
        """Names of the nodes this one refs."""
        if self.parsed:
            return [dep.split(".")[-1] for dep in self.parsed.dependencies]
        return []


def load_pipeline(
    path: Path | str,
    workspace: "Workspace | None" = None,
    parser: SQLParser | None = None,
) -> LoadedPipeline:
    """Load a single node from a file.

    Args:
        path: Path to a model/snapshot .sql file or a seed .csv file
        workspace: Optional workspace for schema resolution
        parser: Parser to reuse (one is created otherwise)

    Returns:
        LoadedPipeline ready for execution
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Pipeline not found: {path}")

    if path.suffix == ".csv":
        return _load_seed(path, workspace)
    if path.suffix != ".sql":
        raise ValueError(f"Unsupported pipeline type: {path.suffix}")

    parser = parser or SQLParser(workspace)
    if path.parent.name == "snapshots":
        return _load_snapshot(path, workspace, parser)
    return _load_sql_pipeline(path, _detect_layer(path), workspace, parser)


def _load_sql_pipeline(
    path: Path,
    layer: str,
    workspace: "Workspace | None",
    parser: SQLParser,
) -> LoadedPipeline:
    """Load a SQL model."""
    parsed = parser.parse_file(str(path))
    config = load_pipeline_config(path)

    if workspace is not None:
        layer_config = workspace.config.layers.get(layer)
        schema = parsed.schema or layer_config.target_schema
        default_materialized = layer_config.materialized
    else:
        schema = parsed.schema or layer
        default_materialized = "view"

    pipeline = LoadedPipeline(
        name=parsed.name,
        path=path,
        layer=layer,
        resource_type="model",
        schema=schema,
        parsed=parsed,
        config=config,
        default_materialized=default_materialized,
    )

    if pipeline.materialized not in MATERIALIZATIONS:
        raise ValueError(
            f"Unknown materialization '{pipeline.materialized}' for {pipeline.name}. "
            f"Expected one of {list(MATERIALIZATIONS)}"
        )
    return pipeline


def _load_snapshot(
    path: Path,
    workspace: "Workspace | None",
    parser: SQLParser,
) -> LoadedPipeline:
    """Load a snapshot definition."""
    parsed = parser.parse_file(str(path))
    schema = parsed.schema or (
        workspace.config.snapshots.target_schema if workspace else "snapshots"
    )

    return LoadedPipeline(
        name=parsed.name,
        path=path,
        layer="snapshots",
        resource_type="snapshot",
        schema=schema,
        parsed=parsed,
        config=load_pipeline_config(path),
    )


def _load_seed(path: Path, workspace: "Workspace | None") -> LoadedPipeline:
    """Load a CSV seed."""
    schema = workspace.config.seeds.target_schema if workspace else "seeds"
    return LoadedPipeline(
        name=path.stem,
        path=path,
        layer="seeds",
        resource_type="seed",
        schema=schema,
        config=load_pipeline_config(path),
    )


def _detect_layer(path: Path) -> str:
    """Detect medallion layer from file path."""
    if path.parent.name.lower() in LAYERS:
        return path.parent.name.lower()

    parts = [part.lower() for part in path.parts]
    for layer in LAYERS:
        if layer in parts:
            return layer

    # Default to bronze for staging models
    return "bronze"


def discover_pipelines(
    workspace: "Workspace",
    layer: str | None = None,
) -> list[LoadedPipeline]:
    """Discover all models, snapshots and seeds in a workspace.

    Args:
        workspace: Workspace to scan
        layer: Optional layer filter (bronze, silver, gold, snapshots, seeds)

    Returns:
        List of LoadedPipeline objects
    """
    pipelines: list[LoadedPipeline] = []
    parser = SQLParser(workspace)
    layers = [layer] if layer else [*LAYERS, "snapshots", "seeds"]

    for l in layers:
        if l in LAYERS:
            layer_dir = workspace.path / "pipelines" / l
            pattern = "*.sql"
        elif l == "snapshots":
            layer_dir = workspace.path / "snapshots"
            pattern = "*.sql"
        elif l == "seeds":
            layer_dir = workspace.path / "seeds"
            pattern = "*.csv"
        else:
            raise ValueError(f"Unknown layer: {l}")

        if not layer_dir.exists():
            continue

        for file in sorted(layer_dir.glob(pattern)):
            pipelines.append(load_pipeline(file, workspace, parser))

    seen: dict[str, Path] = {}
    for pipeline in pipelines:
        if pipeline.name in seen:
            raise ValueError(
                f"Duplicate pipeline name '{pipeline.name}': "
                f"{seen[pipeline.name]} and {pipeline.path}"
            )
        seen[pipeline.name] = pipeline.path

    return pipelines


def build_dag(pipelines: list[LoadedPipeline]) -> dict[str, list[str]]:
    """Build a dependency DAG from pipelines.

    Returns:
        Dict mapping pipeline name to list of dependencies
    """
    dag = {}
    for pipeline in pipelines:
        dag[pipeline.name] = pipeline.dependencies
    return dag


def topological_sort(pipelines: list[LoadedPipeline]) -> list[LoadedPipeline]:
    """Sort pipelines in dependency order.

    Dependencies outside the given list are ignored, so a selected subset
    can be sorted on its own.

    Returns:
        Pipelines sorted so dependencies come before dependents
    """
    by_name = {p.name: p for p in pipelines}
    dag = build_dag(pipelines)

    # Kahn's algorithm: in-degree counts upstream nodes that are in the list
    in_degree = {
        name: len([dep for dep in set(deps) if dep in by_name])
        for name, deps in dag.items()
    }
    dependents: dict[str, list[str]] = {name: [] for name in dag}
    for name, deps in dag.items():
        for dep in set(deps):
            if dep in dependents:
                dependents[dep].append(name)

    # Start with nodes that have no dependencies, in discovery order
    queue = deque(name for name in by_name if in_degree[name] == 0)
    result = []

    while queue:
        name = queue.popleft()
        result.append(by_name[name])

        for other in dependents[name]:
            in_degree[other] -= 1
            if in_degree[other] == 0:
                queue.append(other)

    if len(result) != len(pipelines):
        # Cycle detected
        missing = sorted(set(by_name.keys()) - {p.name for p in result})
        raise ValueError(f"Circular dependency detected involving: {missing}")

    return result


def _ancestors(name: str, dag: dict[str, list[str]]) -> set[str]:
    found: set[str] = set()
    stack = list(dag.get(name, []))
    while stack:
        dep = stack.pop()
        if dep in found or dep not in dag:
            continue
        found.add(dep)
        stack.extend(dag[dep])
    return found


def _descendants(name: str, dag: dict[str, list[str]]) -> set[str]:
    dependents: dict[str, set[str]] = {n: set() for n in dag}
    for node, deps in dag.items():
        for dep in deps:
            if dep in dependents:
                dependents[dep].add(node)

    found: set[str] = set()
    stack = list(dependents.get(name, []))
    while stack:
        node = stack.pop()
        if node in found:
            continue
        found.add(node)
        stack.extend(dependents[node])
    return found


def select_pipelines(
    pipelines: list[LoadedPipeline],
    selectors: list[str] | None,
) -> list[LoadedPipeline]:
    """Filter pipelines with dbt-style selectors.

    Selectors:
        dim_movies      the node itself
        +fct_ratings    the node and everything upstream
        src_ratings+    the node and everything downstream
        layer:silver    every node in a layer
        tag:nightly     every node carrying a tag

    Returns:
        Selected pipelines, in their original order
    """
    if not selectors:
        return list(pipelines)

    dag = build_dag(pipelines)
    by_name = {p.name: p for p in pipelines}
    selected: set[str] = set()

    for selector in selectors:
        if selector.startswith("layer:"):
            layer = selector.split(":", 1)[1]
            selected.update(p.name for p in pipelines if p.layer == layer)
            continue
        if selector.startswith("tag:"):
            tag = selector.split(":", 1)[1]
            selected.update(p.name for p in pipelines if tag in p.tags)
            continue

        upstream = selector.startswith("+")
        downstream = selector.endswith("+")
        name = selector.strip("+")

        if name not in by_name:
            raise ValueError(f"No pipeline matches selector '{selector}'")

        selected.add(name)
        if upstream:
            selected.update(_ancestors(name, dag))
        if downstream:
            selected.update(_descendants(name, dag))

    return [p for p in pipelines if p.name in selected]
