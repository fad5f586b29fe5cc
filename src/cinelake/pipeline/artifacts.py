"""📦 Artifacts - Compiled SQL and JSON run metadata under target/.

target/
├── compiled/<layer>/<name>.sql   # rendered SELECT of each node
├── manifest.json                 # nodes, configs and dependencies
└── run_results.json              # outcome of the last run
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from cinelake import __version__

if TYPE_CHECKING:
    from .executor import PipelineResult
    from .loader import LoadedPipeline


def write_compiled(target: Path, pipeline: "LoadedPipeline", sql: str) -> Path:
    """Write a node's compiled SQL to target/compiled/<layer>/<name>.sql."""
    path = Path(target) / "compiled" / pipeline.layer / f"{pipeline.name}.sql"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(sql.rstrip() + "\n")
    return path


def node_manifest(pipeline: "LoadedPipeline") -> dict:
    """Manifest entry for one node."""
    entry = {
        "name": pipeline.name,
        "resource_type": pipeline.resource_type,
        "layer": pipeline.layer,
        "path": str(pipeline.path),
        "relation": pipeline.relation,
        "materialized": pipeline.materialized,
        "unique_key": pipeline.unique_key,
        "tags": pipeline.tags,
        "description": pipeline.config.description,
        "owner": pipeline.config.owner or (pipeline.parsed.owner if pipeline.parsed else None),
        "depends_on": {
            "nodes": pipeline.dependencies,
            "sources": [
                f"{source}.{table}"
                for source, table in (pipeline.parsed.sources if pipeline.parsed else [])
            ],
        },
        "columns": {
            column.name: {
                "type": column.type,
                "description": column.description,
            }
            for column in pipeline.config.columns
        },
    }
    if pipeline.parsed and pipeline.parsed.metadata:
        entry["config"] = dict(pipeline.parsed.metadata)
    return entry


def _generated_at() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def build_manifest(workspace_name: str, pipelines: list["LoadedPipeline"]) -> dict:
    """Manifest of every node in a workspace."""
    return {
        "metadata": {
            "cinelake_version": __version__,
            "workspace": workspace_name,
            "generated_at": _generated_at(),
        },
        "nodes": {pipeline.name: node_manifest(pipeline) for pipeline in pipelines},
    }


def write_manifest(target: Path, workspace_name: str, pipelines: list["LoadedPipeline"]) -> Path:
    """Write target/manifest.json."""
    return _write_json(Path(target) / "manifest.json", build_manifest(workspace_name, pipelines))


def write_run_results(
    target: Path,
    workspace_name: str,
    results: list["PipelineResult"],
    elapsed_ms: int,
) -> Path:
    """Write target/run_results.json."""
    payload = {
        "metadata": {
            "cinelake_version": __version__,
            "workspace": workspace_name,
            "generated_at": _generated_at(),
        },
        "elapsed_ms": elapsed_ms,
        "results": [result.to_dict() for result in results],
    }
    return _write_json(Path(target) / "run_results.json", payload)


def _write_json(path: Path, payload: dict) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(payload, f, indent=2, default=str)
        f.write("\n")
    return path
