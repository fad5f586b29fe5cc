"""⚡ Pipeline Executor - Build nodes and track results.

Handles:
- Compiling SQL templates (with ephemeral CTEs inlined)
- Building models, snapshots and seeds inside DuckDB transactions
- Incremental runs driven by what the target already holds
- Skipping nodes downstream of a failure
- Writing compiled SQL, manifest.json and run_results.json
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from cinelake.workspace.manager import Workspace

from .artifacts import write_compiled, write_manifest, write_run_results
from .incremental import current_watermarks, detect_watermark_column, detect_watermark_columns
from .loader import (
    LoadedPipeline,
    ResourceType,
    discover_pipelines,
    select_pipelines,
    topological_sort,
)
from .materializations import MATERIALIZERS, MaterializationResult, materialize_table
from .parser import SQLParser
from .seeds import load_seed
from .snapshot import run_snapshot

RunStatus = Literal["success", "error", "skipped"]


def _utcnow() -> datetime:
    """Naive UTC now, comparable with DuckDB TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class PipelineResult:
    """Result of executing a pipeline."""

    name: str
    status: RunStatus
    started_at: datetime
    finished_at: datetime
    duration_ms: int

    resource_type: str = "model"
    materialized: str | None = None
    relation: str | None = None

    # Row counts
    rows_written: int = 0
    rows_total: int | None = None
    added_columns: list[str] | None = None

    # Incremental info
    is_incremental: bool = False
    watermark_column: str | None = None
    watermark_value: Any = None

    # Compiled SQL
    compiled_sql: str | None = None
    compiled_path: str | None = None

    # Error or skip reason
    error: str | None = None
    message: str | None = None

    @property
    def success(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "status": self.status,
            "resource_type": self.resource_type,
            "materialized": self.materialized,
            "relation": self.relation,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_ms": self.duration_ms,
            "rows_written": self.rows_written,
            "rows_total": self.rows_total,
            "added_columns": self.added_columns,
            "is_incremental": self.is_incremental,
            "watermark_column": self.watermark_column,
            "watermark_value": str(self.watermark_value) if self.watermark_value is not None else None,
            "compiled_path": self.compiled_path,
            "error": self.error,
            "message": self.message,
        }


@dataclass
class CompiledNode:
    """A node's SQL for one run."""

    sql: str
    is_incremental: bool = False
    watermark_column: str | None = None
    watermarks: dict[str, Any] | None = None


class PipelineExecutor:
    """Execute pipelines within a workspace context.

    Example:
        executor = PipelineExecutor(workspace)
        result = executor.run(executor.get_pipeline("dim_movies"))

        # Seeds, models and snapshots in dependency order
        results = executor.run_all()

        # Only fct_ratings and what it depends on
        results = executor.run_all(select=["+fct_ratings"])
    """

    def __init__(
        self,
        workspace: "Workspace",
        vars: dict[str, Any] | None = None,
        run_started_at: datetime | None = None,
    ):
        self.workspace = workspace
        self.engine = workspace.get_engine()
        self.pipelines = discover_pipelines(workspace)
        self.parser = SQLParser(
            workspace,
            pipelines={p.name: p for p in self.pipelines},
            vars=vars,
        )
        self.run_started_at = run_started_at or _utcnow()
        self.target = workspace.target_path

    def get_pipeline(self, name: str) -> LoadedPipeline:
        """Get a discovered node by name."""
        for pipeline in self.pipelines:
            if pipeline.name == name:
                return pipeline
        raise ValueError(
            f"Pipeline '{name}' not found. Available: {[p.name for p in self.pipelines]}"
        )

    def compile(self, pipeline: LoadedPipeline, full_refresh: bool = False) -> CompiledNode:
        """Render a model or snapshot to executable SQL.

        Incremental models compile in incremental mode only when the target
        already exists as a table holding rows and no full refresh was requested.
        An empty target is rebuilt like a first run.
        """
        parsed = pipeline.parsed
        if parsed is None:
            raise ValueError(f"Pipeline {pipeline.name} has no SQL to compile")

        is_incremental = (
            pipeline.is_incremental
            and not full_refresh
            and self.engine.relation_type(pipeline.schema, pipeline.name) == "table"
            and bool(self.engine.scalar(f"SELECT COUNT(*) FROM {pipeline.relation}"))
        )

        watermarks: dict[str, Any] = {}
        watermark_column = None
        if pipeline.is_incremental:
            watermark_column = detect_watermark_column(parsed.raw_sql)
        if is_incremental:
            watermarks = current_watermarks(
                self.engine,
                pipeline.relation,
                detect_watermark_columns(parsed.raw_sql),
            )

        sql = self.parser.compile(
            parsed,
            is_incremental=is_incremental,
            watermarks=watermarks,
            run_started_at=self.run_started_at,
        )
        return CompiledNode(
            sql=sql,
            is_incremental=is_incremental,
            watermark_column=watermark_column,
            watermarks=watermarks,
        )

    def run(
        self,
        pipeline: LoadedPipeline,
        full_refresh: bool = False,
    ) -> PipelineResult:
        """Execute a single node.

        Args:
            pipeline: LoadedPipeline to execute
            full_refresh: Rebuild incremental models from scratch

        Returns:
            PipelineResult with execution details
        """
        started_at = _utcnow()
        start_time = time.time()

        if pipeline.materialized == "ephemeral":
            return self._skipped(pipeline, "ephemeral models are inlined into their dependents")

        compiled: CompiledNode | None = None
        try:
            if pipeline.resource_type == "seed":
                print(f"🌱 Seeding: {pipeline.name}")
                column_types = self.workspace.config.seeds.column_types.get(pipeline.name)
                with self.engine.transaction():
                    outcome = load_seed(self.engine, pipeline, column_types)
            else:
                compiled = self.compile(pipeline, full_refresh)
                compiled_path = write_compiled(self.target, pipeline, compiled.sql)
                outcome = self._build(pipeline, compiled)

            duration_ms = int((time.time() - start_time) * 1000)
            result = PipelineResult(
                name=pipeline.name,
                status="success",
                started_at=started_at,
                finished_at=_utcnow(),
                duration_ms=duration_ms,
                resource_type=pipeline.resource_type,
                materialized=pipeline.materialized,
                relation=pipeline.relation,
                rows_written=outcome.rows_written,
                rows_total=outcome.rows_total,
                added_columns=outcome.added_columns,
            )

            if compiled is not None:
                result.compiled_sql = compiled.sql
                result.compiled_path = str(compiled_path)
                result.is_incremental = compiled.is_incremental
                if compiled.watermark_column:
                    result.watermark_column = compiled.watermark_column
                    result.watermark_value = self.engine.scalar(
                        f"SELECT MAX({compiled.watermark_column}) FROM {pipeline.relation}"
                    )
                    print(f"   Watermark: {result.watermark_column} = {result.watermark_value}")

            if outcome.added_columns:
                print(f"   Added columns: {outcome.added_columns}")
            return result

        except Exception as e:
            duration_ms = int((time.time() - start_time) * 1000)
            return PipelineResult(
                name=pipeline.name,
                status="error",
                started_at=started_at,
                finished_at=_utcnow(),
                duration_ms=duration_ms,
                resource_type=pipeline.resource_type,
                materialized=pipeline.materialized,
                relation=pipeline.relation,
                compiled_sql=compiled.sql if compiled else None,
                error=str(e),
            )

    def _build(self, pipeline: LoadedPipeline, compiled: CompiledNode) -> MaterializationResult:
        """Materialize a compiled model or snapshot in one transaction."""
        if pipeline.resource_type == "snapshot":
            print(f"📸 Snapshot: {pipeline.name}")
            with self.engine.transaction():
                return run_snapshot(self.engine, pipeline, compiled.sql, self.run_started_at)

        print(f"🔄 Running: {pipeline.name}")
        if compiled.is_incremental:
            print(f"   Mode: incremental (watermark: {compiled.watermarks})")
            materialize = MATERIALIZERS["incremental"]
        elif pipeline.is_incremental:
            print("   Mode: full refresh")
            materialize = materialize_table
        else:
            print(f"   Mode: {pipeline.materialized}")
            materialize = MATERIALIZERS[pipeline.materialized]

        with self.engine.transaction():
            return materialize(self.engine, pipeline, compiled.sql)

    def _skipped(self, pipeline: LoadedPipeline, message: str) -> PipelineResult:
        now = _utcnow()
        return PipelineResult(
            name=pipeline.name,
            status="skipped",
            started_at=now,
            finished_at=now,
            duration_ms=0,
            resource_type=pipeline.resource_type,
            materialized=pipeline.materialized,
            relation=pipeline.relation,
            message=message,
        )

    def select(
        self,
        select: list[str] | None = None,
        resource_types: list[ResourceType] | None = None,
    ) -> list[LoadedPipeline]:
        """Selected nodes in dependency order."""
        pipelines = select_pipelines(self.pipelines, select)
        if resource_types:
            pipelines = [p for p in pipelines if p.resource_type in resource_types]
        return topological_sort(pipelines)

    def run_all(
        self,
        select: list[str] | None = None,
        resource_types: list[ResourceType] | None = None,
        full_refresh: bool = False,
        fail_fast: bool = False,
    ) -> list[PipelineResult]:
        """Run selected nodes in dependency order.

        Args:
            select: Node selectors (name, +name, name+, layer:x, tag:x)
            resource_types: Restrict to model, snapshot and/or seed
            full_refresh: Rebuild incremental models from scratch
            fail_fast: Skip everything after the first error

        Returns:
            List of PipelineResult for each executed or skipped node
        """
        pipelines = self.select(select, resource_types)

        if not pipelines:
            print("⚠️ No pipelines found")
            return []

        runnable = [p for p in pipelines if p.materialized != "ephemeral"]
        print(f"📋 Found {len(runnable)} nodes")
        print(f"   Order: {[p.name for p in runnable]}")
        print()

        start_time = time.time()
        results: list[PipelineResult] = []
        failed: set[str] = set()
        stop = False

        for pipeline in pipelines:
            failed_upstream = [dep for dep in pipeline.dependencies if dep in failed]

            if pipeline.materialized == "ephemeral":
                # Never built, but passes failures on to its dependents
                if failed_upstream:
                    failed.add(pipeline.name)
                continue

            if stop:
                result = self._skipped(pipeline, "skipped after an earlier failure (fail fast)")
            elif failed_upstream:
                result = self._skipped(pipeline, f"upstream failed: {failed_upstream}")
            else:
                result = self.run(pipeline, full_refresh=full_refresh)

            results.append(result)

            if result.status == "success":
                print(f"   ✅ {result.name}: {result.rows_written} rows in {result.duration_ms}ms")
            elif result.status == "skipped":
                failed.add(pipeline.name)
                print(f"   ⏭️ {result.name}: {result.message}")
            else:
                failed.add(pipeline.name)
                print(f"   ❌ {result.name}: {result.error}")
                if fail_fast:
                    stop = True

        elapsed_ms = int((time.time() - start_time) * 1000)
        write_run_results(self.target, self.workspace.name, results, elapsed_ms)
        write_manifest(self.target, self.workspace.name, self.pipelines)

        # Summary
        success_count = sum(1 for r in results if r.status == "success")
        error_count = sum(1 for r in results if r.status == "error")
        skipped_count = sum(1 for r in results if r.status == "skipped")
        total_rows = sum(r.rows_written for r in results)

        print()
        print(
            f"📊 Summary: {success_count}/{len(results)} succeeded, "
            f"{error_count} failed, {skipped_count} skipped, "
            f"{total_rows} rows, {elapsed_ms}ms"
        )

        return results

    def compile_all(self, select: list[str] | None = None) -> list[Path]:
        """Compile selected models and snapshots without building them.

        Writes target/compiled/<layer>/<name>.sql and target/manifest.json.

        Returns:
            Paths of the compiled SQL files
        """
        paths = []
        for pipeline in self.select(select, ["model", "snapshot"]):
            compiled = self.compile(pipeline)
            paths.append(write_compiled(self.target, pipeline, compiled.sql))

        write_manifest(self.target, self.workspace.name, self.pipelines)
        print(f"📝 Compiled {len(paths)} nodes → {self.target / 'compiled'}")
        return paths
