"""🧱 Materializations - How a compiled SELECT becomes a relation.

- view:        CREATE OR REPLACE VIEW
- table:       CREATE OR REPLACE TABLE ... AS
- incremental: build once, then append (or merge on unique_key) new rows
- ephemeral:   never built, inlined as a CTE by the parser

Every function expects to run inside an engine transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .incremental import check_schema_change

if TYPE_CHECKING:
    from cinelake.engine.duckdb import DuckDBEngine

    from .loader import LoadedPipeline


@dataclass
class MaterializationResult:
    """What a materialization did."""

    rows_written: int = 0
    rows_total: int | None = None
    added_columns: list[str] | None = None


def _replace_kind(engine: "DuckDBEngine", schema: str, name: str, kind: str) -> None:
    """Drop the relation when it exists as a different kind (view vs table)."""
    existing = engine.relation_type(schema, name)
    if existing is not None and existing != kind:
        engine.drop_relation(schema, name)


def materialize_view(
    engine: "DuckDBEngine",
    pipeline: "LoadedPipeline",
    sql: str,
) -> MaterializationResult:
    """Create or replace a view."""
    engine.ensure_schema(pipeline.schema)
    _replace_kind(engine, pipeline.schema, pipeline.name, "view")
    engine.execute(f"CREATE OR REPLACE VIEW {pipeline.relation} AS\n{sql}")
    return MaterializationResult(rows_written=0)


def materialize_table(
    engine: "DuckDBEngine",
    pipeline: "LoadedPipeline",
    sql: str,
) -> MaterializationResult:
    """Create or replace a table from a SELECT."""
    engine.ensure_schema(pipeline.schema)
    _replace_kind(engine, pipeline.schema, pipeline.name, "table")
    engine.execute(f"CREATE OR REPLACE TABLE {pipeline.relation} AS\n{sql}")
    rows = engine.scalar(f"SELECT COUNT(*) FROM {pipeline.relation}")
    return MaterializationResult(rows_written=rows, rows_total=rows)


def materialize_incremental(
    engine: "DuckDBEngine",
    pipeline: "LoadedPipeline",
    sql: str,
) -> MaterializationResult:
    """Append (or merge) a batch of new rows into an existing table.

    The caller compiles sql with is_incremental() true and only calls this
    when the target already exists as a table.

    1. Stage the batch in a temp table
    2. Apply the on_schema_change policy
    3. With unique_key: delete target rows whose key is in the batch
    4. Insert the batch BY NAME using the columns both sides share
    """
    staging = f"__cinelake_tmp_{pipeline.name}"
    engine.execute(f"CREATE OR REPLACE TEMP TABLE {staging} AS\n{sql}")

    existing = engine.describe(pipeline.relation)
    incoming = engine.describe(staging)

    added = check_schema_change(
        existing,
        incoming,
        pipeline.on_schema_change,
        pipeline.relation,
    )
    for column, kind in added:
        engine.execute(f"ALTER TABLE {pipeline.relation} ADD COLUMN {column} {kind}")

    target_columns = {name.lower() for name, _ in existing}
    target_columns.update(name.lower() for name, _ in added)
    shared = [name for name, _ in incoming if name.lower() in target_columns]
    column_list = ", ".join(f'"{name}"' for name in shared)

    if pipeline.unique_key:
        matches = " AND ".join(
            f"{pipeline.name}.{key} = s.{key}" for key in pipeline.unique_key
        )
        engine.execute(
            f"DELETE FROM {pipeline.relation} USING {staging} AS s WHERE {matches}"
        )

    engine.execute(
        f"INSERT INTO {pipeline.relation} BY NAME "
        f"SELECT {column_list} FROM {staging}"
    )
    rows_written = engine.scalar(f"SELECT COUNT(*) FROM {staging}")
    rows_total = engine.scalar(f"SELECT COUNT(*) FROM {pipeline.relation}")

    engine.execute(f"DROP TABLE {staging}")

    return MaterializationResult(
        rows_written=rows_written,
        rows_total=rows_total,
        added_columns=[name for name, _ in added] or None,
    )


MATERIALIZERS = {
    "view": materialize_view,
    "table": materialize_table,
    "incremental": materialize_incremental,
}
