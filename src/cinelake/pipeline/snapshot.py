"""📸 Snapshots - Slowly changing dimension (type 2) history tables.

A snapshot keeps every version of a mutable record:

    source row ──► current version (dbt_valid_to IS NULL)
                   closed versions (dbt_valid_from .. dbt_valid_to)

Strategies:
- check:     a new version when the md5 of check_cols (or all columns) changes
- timestamp: a new version when updated_at moves forward

Config comes from the SQL header:

    -- @unique_key: user_id, movie_id, tag
    -- @strategy: check
    -- @check_cols: tag
    -- @invalidate_hard_deletes: true

Like incremental models, snapshots keep no state outside the table itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from cinelake.engine.duckdb import quote_literal

from .materializations import MaterializationResult, _replace_kind
from .parser import split_list

if TYPE_CHECKING:
    from cinelake.engine.duckdb import DuckDBEngine

    from .loader import LoadedPipeline


META_COLUMNS = ("dbt_scd_id", "dbt_updated_at", "dbt_valid_from", "dbt_valid_to")
STRATEGIES = ("check", "timestamp")


@dataclass
class SnapshotConfig:
    """How a snapshot detects changes."""

    unique_key: list[str]
    strategy: str = "check"
    check_cols: list[str] = field(default_factory=list)  # empty = all columns
    updated_at: str | None = None
    invalidate_hard_deletes: bool = False

    @classmethod
    def from_pipeline(cls, pipeline: "LoadedPipeline") -> "SnapshotConfig":
        """Build the config from a snapshot's header metadata."""
        metadata = pipeline.parsed.metadata if pipeline.parsed else {}
        check_cols = metadata.get("check_cols", "all")

        config = cls(
            unique_key=pipeline.unique_key,
            strategy=metadata.get("strategy", "check").lower(),
            check_cols=[] if check_cols.strip().lower() == "all" else split_list(check_cols),
            updated_at=metadata.get("updated_at"),
            invalidate_hard_deletes=metadata.get("invalidate_hard_deletes", "false")
            .strip()
            .lower()
            in ("true", "yes", "1"),
        )
        config.validate(pipeline.name)
        return config

    def validate(self, name: str) -> None:
        if not self.unique_key:
            raise ValueError(f"Snapshot {name} needs a unique_key")
        if self.strategy not in STRATEGIES:
            raise ValueError(
                f"Unknown snapshot strategy '{self.strategy}' for {name}. "
                f"Expected one of {list(STRATEGIES)}"
            )
        if self.strategy == "timestamp" and not self.updated_at:
            raise ValueError(f"Snapshot {name} uses the timestamp strategy without updated_at")


def _quote(column: str) -> str:
    return f'"{column}"'


def _key_expr(keys: list[str], alias: str) -> str:
    """Single VARCHAR key over one or more columns, NULL-safe."""
    parts = ", ".join(
        f"coalesce(CAST({alias}.{_quote(k)} AS VARCHAR), '_null_')" for k in keys
    )
    return f"concat_ws('|', {parts})"


def _hash_expr(columns: list[str], alias: str) -> str:
    """md5 over the tracked columns, NULL-safe."""
    parts = ", ".join(
        f"coalesce(CAST({alias}.{_quote(c)} AS VARCHAR), '_null_')" for c in columns
    )
    return f"md5(concat_ws('|', {parts}))"


def _check_columns(
    config: SnapshotConfig,
    source_columns: list[str],
    name: str,
) -> list[str]:
    """Columns the check strategy hashes, validated against the source."""
    lowered = {c.lower() for c in source_columns}
    required = list(config.unique_key) + list(config.check_cols)
    if config.updated_at:
        required.append(config.updated_at)
    missing = [c for c in required if c.lower() not in lowered]
    if missing:
        raise ValueError(f"Snapshot {name} references unknown columns: {missing}")

    reserved = [c for c in source_columns if c.lower() in META_COLUMNS]
    if reserved:
        raise ValueError(f"Snapshot {name} source already has columns {reserved}")

    return list(config.check_cols) or list(source_columns)


def run_snapshot(
    engine: "DuckDBEngine",
    pipeline: "LoadedPipeline",
    sql: str,
    run_started_at: datetime,
) -> MaterializationResult:
    """Capture the current state of a snapshot's source into its history table.

    Expects to run inside an engine transaction.

    1. Stage the source with a key and a content hash per row
    2. Close the open version of every changed key
    3. Optionally close open versions whose key vanished from the source
    4. Insert a new open version for every key without one

    Returns:
        MaterializationResult (rows_written = versions inserted)
    """
    config = SnapshotConfig.from_pipeline(pipeline)
    name = pipeline.name
    relation = pipeline.relation
    now = f"CAST({quote_literal(run_started_at.isoformat(sep=' '))} AS TIMESTAMP)"

    source = f"__cinelake_src_{name}"
    stage = f"__cinelake_snap_{name}"
    changes = f"__cinelake_changes_{name}"

    engine.execute(f"CREATE OR REPLACE TEMP TABLE {source} AS\n{sql}")
    source_columns = [column for column, _ in engine.describe(source)]
    tracked = _check_columns(config, source_columns, name)

    duplicates = engine.scalar(
        f"SELECT COUNT(*) - COUNT(DISTINCT {_key_expr(config.unique_key, 's')}) "
        f"FROM {source} AS s"
    )
    if duplicates:
        raise ValueError(
            f"Snapshot {name}: {duplicates} duplicate rows for unique_key {config.unique_key}"
        )

    engine.execute(
        f"""
        CREATE OR REPLACE TEMP TABLE {stage} AS
        SELECT
            s.*,
            {_key_expr(config.unique_key, 's')} AS _key,
            {_hash_expr(tracked, 's')} AS _hash
        FROM {source} AS s
        """
    )

    if config.strategy == "timestamp":
        valid_from = f"CAST(s.{_quote(config.updated_at)} AS TIMESTAMP)"
    else:
        valid_from = now

    source_list = ", ".join(f"s.{_quote(column)}" for column in source_columns)
    new_versions = f"""
        SELECT
            {source_list},
            md5(concat_ws('|', s._key, CAST({valid_from} AS VARCHAR))) AS dbt_scd_id,
            {valid_from} AS dbt_updated_at,
            {valid_from} AS dbt_valid_from,
            CAST(NULL AS TIMESTAMP) AS dbt_valid_to
        FROM {stage} AS s
    """

    engine.ensure_schema(pipeline.schema)
    _replace_kind(engine, pipeline.schema, name, "table")

    if not engine.relation_exists(pipeline.schema, name):
        engine.execute(f"CREATE TABLE {relation} AS {new_versions}")
        rows = engine.scalar(f"SELECT COUNT(*) FROM {relation}")
        _drop_temp(engine, source, stage)
        return MaterializationResult(rows_written=rows, rows_total=rows)

    # New source columns become nullable history columns
    existing = {column.lower() for column, _ in engine.describe(relation)}
    added = [
        (column, kind)
        for column, kind in engine.describe(source)
        if column.lower() not in existing
    ]
    for column, kind in added:
        engine.execute(f"ALTER TABLE {relation} ADD COLUMN {_quote(column)} {kind}")

    if config.strategy == "timestamp":
        changed = (
            f"s.{_quote(config.updated_at)} > t.{_quote(config.updated_at)}"
        )
    else:
        changed = f"s._hash <> {_hash_expr(tracked, 't')}"

    engine.execute(
        f"""
        CREATE OR REPLACE TEMP TABLE {changes} AS
        SELECT s._key, {valid_from} AS _valid_to
        FROM {stage} AS s
        JOIN {relation} AS t
          ON s._key = {_key_expr(config.unique_key, 't')}
        WHERE t.dbt_valid_to IS NULL
          AND {changed}
        """
    )
    closed = engine.scalar(f"SELECT COUNT(*) FROM {changes}")

    engine.execute(
        f"""
        UPDATE {relation}
        SET dbt_valid_to = c._valid_to
        FROM {changes} AS c
        WHERE {name}.dbt_valid_to IS NULL
          AND {_key_expr(config.unique_key, name)} = c._key
        """
    )

    if config.invalidate_hard_deletes:
        deleted = engine.scalar(
            f"""
            SELECT COUNT(*) FROM {relation} AS t
            WHERE t.dbt_valid_to IS NULL
              AND {_key_expr(config.unique_key, 't')} NOT IN (SELECT _key FROM {stage})
            """
        )
        engine.execute(
            f"""
            UPDATE {relation}
            SET dbt_valid_to = {now}
            WHERE dbt_valid_to IS NULL
              AND {_key_expr(config.unique_key, name)} NOT IN (SELECT _key FROM {stage})
            """
        )
        closed += deleted

    # Changed keys were just closed, so "no open version" covers new and changed keys
    before = engine.scalar(f"SELECT COUNT(*) FROM {relation}")
    engine.execute(
        f"""
        INSERT INTO {relation} BY NAME
        {new_versions}
        WHERE s._key NOT IN (
            SELECT {_key_expr(config.unique_key, 't')}
            FROM {relation} AS t
            WHERE t.dbt_valid_to IS NULL
        )
        """
    )
    total = engine.scalar(f"SELECT COUNT(*) FROM {relation}")

    _drop_temp(engine, source, stage, changes)

    if closed:
        print(f"   Closed {closed} versions")

    return MaterializationResult(
        rows_written=total - before,
        rows_total=total,
        added_columns=[column for column, _ in added] or None,
    )


def _drop_temp(engine: "DuckDBEngine", *tables: str) -> None:
    for table in tables:
        engine.execute(f"DROP TABLE IF EXISTS {table}")
