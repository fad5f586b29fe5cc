"""📈 Incremental Processing - Process only rows newer than what is stored.

Incremental pipelines only process new/changed data by:
1. Reading the highest stored value (watermark) of a column from the target
2. Injecting WHERE clauses to filter for newer rows
3. Appending, or merging on unique keys, into the existing table

No state is kept between runs: the target table itself is the watermark.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from cinelake.engine.duckdb import DuckDBEngine


WATERMARK_PATTERN = re.compile(r"watermark\(\s*['\"](\w+)['\"]\s*\)")


def detect_watermark_columns(raw_sql: str) -> list[str]:
    """Detect the columns passed to {{ watermark('column') }} in a template."""
    return list(dict.fromkeys(WATERMARK_PATTERN.findall(raw_sql)))


def detect_watermark_column(raw_sql: str) -> str | None:
    """Detect the watermark column from an incremental template.

    Looks for patterns like:
    - AND rating_timestamp > '{{ watermark('rating_timestamp') }}'
    - AND rating_timestamp > (SELECT MAX(rating_timestamp) FROM {{ this }})
    - AND rating_timestamp > (SELECT COALESCE(MAX(rating_timestamp), ...) FROM {{ this }})

    Returns:
        Detected column name or None
    """
    columns = detect_watermark_columns(raw_sql)
    if columns:
        return columns[0]

    match = re.search(
        r"(\w+)\s*>=?\s*\(\s*SELECT\s+(?:COALESCE\(\s*)?MAX\(\s*(\w+)\s*\)"
        r"(?:\s*,[^)]*\))?\s+FROM\s+\{\{\s*this\s*\}\}",
        raw_sql,
        re.IGNORECASE,
    )
    if match:
        return match.group(2)

    return None


def current_watermarks(
    engine: "DuckDBEngine",
    relation: str,
    columns: list[str],
) -> dict[str, Any]:
    """Read MAX(column) from the target for each watermark column.

    Returns:
        Dict mapping column to its stored maximum (None when the table is empty)
    """
    return {
        column: engine.scalar(f"SELECT MAX({column}) FROM {relation}")
        for column in columns
    }


def check_schema_change(
    existing: list[tuple[str, str]],
    incoming: list[tuple[str, str]],
    policy: str,
    relation: str,
) -> list[tuple[str, str]]:
    """Compare target and incoming columns for an incremental run.

    Args:
        existing: (column, type) pairs of the target table
        incoming: (column, type) pairs of the new batch
        policy: ignore, fail or append_new_columns
        relation: Target relation, for error messages

    Returns:
        Columns to add to the target (only for append_new_columns)
    """
    existing_names = {name.lower() for name, _ in existing}
    incoming_names = {name.lower() for name, _ in incoming}

    added = [(name, kind) for name, kind in incoming if name.lower() not in existing_names]
    removed = sorted(existing_names - incoming_names)

    if not added and not removed:
        return []

    if policy == "fail":
        raise ValueError(
            f"Schema change detected for {relation}: "
            f"added={[name for name, _ in added]}, removed={removed}. "
            f"Run with --full-refresh or set on_schema_change."
        )
    if policy == "append_new_columns":
        return added
    if policy == "ignore":
        return []

    raise ValueError(f"Unknown on_schema_change policy: {policy}")
