"""🌱 Seeds - Static CSV lookup tables checked into the workspace.

seeds/seed_movie_release_dates.csv ──► seeds.seed_movie_release_dates

Column types are inferred by DuckDB's CSV reader unless overridden in
workspace.yaml:

    seeds:
      target_schema: seeds
      column_types:
        seed_movie_release_dates:
          release_date: DATE
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from cinelake.engine.duckdb import quote_literal

from .materializations import MaterializationResult, _replace_kind

if TYPE_CHECKING:
    from cinelake.engine.duckdb import DuckDBEngine

    from .loader import LoadedPipeline


def seed_select(path: str, column_types: dict[str, str] | None = None) -> str:
    """Build the SELECT that reads a seed CSV."""
    args = [quote_literal(path), "header = true"]
    if column_types:
        types = ", ".join(
            f"{quote_literal(column)}: {quote_literal(kind)}"
            for column, kind in column_types.items()
        )
        args.append(f"types = {{{types}}}")
    return f"SELECT * FROM read_csv_auto({', '.join(args)})"


def load_seed(
    engine: "DuckDBEngine",
    seed: "LoadedPipeline",
    column_types: dict[str, str] | None = None,
) -> MaterializationResult:
    """Replace a seed table with the current content of its CSV file.

    Expects to run inside an engine transaction.
    """
    if not seed.path.exists():
        raise FileNotFoundError(f"Seed file not found: {seed.path}")

    sql = seed_select(str(seed.path), column_types)
    engine.ensure_schema(seed.schema)
    _replace_kind(engine, seed.schema, seed.name, "table")
    engine.execute(f"CREATE OR REPLACE TABLE {seed.relation} AS {sql}")

    rows = engine.scalar(f"SELECT COUNT(*) FROM {seed.relation}")
    return MaterializationResult(rows_written=rows, rows_total=rows)
