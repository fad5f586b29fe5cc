"""🦆 DuckDB Warehouse Engine - Embedded storage and query execution.

DuckDB plays the warehouse role for cinelake:
- Embedded: a single database file per workspace (or in-memory)
- Transactional: DDL and DML can be wrapped in BEGIN/COMMIT
- Reads CSV/Parquet directly, so raw extracts can be exposed as views
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import duckdb
import pandas as pd
import pyarrow as pa

if TYPE_CHECKING:
    from cinelake.resources.config import ResourceConfig
    from cinelake.workspace.manager import Workspace


FILE_READERS = {
    ".csv": "read_csv_auto",
    ".tsv": "read_csv_auto",
    ".parquet": "read_parquet",
    ".json": "read_json_auto",
}


def quote_literal(value: str) -> str:
    """Quote a string as a SQL literal."""
    return "'" + str(value).replace("'", "''") + "'"


class DuckDBEngine:
    """DuckDB engine bound to one database.

    Example:
        engine = DuckDBEngine(":memory:")
        engine.ensure_schema("silver")
        df = engine.query("SELECT * FROM silver.dim_movies LIMIT 10")

        # Bound to a workspace database
        engine = DuckDBEngine.for_workspace(workspace)
    """

    def __init__(
        self,
        database: str | Path = ":memory:",
        resources: "ResourceConfig | None" = None,
    ):
        self.database = str(database)

        # Load resources config
        if resources is None:
            from cinelake.resources.config import get_resource_config
            resources = get_resource_config()
        self.resources = resources

        # Create connection lazily
        self._conn: duckdb.DuckDBPyConnection | None = None

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        """Get or create the DuckDB connection."""
        if self._conn is None:
            self._conn = self._create_connection()
        return self._conn

    def _create_connection(self) -> duckdb.DuckDBPyConnection:
        """Create a new DuckDB connection with resource limits applied."""
        if self.database != ":memory:":
            Path(self.database).parent.mkdir(parents=True, exist_ok=True)

        conn = duckdb.connect(self.database)

        # Apply resource limits
        for key, value in self.resources.to_duckdb_settings().items():
            conn.execute(f"SET {key} = {value}")

        return conn

    @classmethod
    def for_workspace(cls, workspace: "Workspace") -> "DuckDBEngine":
        """Create engine configured for a specific workspace."""
        return cls(
            database=workspace.database_path,
            resources=workspace.resources,
        )

    def query(self, sql: str, params: list | None = None) -> pd.DataFrame:
        """Execute a SQL query and return results as DataFrame.

        Example:
            df = engine.query("SELECT movie_id, title FROM silver.dim_movies")
        """
        return self.conn.execute(sql, params or []).df()

    def query_arrow(self, sql: str) -> pa.Table:
        """Execute a SQL query and return results as Arrow Table.

        More memory-efficient than DataFrame for large results.
        """
        result = self.conn.execute(sql).arrow()
        # Newer DuckDB releases hand back a RecordBatchReader
        if isinstance(result, pa.RecordBatchReader):
            return result.read_all()
        return result

    def execute(self, sql: str, params: list | None = None) -> None:
        """Execute a SQL statement without returning results."""
        self.conn.execute(sql, params or [])

    def scalar(self, sql: str, params: list | None = None) -> Any:
        """Execute a query and return the first column of the first row."""
        row = self.conn.execute(sql, params or []).fetchone()
        return row[0] if row else None

    def ensure_schema(self, schema: str) -> None:
        """Create a schema if it does not exist."""
        self.execute(f"CREATE SCHEMA IF NOT EXISTS {schema}")

    def relation_type(self, schema: str, name: str) -> str | None:
        """Return 'table', 'view' or None when the relation does not exist."""
        kind = self.scalar(
            """
            SELECT table_type
            FROM information_schema.tables
            WHERE table_schema = ? AND table_name = ?
            """,
            [schema, name],
        )
        if kind is None:
            return None
        return "view" if kind.upper() == "VIEW" else "table"

    def relation_exists(self, schema: str, name: str) -> bool:
        """Check whether a table or view exists."""
        return self.relation_type(schema, name) is not None

    def get_columns(self, schema: str, name: str) -> list[tuple[str, str]]:
        """Return (column_name, data_type) pairs in ordinal order."""
        rows = self.conn.execute(
            """
            SELECT column_name, data_type
            FROM information_schema.columns
            WHERE table_schema = ? AND table_name = ?
            ORDER BY ordinal_position
            """,
            [schema, name],
        ).fetchall()
        return [(row[0], row[1]) for row in rows]

    def describe(self, relation: str) -> list[tuple[str, str]]:
        """Return (column_name, column_type) pairs of any relation, temp tables included."""
        rows = self.conn.execute(f"DESCRIBE {relation}").fetchall()
        return [(row[0], row[1]) for row in rows]

    def drop_relation(self, schema: str, name: str) -> None:
        """Drop a table or view, whichever exists."""
        kind = self.relation_type(schema, name)
        if kind == "view":
            self.execute(f"DROP VIEW {schema}.{name}")
        elif kind == "table":
            self.execute(f"DROP TABLE {schema}.{name}")

    def register_file_view(self, schema: str, name: str, path: str | Path) -> None:
        """Expose a CSV/Parquet/JSON file as a view.

        Args:
            schema: Schema for the view (created if missing)
            name: View name
            path: File path or glob; the reader is picked from the suffix
        """
        suffix = Path(str(path)).suffix.lower()
        reader = FILE_READERS.get(suffix)
        if reader is None:
            raise ValueError(f"Unsupported source file type: {path}")

        self.ensure_schema(schema)
        args = quote_literal(str(path))
        if suffix in (".csv", ".tsv"):
            args += ", header = true"
        self.execute(
            f"CREATE OR REPLACE VIEW {schema}.{name} AS SELECT * FROM {reader}({args})"
        )

    @contextmanager
    def transaction(self):
        """Context manager for transactional operations."""
        self.execute("BEGIN TRANSACTION")
        try:
            yield self
            self.execute("COMMIT")
        except Exception:
            self.execute("ROLLBACK")
            raise

    def close(self) -> None:
        """Close the connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "DuckDBEngine":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"DuckDBEngine(database={self.database!r})"
