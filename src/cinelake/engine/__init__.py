"""🦆 Query Engine - DuckDB as the embedded warehouse.

DuckDB is used for all data processing:
- Embedded (no separate service)
- Transactional DDL for safe rebuilds
- Native CSV/Parquet readers for raw extracts
"""

from .duckdb import DuckDBEngine

__all__ = [
    "DuckDBEngine",
]
