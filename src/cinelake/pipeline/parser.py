"""📝 SQL Template Parser - dbt-like Jinja templating for SQL.

Supports:
- {{ ref('dim_movies') }} - Reference another pipeline, seed or snapshot
- {{ source('raw', 'ratings') }} - Reference a declared raw table
- {% if is_incremental() %} - Conditional incremental logic
- {{ watermark('column') }} - Highest value already stored in the target
- {{ this }} - Reference the target relation
- {{ var('name', default) }} - Workspace variables
- {{ columns(relation) }} - Column names of an existing relation
- {{ surrogate_key(['a', 'b']) }} - Hashed key expression
- {{ run_started_at }} - Current run timestamp
- Macros defined in macros/*.sql
"""

from __future__ import annotations

import os
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from jinja2 import BaseLoader, Environment, TemplateError, Undefined

if TYPE_CHECKING:
    from cinelake.workspace.manager import Workspace

    from .loader import LoadedPipeline


EPHEMERAL_PREFIX = "__cte__"


@dataclass
class ParsedPipeline:
    """Result of parsing a SQL pipeline file."""

    # Metadata from SQL comments
    name: str
    materialized: str | None = None  # view, table, incremental, ephemeral
    unique_key: list[str] = field(default_factory=list)
    schema: str | None = None
    owner: str | None = None
    on_schema_change: str | None = None
    tags: list[str] = field(default_factory=list)

    # Any other header keys (snapshot strategy, check_cols, ...)
    metadata: dict[str, str] = field(default_factory=dict)

    # Parsed content
    raw_sql: str = ""
    dependencies: list[str] = field(default_factory=list)
    sources: list[tuple[str, str]] = field(default_factory=list)

    # Computed
    is_incremental: bool = False

    def __post_init__(self):
        self.is_incremental = self.materialized == "incremental"


def split_list(value: str | list[str] | None) -> list[str]:
    """Split a comma-separated header value into a list."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [item.strip() for item in value.split(",") if item.strip()]


class SQLParser:
    """Parse SQL pipeline files with dbt-like templating.

    Example:
        parser = SQLParser(workspace, pipelines={p.name: p for p in nodes})
        parsed = parser.parse_file("pipelines/silver/fct_ratings.sql")
        sql = parser.compile(parsed, is_incremental=True)
    """

    # Regex for metadata comments like -- @materialized: incremental
    METADATA_PATTERN = re.compile(r"^--\s*@(\w+):\s*(.+)$", re.MULTILINE)

    # ref('name') / source('source', 'table') anywhere in the template
    REF_PATTERN = re.compile(r"\bref\(\s*['\"]([^'\"]+)['\"]\s*\)")
    SOURCE_PATTERN = re.compile(
        r"\bsource\(\s*['\"]([^'\"]+)['\"]\s*,\s*['\"]([^'\"]+)['\"]\s*\)"
    )

    def __init__(
        self,
        workspace: Workspace | None = None,
        pipelines: dict[str, LoadedPipeline] | None = None,
        vars: dict[str, Any] | None = None,
    ):
        self.workspace = workspace
        self.pipelines = pipelines or {}
        self.vars = vars or {}
        self._env = self._create_jinja_env()
        self._macros = self._load_macros()

    def _create_jinja_env(self) -> Environment:
        """Create Jinja2 environment with custom functions."""
        env = Environment(
            loader=BaseLoader(),
            # Use {% %} for blocks, {{ }} for expressions
            block_start_string="{%",
            block_end_string="%}",
            variable_start_string="{{",
            variable_end_string="}}",
            comment_start_string="{#",
            comment_end_string="#}",
            # Don't auto-escape SQL
            autoescape=False,
            undefined=Undefined,
        )
        return env

    def _load_macros(self) -> str:
        """Read every macros/*.sql file of the workspace."""
        if self.workspace is None:
            return ""
        macros_dir = self.workspace.path / "macros"
        if not macros_dir.exists():
            return ""
        return "\n".join(path.read_text() for path in sorted(macros_dir.glob("*.sql")))

    def parse_file(self, path: str) -> ParsedPipeline:
        """Parse a SQL pipeline file.

        Args:
            path: Path to the SQL file

        Returns:
            ParsedPipeline with metadata and dependencies
        """
        with open(path) as f:
            content = f.read()

        return self.parse_string(content, name=str(path))

    def parse_string(self, sql: str, name: str = "inline") -> ParsedPipeline:
        """Parse a SQL string.

        Args:
            sql: SQL content with templates
            name: Pipeline name (default: filename or 'inline')

        Returns:
            ParsedPipeline with metadata and dependencies
        """
        metadata = self._extract_metadata(sql)

        # Get pipeline name from metadata or filename
        pipeline_name = metadata.pop(
            "name", name.replace(".sql", "").replace("\\", "/").split("/")[-1]
        )

        return ParsedPipeline(
            name=pipeline_name,
            materialized=metadata.pop("materialized", None),
            unique_key=split_list(metadata.pop("unique_key", None)),
            schema=metadata.pop("schema", None),
            owner=metadata.pop("owner", None),
            on_schema_change=metadata.pop("on_schema_change", None),
            tags=split_list(metadata.pop("tags", None)),
            metadata=metadata,
            raw_sql=sql,
            dependencies=self._extract_dependencies(sql),
            sources=self._extract_sources(sql),
        )

    def _extract_metadata(self, sql: str) -> dict[str, str]:
        """Extract metadata from SQL comment headers."""
        metadata = {}
        for match in self.METADATA_PATTERN.finditer(sql):
            key = match.group(1).lower()
            value = match.group(2).strip()
            metadata[key] = value
        return metadata

    def _extract_dependencies(self, sql: str) -> list[str]:
        """Extract referenced names from ref('name') calls, in order of appearance."""
        return list(dict.fromkeys(self.REF_PATTERN.findall(sql)))

    def _extract_sources(self, sql: str) -> list[tuple[str, str]]:
        """Extract (source, table) pairs from source() calls."""
        return list(dict.fromkeys(self.SOURCE_PATTERN.findall(sql)))

    def compile(
        self,
        parsed: ParsedPipeline,
        is_incremental: bool = False,
        watermarks: dict[str, Any] | None = None,
        run_started_at: datetime | None = None,
    ) -> str:
        """Compile a parsed pipeline to executable SQL.

        Args:
            parsed: ParsedPipeline from parse_file/parse_string
            is_incremental: Whether this is an incremental run
            watermarks: Dict of column -> highest stored value
            run_started_at: Timestamp of run start

        Returns:
            Executable SQL string, with ephemeral dependencies inlined as CTEs
        """
        if run_started_at is None:
            run_started_at = datetime.now(timezone.utc).replace(tzinfo=None)

        ctes: dict[str, str] = {}
        sql = self._render(
            parsed,
            ctes=ctes,
            is_incremental=is_incremental,
            watermarks=watermarks or {},
            run_started_at=run_started_at,
            stack=[parsed.name],
        )

        if not ctes:
            return sql

        cte_sql = ",\n".join(
            f"{EPHEMERAL_PREFIX}{name} AS (\n{body}\n)" for name, body in ctes.items()
        )
        return f"WITH {cte_sql}\nSELECT * FROM (\n{sql}\n)"

    def render_string(
        self,
        sql: str,
        name: str = "inline",
        run_started_at: datetime | None = None,
    ) -> str:
        """Parse and compile a template string in one step.

        With name set to a pipeline's name, {{ this }} points at that pipeline.
        """
        return self.compile(self.parse_string(sql, name=name), run_started_at=run_started_at)

    def _render(
        self,
        parsed: ParsedPipeline,
        ctes: dict[str, str],
        is_incremental: bool,
        watermarks: dict[str, Any],
        run_started_at: datetime,
        stack: list[str],
    ) -> str:
        """Render one template, collecting ephemeral dependencies into ctes."""
        context = {
            "ref": self._make_ref_function(parsed.name, ctes, run_started_at, stack),
            "source": self._make_source_function(parsed.name),
            "is_incremental": lambda: is_incremental,
            "watermark": self._make_watermark_function(watermarks),
            "this": self._resolve_this(parsed.name),
            "var": self._make_var_function(),
            "env_var": self._env_var,
            "columns": self._make_columns_function(),
            "surrogate_key": surrogate_key,
            "run_started_at": run_started_at.isoformat(sep=" "),
        }

        try:
            template = self._env.from_string(self._macros + "\n" + parsed.raw_sql)
            sql = template.render(**context)
        except TemplateError as e:
            raise ValueError(f"Template error in {parsed.name}: {e}") from e

        # Clean up SQL (remove metadata comments, extra whitespace)
        return self._clean_sql(sql)

    def _make_ref_function(
        self,
        owner: str,
        ctes: dict[str, str],
        run_started_at: datetime,
        stack: list[str],
    ) -> Callable[[str], str]:
        """Create the ref() function for templates."""

        def ref(name: str) -> str:
            """Reference another pipeline, seed or snapshot by name."""
            pipeline = self.pipelines.get(name.split(".")[-1])
            if pipeline is None:
                return self._resolve_table(name, owner)

            if pipeline.materialized != "ephemeral":
                return pipeline.relation

            if pipeline.name in stack:
                raise ValueError(
                    f"Circular ephemeral reference: {' -> '.join(stack + [pipeline.name])}"
                )
            if pipeline.name not in ctes:
                body = self._render(
                    pipeline.parsed,
                    ctes=ctes,
                    is_incremental=False,
                    watermarks={},
                    run_started_at=run_started_at,
                    stack=stack + [pipeline.name],
                )
                ctes[pipeline.name] = body
            return f"{EPHEMERAL_PREFIX}{pipeline.name}"

        return ref

    def _make_source_function(self, owner: str) -> Callable[[str, str], str]:
        """Create the source() function for templates."""

        def source(source_name: str, table_name: str) -> str:
            """Reference a raw table declared in workspace.yaml."""
            if self.workspace is not None:
                declared = self.workspace.config.get_source(source_name)
                if declared is None or declared.get_table(table_name) is None:
                    raise ValueError(
                        f"Unknown source: {source_name}.{table_name} in {owner}"
                    )
            return f"{source_name}.{table_name}"

        return source

    def _make_watermark_function(
        self, watermarks: dict[str, Any]
    ) -> Callable[[str], str]:
        """Create the watermark() function for templates."""

        def watermark(column: str) -> str:
            """Get the highest value of a column already stored in the target.

            Used in incremental pipelines to filter for new data.
            """
            value = watermarks.get(column)
            if value is None:
                # Default to epoch for first run
                return "1970-01-01 00:00:00"
            if isinstance(value, datetime):
                return value.isoformat(sep=" ")
            return str(value)

        return watermark

    def _make_var_function(self) -> Callable[..., Any]:
        """Create the var() function for templates."""
        workspace_vars = dict(self.workspace.config.vars) if self.workspace else {}
        workspace_vars.update(self.vars)
        missing = object()

        def var(name: str, default: Any = missing) -> Any:
            if name in workspace_vars:
                return workspace_vars[name]
            if default is missing:
                raise ValueError(f"Required variable '{name}' is not defined")
            return default

        return var

    @staticmethod
    def _env_var(name: str, default: str | None = None) -> str:
        value = os.getenv(name, default)
        if value is None:
            raise ValueError(f"Environment variable '{name}' is not set")
        return value

    def _make_columns_function(self) -> Callable[[str], list[str]]:
        """Create the columns() function for templates."""

        def columns(relation: str) -> list[str]:
            """List the columns of an existing relation ('schema.name')."""
            if self.workspace is None:
                raise ValueError("columns() needs a workspace to inspect relations")
            if "." not in relation:
                raise ValueError(f"columns() expects 'schema.name', got '{relation}'")
            schema, name = relation.split(".", 1)
            found = self.workspace.get_engine().get_columns(schema, name)
            if not found:
                raise ValueError(f"Relation {relation} does not exist")
            return [column for column, _ in found]

        return columns

    def _resolve_this(self, name: str) -> str:
        """Resolve the relation a pipeline writes to."""
        pipeline = self.pipelines.get(name)
        if pipeline is not None:
            return pipeline.relation
        return self._default_relation(name)

    def _resolve_table(self, table: str, owner: str) -> str:
        """Resolve a name that is not a known pipeline.

        'layer.name' is used as-is; a bare name defaults to the bronze layer.
        Inside a workspace an unknown name is an error.
        """
        if self.pipelines:
            raise ValueError(f"Unknown ref: '{table}' in {owner}")
        return self._default_relation(table)

    def _default_relation(self, table: str) -> str:
        if "." in table:
            return table

        schema = self.workspace.layer_schema("bronze") if self.workspace else "bronze"
        return f"{schema}.{table}"

    def _clean_sql(self, sql: str) -> str:
        """Clean up compiled SQL."""
        # Remove metadata comments
        sql = self.METADATA_PATTERN.sub("", sql)

        # Remove empty lines at start
        lines = sql.split("\n")
        while lines and not lines[0].strip():
            lines.pop(0)

        # Remove excessive blank lines
        cleaned = []
        prev_blank = False
        for line in lines:
            is_blank = not line.strip()
            if is_blank and prev_blank:
                continue
            cleaned.append(line.rstrip())
            prev_blank = is_blank

        # Trailing semicolons break CTE wrapping and CREATE ... AS
        return "\n".join(cleaned).strip().rstrip(";").strip()


def surrogate_key(columns: list[str] | str) -> str:
    """Build an md5 key expression over one or more columns.

    NULLs hash to a fixed placeholder so they still produce a key.
    """
    if isinstance(columns, str):
        columns = [columns]
    parts = ", ".join(
        f"coalesce(CAST({column} AS VARCHAR), '_null_')" for column in columns
    )
    return f"md5(concat_ws('-', {parts}))"
