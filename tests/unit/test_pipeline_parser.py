"""🧪 Tests for SQL Pipeline Parser."""

from datetime import datetime
from pathlib import Path

import pytest

from cinelake.pipeline.loader import LoadedPipeline
from cinelake.pipeline.parser import ParsedPipeline, SQLParser, split_list, surrogate_key


def _model(parser: SQLParser, name: str, sql: str, schema: str = "silver") -> LoadedPipeline:
    """A loaded model built from an inline template."""
    return LoadedPipeline(
        name=name,
        path=Path(f"{name}.sql"),
        layer=schema,
        schema=schema,
        parsed=parser.parse_string(sql, name=name),
        default_materialized="table",
    )


class TestSQLParser:
    """Tests for SQLParser class."""

    @pytest.fixture
    def parser(self):
        return SQLParser()

    def test_parse_simple_sql(self, parser):
        """Test parsing simple SQL without metadata."""
        sql = "SELECT * FROM users"
        result = parser.parse_string(sql)

        assert isinstance(result, ParsedPipeline)
        assert result.raw_sql == sql
        assert result.name == "inline"  # default name
        assert result.materialized is None  # layer default decides
        assert result.dependencies == []

    def test_parse_with_metadata(self, parser, sample_sql_pipeline):
        """Test parsing SQL with metadata comments."""
        result = parser.parse_string(sample_sql_pipeline)

        assert result.name == "fct_ratings"
        assert result.materialized == "incremental"
        assert result.unique_key == ["user_id", "movie_id"]
        assert result.on_schema_change == "append_new_columns"
        assert result.owner == "analytics"
        assert result.is_incremental is True

    def test_unknown_header_keys_are_kept(self, parser):
        """Snapshot settings travel in the generic metadata dict."""
        sql = """
-- @strategy: timestamp
-- @updated_at: tag_timestamp
SELECT 1
"""
        result = parser.parse_string(sql)

        assert result.metadata == {"strategy": "timestamp", "updated_at": "tag_timestamp"}

    def test_name_defaults_to_file_stem(self, parser):
        result = parser.parse_string("SELECT 1", name="pipelines/silver/dim_users.sql")
        assert result.name == "dim_users"

    def test_parse_extracts_refs(self, parser):
        """Test that {{ ref() }} calls are extracted in order, once each."""
        sql = """
SELECT *
FROM {{ ref('fct_ratings') }} r
JOIN {{ ref("dim_movies") }} m ON m.movie_id = r.movie_id
JOIN {{ ref('fct_ratings') }} r2 ON r2.user_id = r.user_id
"""
        result = parser.parse_string(sql)

        assert result.dependencies == ["fct_ratings", "dim_movies"]

    def test_parse_extracts_sources(self, parser):
        sql = "SELECT * FROM {{ source('raw', 'ratings') }} JOIN {{ source('raw', 'movies') }}"
        result = parser.parse_string(sql)

        assert result.sources == [("raw", "ratings"), ("raw", "movies")]

    def test_is_incremental_detection(self, parser):
        """Test detection of incremental pipelines."""
        incremental_sql = """
-- @materialized: incremental
SELECT * FROM source
{% if is_incremental() %}
  WHERE updated_at > '{{ watermark("updated_at") }}'
{% endif %}
"""
        result = parser.parse_string(incremental_sql)
        assert result.is_incremental is True

        result = parser.parse_string("SELECT * FROM source")
        assert result.is_incremental is False

    def test_compile_resolves_refs_without_workspace(self, parser):
        """Outside a workspace, bare names land in bronze."""
        compiled = parser.compile(parser.parse_string("SELECT * FROM {{ ref('src_movies') }}"))
        assert compiled == "SELECT * FROM bronze.src_movies"

        compiled = parser.compile(parser.parse_string("SELECT * FROM {{ ref('silver.dim_movies') }}"))
        assert compiled == "SELECT * FROM silver.dim_movies"

    def test_compile_resolves_source(self, parser):
        compiled = parser.compile(parser.parse_string("SELECT * FROM {{ source('raw', 'tags') }}"))
        assert compiled == "SELECT * FROM raw.tags"

    def test_compile_incremental_block(self, parser, sample_sql_pipeline):
        """Test is_incremental() and watermark() rendering."""
        parsed = parser.parse_string(sample_sql_pipeline)

        full = parser.compile(parsed, is_incremental=False)
        assert "rating_timestamp >" not in full

        incremental = parser.compile(
            parsed,
            is_incremental=True,
            watermarks={"rating_timestamp": datetime(2017, 5, 3, 21, 23, 20)},
        )
        assert "rating_timestamp > '2017-05-03 21:23:20'" in incremental

    def test_watermark_defaults_to_epoch(self, parser):
        parsed = parser.parse_string("SELECT '{{ watermark('ts') }}' AS w")
        assert parser.compile(parsed, is_incremental=True) == "SELECT '1970-01-01 00:00:00' AS w"

    def test_compile_strips_metadata_and_semicolon(self, parser):
        sql = """
-- @materialized: table
-- @owner: analytics

SELECT 1 AS one;
"""
        assert parser.compile(parser.parse_string(sql)) == "SELECT 1 AS one"

    def test_run_started_at(self, parser):
        parsed = parser.parse_string("SELECT TIMESTAMP '{{ run_started_at }}'")
        compiled = parser.compile(parsed, run_started_at=datetime(2024, 1, 1, 6, 0))
        assert compiled == "SELECT TIMESTAMP '2024-01-01 06:00:00'"

    def test_var_with_default(self):
        parser = SQLParser(vars={"min_ratings": 10})
        parsed = parser.parse_string(
            "SELECT {{ var('min_ratings') }}, {{ var('min_tag_relevance', 0.5) }}"
        )
        assert parser.compile(parsed) == "SELECT 10, 0.5"

    def test_missing_var_raises(self, parser):
        parsed = parser.parse_string("SELECT {{ var('min_ratings') }}")
        with pytest.raises(ValueError, match="Required variable 'min_ratings'"):
            parser.compile(parsed)

    def test_env_var(self, parser, monkeypatch):
        monkeypatch.setenv("CINELAKE_REGION", "eu")
        parsed = parser.parse_string("SELECT '{{ env_var('CINELAKE_REGION') }}', '{{ env_var('NOPE_X', 'us') }}'")
        assert parser.compile(parsed) == "SELECT 'eu', 'us'"

    def test_missing_env_var_raises(self, parser, monkeypatch):
        monkeypatch.delenv("CINELAKE_NOT_SET", raising=False)
        parsed = parser.parse_string("SELECT '{{ env_var('CINELAKE_NOT_SET') }}'")
        with pytest.raises(ValueError, match="CINELAKE_NOT_SET"):
            parser.compile(parsed)

    def test_template_syntax_error(self, parser):
        parsed = parser.parse_string("SELECT * FROM {{ ref('broken' }}", name="broken")
        with pytest.raises(ValueError, match="Template error in broken"):
            parser.compile(parsed)


class TestPipelineContext:
    """ref() and {{ this }} against known pipelines."""

    @pytest.fixture
    def parser(self):
        parser = SQLParser()
        nodes = [
            _model(parser, "src_movies", "SELECT 1 AS movie_id", schema="bronze"),
            _model(parser, "dim_movies", "SELECT * FROM {{ ref('src_movies') }}"),
            _model(
                parser,
                "movies_enriched",
                "-- @materialized: ephemeral\nSELECT * FROM {{ ref('dim_movies') }}",
            ),
        ]
        parser.pipelines = {node.name: node for node in nodes}
        return parser

    def test_ref_uses_pipeline_relation(self, parser):
        compiled = parser.render_string("SELECT * FROM {{ ref('dim_movies') }}")
        assert compiled == "SELECT * FROM silver.dim_movies"

    def test_this_points_at_named_pipeline(self, parser):
        compiled = parser.render_string("SELECT COUNT(*) FROM {{ this }}", name="dim_movies")
        assert compiled == "SELECT COUNT(*) FROM silver.dim_movies"

    def test_unknown_ref_raises(self, parser):
        with pytest.raises(ValueError, match="Unknown ref: 'dim_nothing' in mart_broken"):
            parser.render_string("SELECT * FROM {{ ref('dim_nothing') }}", name="mart_broken")

    def test_ephemeral_inlined_as_cte(self, parser):
        compiled = parser.render_string(
            "SELECT movie_id FROM {{ ref('movies_enriched') }} JOIN {{ ref('movies_enriched') }} USING (movie_id)"
        )

        assert compiled.startswith("WITH __cte__movies_enriched AS (\nSELECT * FROM silver.dim_movies\n)")
        assert compiled.count("__cte__movies_enriched AS") == 1
        assert "FROM __cte__movies_enriched JOIN __cte__movies_enriched" in compiled

    def test_circular_ephemeral_raises(self, parser):
        a = _model(parser, "eph_a", "-- @materialized: ephemeral\nSELECT * FROM {{ ref('eph_b') }}")
        b = _model(parser, "eph_b", "-- @materialized: ephemeral\nSELECT * FROM {{ ref('eph_a') }}")
        parser.pipelines.update({a.name: a, b.name: b})

        with pytest.raises(ValueError, match="Circular ephemeral reference"):
            parser.render_string("SELECT * FROM {{ ref('eph_a') }}")


class TestMacros:
    """Workspace macros are available to every template."""

    def test_macro_is_callable(self, test_workspace):
        (test_workspace.path / "macros" / "timestamps.sql").write_text(
            "{% macro epoch_to_timestamp(column) -%}\n"
            "epoch_ms(CAST({{ column }} AS BIGINT) * 1000)\n"
            "{%- endmacro %}\n"
        )
        parser = SQLParser(test_workspace)

        compiled = parser.render_string("SELECT {{ epoch_to_timestamp('ts') }} AS rated_at")
        assert compiled == "SELECT epoch_ms(CAST(ts AS BIGINT) * 1000) AS rated_at"

    def test_workspace_vars(self, test_workspace):
        test_workspace.config.vars = {"min_ratings": 3}
        parser = SQLParser(test_workspace, vars={"min_tag_relevance": 0.9})

        compiled = parser.render_string("{{ var('min_ratings') }} {{ var('min_tag_relevance') }}")
        assert compiled == "3 0.9"

    def test_undeclared_source_raises(self, test_workspace):
        parser = SQLParser(test_workspace)
        with pytest.raises(ValueError, match="Unknown source: raw.ratings"):
            parser.render_string("SELECT * FROM {{ source('raw', 'ratings') }}")


class TestHelpers:
    def test_split_list(self):
        assert split_list("user_id, movie_id ,") == ["user_id", "movie_id"]
        assert split_list(None) == []
        assert split_list(["a"]) == ["a"]

    def test_surrogate_key(self):
        assert surrogate_key(["user_id", "movie_id"]) == (
            "md5(concat_ws('-', coalesce(CAST(user_id AS VARCHAR), '_null_'), "
            "coalesce(CAST(movie_id AS VARCHAR), '_null_')))"
        )
        assert surrogate_key("tag_id") == "md5(concat_ws('-', coalesce(CAST(tag_id AS VARCHAR), '_null_')))"
