"""🧪 Pytest configuration and shared fixtures."""

import shutil
from pathlib import Path

import pytest


@pytest.fixture(scope="session")
def project_root():
    """Get project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def workspaces_dir(project_root):
    """Get workspaces directory."""
    return project_root / "workspaces"


@pytest.fixture
def test_workspace(tmp_path):
    """Create an empty temporary workspace."""
    from cinelake.workspace.manager import Workspace

    workspace = Workspace.create(
        name="test",
        base_dir=tmp_path,
        description="Test workspace",
    )
    yield workspace
    workspace.close()


@pytest.fixture
def movielens(tmp_path, workspaces_dir):
    """A private copy of the movielens workspace, database included."""
    from cinelake.workspace.manager import Workspace

    path = tmp_path / "movielens"
    shutil.copytree(
        workspaces_dir / "movielens",
        path,
        ignore=shutil.ignore_patterns("*.duckdb", "*.duckdb.wal", "target"),
    )
    workspace = Workspace.load(path)
    yield workspace
    workspace.close()


@pytest.fixture
def engine():
    """In-memory DuckDB engine."""
    from cinelake.engine.duckdb import DuckDBEngine
    from cinelake.resources.config import ResourceConfig

    engine = DuckDBEngine(":memory:", resources=ResourceConfig.from_profile("tiny"))
    yield engine
    engine.close()


@pytest.fixture
def sample_sql_pipeline():
    """Sample SQL pipeline content."""
    return """
-- @name: fct_ratings
-- @materialized: incremental
-- @unique_key: user_id, movie_id
-- @on_schema_change: append_new_columns
-- @owner: analytics

SELECT
    user_id,
    movie_id,
    rating,
    rating_timestamp
FROM {{ ref('src_ratings') }}
WHERE rating IS NOT NULL
{% if is_incremental() %}
  AND rating_timestamp > '{{ watermark("rating_timestamp") }}'
{% endif %}
"""


@pytest.fixture
def sample_yaml_config():
    """Sample YAML pipeline config."""
    return """
description: |
  One row per rating event.

owner: analytics@cinelake.dev

columns:
  - name: user_id
    type: BIGINT
    description: MovieLens user identifier
    tests: [not_null]

  - name: rating
    type: DOUBLE
    description: Star rating
    tests:
      - not_null
      - accepted_values:
          values: [0.5, 1.0, 1.5, 2.0, 2.5, 3.0, 3.5, 4.0, 4.5, 5.0]
          quote: false

tests:
  - name: no_future_ratings
    sql: |
      SELECT COUNT(*)
      FROM {{ this }}
      WHERE rating_timestamp > now()
    expect: 0
"""


# Environment setup for tests
@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Keep CINELAKE_* settings from the shell out of the tests."""
    from cinelake.resources.config import get_settings

    for name in ("WORKSPACE", "DATABASE", "PROFILE", "TARGET_DIR"):
        monkeypatch.delenv(f"CINELAKE_{name}", raising=False)
    monkeypatch.setenv("CINELAKE_PROFILE", "tiny")

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
