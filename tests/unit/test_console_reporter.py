"""🧪 Tests for the console reporter."""

import io

import pandas as pd
import pytest
from rich.console import Console

from cinelake.testing import models
from cinelake.testing.reporters.console import ConsoleReporter

NOT_BUILT = (
    "No data available - run the pipeline first "
    "(Catalog Error: Table with name fct_ratings does not exist!)"
)


def _output(name, status, severity=models.TestSeverity.ERROR, **kwargs):
    return models.TestOutput(
        name=name,
        description="",
        test_type="generic",
        status=status,
        severity=severity,
        **kwargs,
    )


def _render(suites, verbose=False):
    buffer = io.StringIO()
    reporter = ConsoleReporter(console=Console(file=buffer, width=300), verbose=verbose)
    for suite in suites:
        reporter.report_pipeline(suite)
    reporter.report_summary(suites)
    return buffer.getvalue()


@pytest.fixture
def mart_suite():
    suite = models.TestSuiteResult(
        pipeline="mart_movie_ratings",
        workspace="movielens",
        layer="gold",
        relation="gold.mart_movie_ratings",
    )
    suite.add_result(_output("unique_mart_movie_ratings_movie_id", models.TestStatus.PASSED))
    suite.add_result(
        _output(
            "not_null_mart_movie_ratings_top_tag",
            models.TestStatus.FAILED,
            severity=models.TestSeverity.WARN,
            row_count=2,
            columns_checked=["top_tag"],
            data=pd.DataFrame({"movie_id": [3, 4], "top_tag": [None, None]}),
            message="2 rows with NULL top_tag",
        )
    )
    return suite


@pytest.fixture
def unbuilt_suite():
    suite = models.TestSuiteResult(
        pipeline="fct_ratings",
        workspace="movielens",
        layer="silver",
        relation="silver.fct_ratings",
    )
    for name in ("not_null_fct_ratings_user_id", "unique_fct_ratings_rating_id"):
        suite.add_result(_output(name, models.TestStatus.SKIPPED, message=NOT_BUILT))
    return suite


class TestSuiteBlock:
    def test_header_names_relation(self, mart_suite):
        out = _render([mart_suite])
        assert "📦 gold/mart_movie_ratings → gold.mart_movie_ratings" in out
        assert "1 passed · 1 warned" in out

    def test_passing_tests_hidden_unless_verbose(self, mart_suite):
        assert "unique_mart_movie_ratings_movie_id" not in _render([mart_suite])
        assert "unique_mart_movie_ratings_movie_id" in _render([mart_suite], verbose=True)

    def test_warned_test_shows_rows(self, mart_suite):
        out = _render([mart_suite])
        assert "not_null_mart_movie_ratings_top_tag [generic] top_tag 2 rows" in out
        assert "2 rows with NULL top_tag" in out

    def test_unbuilt_node_collapses_to_one_skip_reason(self, unbuilt_suite):
        out = _render([unbuilt_suite])
        assert out.count("No data available - run the pipeline first") == 1
        assert "not_null_fct_ratings_user_id" not in out
        assert "Catalog Error" not in out

    def test_verbose_skip_reason_keeps_engine_error(self, unbuilt_suite):
        out = _render([unbuilt_suite], verbose=True)
        assert "Catalog Error: Table with name fct_ratings does not exist!" in out

    def test_ephemeral_skip_among_results(self):
        suite = models.TestSuiteResult(
            pipeline="dim_movies_with_tags", workspace="movielens", layer="silver"
        )
        suite.add_result(_output("unique_dim_movies_with_tags_movie_id", models.TestStatus.PASSED))
        suite.add_result(
            _output(
                "not_null_dim_movies_with_tags_tag",
                models.TestStatus.SKIPPED,
                message="Ephemeral models are not built - nothing to test",
            )
        )

        out = _render([suite])
        assert "📦 silver/dim_movies_with_tags   1 passed · 1 skipped" in out
        assert "→ Ephemeral models are not built - nothing to test" in out


class TestSummary:
    def test_warnings_on_their_own_line(self, mart_suite, unbuilt_suite):
        out = _render([mart_suite, unbuilt_suite])
        assert "4 tests: 1 passed · 0 failed · 0 errored" in out
        assert (
            "⚠️ 1 warning(s), not failing the run: not_null_mart_movie_ratings_top_tag (2 rows)"
            in out
        )
        assert "All error-severity tests passed" in out

    def test_error_failures_fail_the_verdict(self):
        suite = models.TestSuiteResult(pipeline="dim_users", workspace="movielens", layer="silver")
        suite.add_result(_output("unique_dim_users_user_id", models.TestStatus.FAILED, row_count=1))

        out = _render([suite])
        assert "1 test(s) failed" in out
        assert "warning(s)" not in out


class TestFailFast:
    def test_warnings_never_stop_the_run(self):
        reporter = ConsoleReporter(console=Console(file=io.StringIO()), fail_fast=True)
        warned = _output("w", models.TestStatus.FAILED, severity=models.TestSeverity.WARN)
        failed = _output("f", models.TestStatus.FAILED)

        assert not reporter.should_stop(warned)
        assert reporter.should_stop(failed)
