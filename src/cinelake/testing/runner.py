"""Main test runner that orchestrates test execution."""

import time
from typing import TYPE_CHECKING, Any

from cinelake.pipeline.loader import discover_pipelines, select_pipelines
from cinelake.pipeline.parser import SQLParser

from .discovery import SINGULAR_LAYER, discover_tests, referenced_names
from .executors.generic import GenericTestExecutor
from .executors.quality import QualityTestExecutor
from .models import DiscoveredTest, TestSuiteResult
from .reporters.console import ConsoleReporter

if TYPE_CHECKING:
    from cinelake.workspace.manager import Workspace


class TestRunner:
    """Orchestrate test execution for a workspace.

    Example:
        runner = TestRunner(Workspace.load("movielens"))
        results = runner.run_all()

        # Or filtered
        results = runner.run_all(select=["fct_ratings"], test_types=["generic"])
    """

    def __init__(
        self,
        workspace: "Workspace",
        reporter: Any = None,
        vars: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the test runner.

        Args:
            workspace: Workspace to test
            reporter: Reporter for output (default: ConsoleReporter)
            vars: Variables overriding workspace vars in test templates
        """
        self.workspace = workspace
        self.reporter = reporter or ConsoleReporter()

        self.engine = workspace.get_engine()
        self.pipelines = discover_pipelines(workspace)
        self.by_name = {p.name: p for p in self.pipelines}
        self.parser = SQLParser(workspace, pipelines=self.by_name, vars=vars)

        self.generic_executor = GenericTestExecutor(self.engine, self.parser, self.by_name)
        self.quality_executor = QualityTestExecutor(self.engine, self.parser, self.by_name)

    def collect(
        self,
        select: list[str] | None = None,
        test_types: list[str] | None = None,
    ) -> list[DiscoveredTest]:
        """Tests for the selected pipelines.

        Singular tests are kept when they ref at least one selected node.
        """
        selected = select_pipelines(self.pipelines, select)
        names = {p.name for p in selected}

        tests = discover_tests(self.workspace, selected)
        if select:
            tests = [
                t
                for t in tests
                if t.test_type != "singular" or names & set(referenced_names(t))
            ]
        if test_types:
            tests = [t for t in tests if t.test_type in test_types]
        return tests

    def run_all(
        self,
        select: list[str] | None = None,
        test_types: list[str] | None = None,
    ) -> list[TestSuiteResult]:
        """Run tests grouped by pipeline.

        Args:
            select: Node selectors (name, +name, name+, layer:x, tag:x)
            test_types: Filter by test type (generic, custom, singular)

        Returns:
            List of TestSuiteResult, one per pipeline with tests
        """
        self.reporter.report_start(self.workspace.name)

        groups: dict[tuple[str, str], list[DiscoveredTest]] = {}
        for test in self.collect(select, test_types):
            layer = SINGULAR_LAYER if test.test_type == "singular" else test.layer
            pipeline = "singular" if test.test_type == "singular" else test.pipeline
            groups.setdefault((layer, pipeline), []).append(test)

        results = []
        for (layer, pipeline), tests in groups.items():
            suite = self.run_suite(pipeline, layer, tests)
            results.append(suite)

            # Check for fail-fast
            if not suite.success and getattr(self.reporter, "fail_fast", False):
                break

        self.reporter.report_summary(results)
        return results

    def run_suite(
        self,
        pipeline: str,
        layer: str,
        tests: list[DiscoveredTest],
    ) -> TestSuiteResult:
        """Run the tests of one pipeline.

        Args:
            pipeline: Pipeline name (or "singular")
            layer: Layer the pipeline lives in
            tests: Tests to execute

        Returns:
            TestSuiteResult with all test results
        """
        start_time = time.perf_counter()

        node = self.by_name.get(pipeline)
        suite = TestSuiteResult(
            pipeline=pipeline,
            workspace=self.workspace.name,
            layer=layer,
            relation=node.relation if node and node.materialized != "ephemeral" else None,
        )

        for test in tests:
            if test.test_type == "generic":
                result = self.generic_executor.execute(test)
            else:
                result = self.quality_executor.execute(test)
            suite.add_result(result)

            if self.reporter.should_stop(result):
                break

        suite.duration_ms = int((time.perf_counter() - start_time) * 1000)

        self.reporter.report_pipeline(suite)
        return suite
