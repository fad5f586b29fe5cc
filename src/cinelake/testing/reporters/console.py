"""Rich console reporter for data test results.

One block per tested node, headed by the relation the tests read:

    📦 gold/mart_movie_ratings → gold.mart_movie_ratings   5 passed · 1 warned
      ⚠️ not_null_mart_movie_ratings_top_tag [generic] top_tag 9 rows
         → 9 rows with NULL top_tag

A node with nothing built shows one skip line instead of one per test.

Passing tests are only listed with --verbose.
"""

import pandas as pd
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..models import TestOutput, TestSeverity, TestStatus, TestSuiteResult

ICONS = {
    TestStatus.PASSED: ("✅", "green"),
    TestStatus.SKIPPED: ("⏭️", "dim"),
    TestStatus.ERROR: ("💥", "red"),
}


def _icon(result: TestOutput) -> tuple[str, str]:
    if result.status == TestStatus.FAILED:
        if result.severity == TestSeverity.WARN:
            return "⚠️", "yellow"
        return "❌", "red"
    return ICONS[result.status]


def _skip_reason(result: TestOutput, verbose: bool) -> str:
    """Short skip reason; the engine error behind it only in verbose mode."""
    message = result.message or "skipped"
    if verbose:
        return escape(message)
    return escape(message.split(" (", 1)[0])


class ConsoleReporter:
    """Print test results grouped by node, with failing rows as tables."""

    def __init__(
        self,
        console: Console | None = None,
        verbose: bool = False,
        fail_fast: bool = False,
    ) -> None:
        self.console = console or Console()
        self.verbose = verbose
        self.fail_fast = fail_fast

    def report_start(self, workspace: str) -> None:
        self.console.print()
        self.console.print(f"[bold cyan]🎬 Testing workspace: {workspace}[/bold cyan]")
        self.console.print()

    def report_pipeline(self, suite: TestSuiteResult) -> None:
        """Print one node's block."""
        target = f" [dim]→ {suite.relation}[/dim]" if suite.relation else ""
        self.console.print(
            f"[bold]📦 {suite.layer}/{suite.pipeline}[/bold]{target}   {self._counts(suite)}"
        )

        # A node that is not built skips every test for the same reason
        if suite.total and suite.skipped == suite.total:
            reason = _skip_reason(suite.results[0], self.verbose)
            self.console.print(f"  ⏭️ [dim]{reason}[/dim]")
            self.console.print()
            return

        for result in suite.results:
            if result.status == TestStatus.PASSED and not self.verbose:
                continue
            self._report_test(result)

        self.console.print()

    def _counts(self, suite: TestSuiteResult) -> str:
        parts = []
        if suite.passed:
            parts.append(f"[green]{suite.passed} passed[/green]")
        if suite.failed:
            parts.append(f"[red]{suite.failed} failed[/red]")
        if suite.warned:
            parts.append(f"[yellow]{suite.warned} warned[/yellow]")
        if suite.errored:
            parts.append(f"[red]{suite.errored} errored[/red]")
        if suite.skipped:
            parts.append(f"[dim]{suite.skipped} skipped[/dim]")
        return " · ".join(parts)

    def _report_test(self, result: TestOutput) -> None:
        icon, color = _icon(result)
        checked = ", ".join(result.columns_checked)
        line = f"  {icon} [bold]{result.name}[/bold] [dim]\\[{result.test_type}][/dim]"
        if result.test_type == "generic" and checked:
            line += f" [dim]{checked}[/dim]"
        if result.status == TestStatus.FAILED:
            line += f" [{color}]{result.row_count} rows[/{color}]"
        self.console.print(line)

        if result.status == TestStatus.SKIPPED:
            self.console.print(f"     [dim]→ {_skip_reason(result, self.verbose)}[/dim]")
        elif result.status in (TestStatus.FAILED, TestStatus.ERROR):
            self.console.print(f"     [dim]→[/dim] [{color}]{escape(result.message or '')}[/{color}]")
            if result.data is not None and len(result.data) > 0:
                self._print_data_table(result.data)
            if self.verbose and result.sql:
                self.console.print(f"     [dim]{escape(result.sql)}[/dim]")
        elif result.message:
            self.console.print(f"     [dim]→ {escape(result.message)}[/dim]")

    def _print_data_table(self, df: pd.DataFrame, max_rows: int = 5) -> None:
        table = Table(show_header=True, header_style="bold", padding=(0, 1))
        for col in df.columns:
            table.add_column(str(col))
        for _, row in df.head(max_rows).iterrows():
            table.add_row(*[str(v) for v in row.values])
        if len(df) > max_rows:
            table.add_row(*["..." for _ in df.columns])

        self.console.print("     ", table)

    def report_summary(self, suites: list[TestSuiteResult]) -> None:
        """Totals, then warn-severity failures, then the verdict."""
        total = sum(s.total for s in suites)
        passed = sum(s.passed for s in suites)
        failed = sum(s.failed for s in suites)
        errored = sum(s.errored for s in suites)
        skipped = sum(s.skipped for s in suites)
        duration = sum(s.duration_ms for s in suites)

        self.console.print(
            f"[bold]📊 {total} tests:[/bold] [green]{passed} passed[/green] · "
            f"[red]{failed} failed[/red] · [red]{errored} errored[/red] · "
            f"[dim]{skipped} skipped · {duration}ms[/dim]"
        )

        warnings = [
            result
            for suite in suites
            for result in suite.results
            if result.status == TestStatus.FAILED and result.severity == TestSeverity.WARN
        ]
        if warnings:
            names = ", ".join(f"{w.name} ({w.row_count} rows)" for w in warnings)
            self.console.print(
                f"[yellow]⚠️ {len(warnings)} warning(s), not failing the run:[/yellow] {names}"
            )

        if failed == 0 and errored == 0:
            self.console.print("[bold green]All error-severity tests passed 🎉[/bold green]")
        else:
            self.console.print(f"[bold red]{failed + errored} test(s) failed[/bold red]")
        self.console.print()

    def report_error(self, message: str) -> None:
        self.console.print(f"[bold red]Error:[/bold red] {message}")

    def should_stop(self, result: TestOutput) -> bool:
        """Fail-fast stops on error-severity failures only."""
        return (
            self.fail_fast
            and result.severity == TestSeverity.ERROR
            and result.status in (TestStatus.FAILED, TestStatus.ERROR)
        )
