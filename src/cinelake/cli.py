#!/usr/bin/env python3
"""
🎬 cinelake CLI - dbt-style builds for the MovieLens warehouse.

Usage:
    cinelake init <name>       Create a new workspace
    cinelake seed              Load seeds/*.csv
    cinelake run               Build models
    cinelake snapshot          Capture snapshots
    cinelake build             Seeds, models, snapshots, then tests
    cinelake test              Run data tests
    cinelake compile           Render SQL to target/compiled
    cinelake freshness         Check source freshness
    cinelake ls                List workspace nodes
    cinelake query <sql>       Execute SQL query
    cinelake --help            Show help
"""

import argparse
import json
import sys
from pathlib import Path

import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from cinelake import __version__

console = Console()


def _load_workspace(workspace: str | None):
    """Resolve --workspace, falling back to the current directory then CINELAKE_WORKSPACE."""
    from cinelake.workspace.manager import Workspace, get_workspace

    if workspace:
        return get_workspace(workspace)

    cwd = Path.cwd()
    for candidate in [cwd, *cwd.parents]:
        if (candidate / "workspace.yaml").exists():
            return Workspace.load(candidate)

    return get_workspace()


def _parse_vars(raw: str | None) -> dict | None:
    """--vars accepts a YAML mapping, e.g. '{min_ratings: 10}'."""
    if not raw:
        return None
    parsed = yaml.safe_load(raw)
    if not isinstance(parsed, dict):
        raise ValueError(f"--vars must be a YAML mapping, got: {raw}")
    return parsed


def _print_results(results) -> None:
    """Print run results as a table."""
    table = Table(title="Run results", show_header=True, header_style="bold")
    table.add_column("Node")
    table.add_column("Type")
    table.add_column("Materialized")
    table.add_column("Status")
    table.add_column("Rows", justify="right")
    table.add_column("Time", justify="right")

    colors = {"success": "green", "error": "red", "skipped": "dim"}
    for result in results:
        color = colors[result.status]
        table.add_row(
            result.name,
            result.resource_type,
            result.materialized or "",
            f"[{color}]{result.status}[/{color}]",
            str(result.rows_written),
            f"{result.duration_ms}ms",
        )

    console.print()
    console.print(table)


def init_workspace(name: str, path: Path | None = None) -> None:
    """Create a new workspace."""
    from cinelake.workspace.manager import Workspace

    target = (path or Path.cwd()) / name
    if target.exists() and any(target.iterdir()):
        console.print(
            f"[red]Error:[/red] Directory '{target}' already exists and is not empty"
        )
        sys.exit(1)

    try:
        Workspace.create(name, base_dir=path or Path.cwd())
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    console.print(
        Panel(
            f"""[green]✓[/green] Workspace created at [cyan]{target}[/cyan]

[bold]Next steps:[/bold]
  1. Declare sources in workspace.yaml
  2. Add models under pipelines/bronze, silver and gold
  3. cinelake build -w {target}
""",
            title="🎬 Workspace Ready!",
            border_style="green",
        )
    )


def run_nodes(
    workspace: str | None,
    resource_types: list[str] | None,
    select: list[str] | None = None,
    full_refresh: bool = False,
    fail_fast: bool = False,
    vars: str | None = None,
) -> list:
    """Build nodes of the given resource types and print a summary."""
    from cinelake.pipeline.executor import PipelineExecutor

    try:
        ws = _load_workspace(workspace)
        executor = PipelineExecutor(ws, vars=_parse_vars(vars))
        results = executor.run_all(
            select=select,
            resource_types=resource_types,
            full_refresh=full_refresh,
            fail_fast=fail_fast,
        )
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if results:
        _print_results(results)
    return results


def run_tests(
    workspace: str | None = None,
    select: list[str] | None = None,
    test_type: list[str] | None = None,
    output: str = "console",
    verbose: bool = False,
    fail_fast: bool = False,
    vars: str | None = None,
) -> list:
    """Run data tests.

    Args:
        workspace: Workspace name or path
        select: Node selectors
        test_type: Filter by test type (generic, custom, singular)
        output: Output format (console, json)
        verbose: Show verbose output
        fail_fast: Stop on first failure
        vars: YAML mapping of template variables
    """
    from cinelake.testing.reporters.console import ConsoleReporter
    from cinelake.testing.reporters.json import JSONReporter
    from cinelake.testing.runner import TestRunner

    if output == "json":
        reporter = JSONReporter(pretty=verbose)
    else:
        reporter = ConsoleReporter(verbose=verbose, fail_fast=fail_fast)

    try:
        ws = _load_workspace(workspace)
        runner = TestRunner(ws, reporter, vars=_parse_vars(vars))
        return runner.run_all(select=select, test_types=test_type)
    except Exception as e:
        reporter.report_error(str(e))
        sys.exit(1)


def compile_nodes(workspace: str | None, select: list[str] | None, vars: str | None) -> None:
    """Render models and snapshots to target/compiled."""
    from cinelake.pipeline.executor import PipelineExecutor

    try:
        ws = _load_workspace(workspace)
        executor = PipelineExecutor(ws, vars=_parse_vars(vars))
        paths = executor.compile_all(select=select)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    for path in paths:
        console.print(f"  [green]✓[/green] {path}")


def check_source_freshness(workspace: str | None, output: str = "console") -> None:
    """Check source freshness and exit 1 when any table is in error."""
    from cinelake.pipeline.freshness import check_freshness

    try:
        ws = _load_workspace(workspace)
        results = check_freshness(ws)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if output == "json":
        json.dump([r.to_dict() for r in results], sys.stdout, indent=2, default=str)
        sys.stdout.write("\n")
    else:
        table = Table(title="Source freshness", show_header=True, header_style="bold")
        table.add_column("Source")
        table.add_column("Max loaded at")
        table.add_column("Age")
        table.add_column("Status")

        colors = {"pass": "green", "warn": "yellow", "error": "red"}
        for result in results:
            color = colors[result.status]
            table.add_row(
                result.relation,
                str(result.max_loaded_at) if result.max_loaded_at else "-",
                str(result.age).split(".")[0] if result.age is not None else "-",
                f"[{color}]{result.status}[/{color}]"
                + (f" [dim]{result.error}[/dim]" if result.error else ""),
            )
        console.print(table)

        if not results:
            console.print("[dim]No source declares loaded_at_field and freshness[/dim]")

    if any(r.status == "error" for r in results):
        sys.exit(1)


def list_nodes(
    workspace: str | None,
    select: list[str] | None,
    resource_types: list[str] | None,
) -> None:
    """List workspace nodes in dependency order."""
    from cinelake.pipeline.loader import discover_pipelines, select_pipelines, topological_sort

    try:
        ws = _load_workspace(workspace)
        nodes = topological_sort(select_pipelines(discover_pipelines(ws), select))
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if resource_types:
        nodes = [n for n in nodes if n.resource_type in resource_types]

    table = Table(title=f"🎬 {ws.name}", show_header=True, header_style="bold")
    table.add_column("Node")
    table.add_column("Type")
    table.add_column("Layer")
    table.add_column("Materialized")
    table.add_column("Relation")
    table.add_column("Depends on")

    for node in nodes:
        table.add_row(
            node.name,
            node.resource_type,
            node.layer,
            node.materialized,
            node.relation if node.materialized != "ephemeral" else "[dim]inlined[/dim]",
            ", ".join(node.dependencies),
        )
    console.print(table)


def run_query(workspace: str | None, sql: str, limit: int = 50) -> None:
    """Execute a SQL query against the workspace database."""
    try:
        ws = _load_workspace(workspace)
        df = ws.get_engine().query(sql)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    table = Table(show_header=True, header_style="bold")
    for column in df.columns:
        table.add_column(str(column))
    for _, row in df.head(limit).iterrows():
        table.add_row(*[str(v) for v in row.values])

    console.print(table)
    if len(df) > limit:
        console.print(f"[dim]... {len(df) - limit} more rows[/dim]")


def _add_common(parser: argparse.ArgumentParser, select: bool = True) -> None:
    parser.add_argument(
        "--workspace", "-w", help="Workspace name or path (default: current workspace)"
    )
    if select:
        parser.add_argument(
            "--select",
            "-s",
            action="extend",
            nargs="+",
            help="Node selectors: name, +name, name+, layer:<layer>, tag:<tag>",
        )
    parser.add_argument(
        "--vars", help="YAML mapping of template variables, e.g. '{min_ratings: 10}'"
    )


def main() -> None:
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        prog="cinelake",
        description="🎬 cinelake - dbt-style SQL models on DuckDB",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  cinelake build -w movielens              Build and test everything
  cinelake run -s +fct_ratings             fct_ratings and its upstream
  cinelake run -s layer:silver -f          Rebuild silver from scratch
  cinelake snapshot                        Capture snapshots
  cinelake test -s dim_movies -o json      Tests of one model, as JSON
  cinelake ls -s tag:nightly               List tagged nodes
  cinelake query "SELECT * FROM gold.mart_movie_ratings LIMIT 5"
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # init command
    init_parser = subparsers.add_parser("init", help="Create a new workspace")
    init_parser.add_argument("name", help="Workspace name")
    init_parser.add_argument(
        "--path", "-p", type=Path, help="Parent directory (default: current directory)"
    )

    # seed / run / snapshot / build
    seed_parser = subparsers.add_parser("seed", help="Load seeds/*.csv")
    _add_common(seed_parser)

    run_parser = subparsers.add_parser("run", help="Build models")
    _add_common(run_parser)

    snapshot_parser = subparsers.add_parser("snapshot", help="Capture snapshots")
    _add_common(snapshot_parser)

    build_parser = subparsers.add_parser(
        "build", help="Seeds, models and snapshots in DAG order, then tests"
    )
    _add_common(build_parser)

    for sub in (run_parser, build_parser):
        sub.add_argument(
            "--full-refresh", "-f", action="store_true",
            help="Rebuild incremental models from scratch",
        )
    for sub in (seed_parser, run_parser, snapshot_parser, build_parser):
        sub.add_argument(
            "--fail-fast", "-x", action="store_true", help="Stop on first failure"
        )

    # test command
    test_parser = subparsers.add_parser("test", help="Run data tests")
    _add_common(test_parser)
    test_parser.add_argument(
        "--type",
        "-t",
        action="append",
        dest="test_type",
        choices=["generic", "custom", "singular"],
        help="Filter by test type (can specify multiple)",
    )
    test_parser.add_argument(
        "--output",
        "-o",
        choices=["console", "json"],
        default="console",
        help="Output format (default: console)",
    )
    test_parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show verbose output",
    )
    test_parser.add_argument(
        "--fail-fast", "-x", action="store_true", help="Stop on first failure"
    )

    # compile command
    compile_parser = subparsers.add_parser("compile", help="Render SQL to target/compiled")
    _add_common(compile_parser)

    # freshness command
    freshness_parser = subparsers.add_parser("freshness", help="Check source freshness")
    freshness_parser.add_argument(
        "--workspace", "-w", help="Workspace name or path (default: current workspace)"
    )
    freshness_parser.add_argument(
        "--output",
        "-o",
        choices=["console", "json"],
        default="console",
        help="Output format (default: console)",
    )

    # ls command
    ls_parser = subparsers.add_parser("ls", help="List workspace nodes")
    _add_common(ls_parser)
    ls_parser.add_argument(
        "--resource-type",
        "-r",
        action="append",
        choices=["model", "snapshot", "seed"],
        help="Filter by resource type (can specify multiple)",
    )

    # query command
    query_parser = subparsers.add_parser("query", help="Execute SQL query")
    query_parser.add_argument("sql", help="SQL query to execute")
    query_parser.add_argument(
        "--workspace", "-w", help="Workspace name or path (default: current workspace)"
    )
    query_parser.add_argument(
        "--limit", "-n", type=int, default=50, help="Rows to display (default: 50)"
    )

    # version
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    args = parser.parse_args()

    if args.command == "init":
        init_workspace(args.name, args.path)
    elif args.command in ("seed", "run", "snapshot"):
        resource_types = {"seed": ["seed"], "run": ["model"], "snapshot": ["snapshot"]}
        results = run_nodes(
            args.workspace,
            resource_types[args.command],
            select=args.select,
            full_refresh=getattr(args, "full_refresh", False),
            fail_fast=args.fail_fast,
            vars=args.vars,
        )
        if any(r.status == "error" for r in results):
            sys.exit(1)
    elif args.command == "build":
        results = run_nodes(
            args.workspace,
            None,
            select=args.select,
            full_refresh=args.full_refresh,
            fail_fast=args.fail_fast,
            vars=args.vars,
        )
        if any(r.status == "error" for r in results) and args.fail_fast:
            sys.exit(1)
        suites = run_tests(
            workspace=args.workspace,
            select=args.select,
            fail_fast=args.fail_fast,
            vars=args.vars,
        )
        if any(r.status == "error" for r in results) or not all(s.success for s in suites):
            sys.exit(1)
    elif args.command == "test":
        suites = run_tests(
            workspace=args.workspace,
            select=args.select,
            test_type=args.test_type,
            output=args.output,
            verbose=args.verbose,
            fail_fast=args.fail_fast,
            vars=args.vars,
        )
        # Exit with error code if any tests failed
        if sum(s.failed + s.errored for s in suites) > 0:
            sys.exit(1)
    elif args.command == "compile":
        compile_nodes(args.workspace, args.select, args.vars)
    elif args.command == "freshness":
        check_source_freshness(args.workspace, args.output)
    elif args.command == "ls":
        list_nodes(args.workspace, args.select, args.resource_type)
    elif args.command == "query":
        run_query(args.workspace, args.sql, args.limit)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
