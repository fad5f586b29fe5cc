"""🎬 cinelake - A MovieLens warehouse built with dbt-style SQL models on DuckDB.

Quick Start:
    from cinelake.workspace import Workspace
    from cinelake.pipeline import PipelineExecutor

    ws = Workspace.load("movielens")
    executor = PipelineExecutor(ws)
    executor.run_all()                          # seeds, models, snapshots
    executor.run_all(select=["+fct_ratings"])   # one model and its upstream

CLI:
    cinelake build -w movielens
    cinelake test -w movielens
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
