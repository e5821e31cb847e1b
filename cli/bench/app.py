from __future__ import annotations

from dataclasses import replace
from enum import Enum
from typing import Optional

import typer
from typing_extensions import Annotated

from kdtreex import config as kx_config

from .benchmark import benchmark_dynamic_insert, benchmark_knn_latency

app = typer.Typer(
    add_completion=False,
    pretty_exceptions_enable=False,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
    help="Benchmark the kdtreex KD-tree index.",
)

_SHAPE_PANEL = "Benchmark shape"
_INDEX_PANEL = "Index & search"
_RUNTIME_PANEL = "Runtime controls"


class MetricName(str, Enum):
    l1 = "l1"
    l2 = "l2"
    l2_simple = "l2_simple"
    so2 = "so2"
    so3 = "so3"


def _activate_runtime(
    *,
    enable_numba: bool | None,
    diagnostics: bool | None,
    log_level: str | None,
) -> None:
    config = kx_config.RuntimeConfig.from_env()
    overrides = {}
    if enable_numba is not None:
        overrides["enable_numba"] = enable_numba
    if diagnostics is not None:
        overrides["enable_diagnostics"] = diagnostics
    if log_level is not None:
        overrides["log_level"] = log_level.upper()
    kx_config.configure_runtime(replace(config, **overrides) if overrides else config)


def _check_dimension(metric: str, dimension: int) -> int:
    if metric == "so3" and dimension != 4:
        raise typer.BadParameter("--metric so3 requires --dimension 4.", param_hint="--dimension")
    if dimension < 1:
        raise typer.BadParameter("--dimension must be >= 1.", param_hint="--dimension")
    return dimension


@app.command("query")
def query(
    dimension: Annotated[
        int,
        typer.Option("--dimension", help="Dimensionality of tree/query points.", rich_help_panel=_SHAPE_PANEL),
    ] = 3,
    tree_points: Annotated[
        int,
        typer.Option("--tree-points", help="Number of indexed points.", rich_help_panel=_SHAPE_PANEL),
    ] = 8_192,
    queries: Annotated[
        int,
        typer.Option("--queries", help="Number of query points per run.", rich_help_panel=_SHAPE_PANEL),
    ] = 1_024,
    k: Annotated[
        int,
        typer.Option("--k", help="Number of neighbours requested per query.", rich_help_panel=_SHAPE_PANEL),
    ] = 10,
    seed: Annotated[
        int,
        typer.Option("--seed", help="Base random seed for point/query generation.", rich_help_panel=_SHAPE_PANEL),
    ] = 0,
    metric: Annotated[
        MetricName,
        typer.Option("--metric", case_sensitive=False, help="Distance metric.", rich_help_panel=_INDEX_PANEL),
    ] = MetricName.l2,
    leaf_max_size: Annotated[
        int,
        typer.Option("--leaf-max-size", help="Maximum points per leaf.", rich_help_panel=_INDEX_PANEL),
    ] = 10,
    eps: Annotated[
        float,
        typer.Option("--eps", help="Approximation slack (0 = exact).", rich_help_panel=_INDEX_PANEL),
    ] = 0.0,
    checks: Annotated[
        Optional[int],
        typer.Option("--checks", help="Maximum leaves visited per query.", rich_help_panel=_INDEX_PANEL),
    ] = None,
    verify: Annotated[
        bool,
        typer.Option("--verify/--no-verify", help="Compare every result against a linear scan.", rich_help_panel=_INDEX_PANEL),
    ] = True,
    enable_numba: Annotated[
        Optional[bool],
        typer.Option("--enable-numba/--disable-numba", help="Force-enable or disable Numba leaf kernels.", rich_help_panel=_RUNTIME_PANEL),
    ] = None,
    diagnostics: Annotated[
        Optional[bool],
        typer.Option("--enable-diagnostics/--disable-diagnostics", help="Control psutil resource sampling in operation logs.", rich_help_panel=_RUNTIME_PANEL),
    ] = None,
    log_level: Annotated[
        Optional[str],
        typer.Option("--log-level", help="Override runtime log level.", rich_help_panel=_RUNTIME_PANEL),
    ] = None,
) -> None:
    """Build a static index and time k-NN queries."""

    metric_name = MetricName(metric).value
    dimension = _check_dimension(metric_name, dimension)
    _activate_runtime(enable_numba=enable_numba, diagnostics=diagnostics, log_level=log_level)
    try:
        index, result = benchmark_knn_latency(
            dimension=dimension,
            tree_points=tree_points,
            query_count=queries,
            k=k,
            seed=seed,
            metric=metric_name,
            leaf_max_size=leaf_max_size,
            eps=eps,
            checks=checks,
            verify=verify,
        )
        print(
            f"kdtreex | build={result.build_seconds:.4f}s "
            f"nodes={index.num_nodes} depth={index.depth()} "
            f"queries={result.queries} k={result.k} "
            f"time={result.elapsed_seconds:.4f}s "
            f"latency={result.latency_ms:.4f}ms "
            f"throughput={result.queries_per_second:,.1f} q/s"
        )
        if result.mismatches is not None:
            print(f"verify | mismatches={result.mismatches}/{result.queries}")
            if result.mismatches and eps == 0.0 and checks is None:
                raise typer.Exit(code=1)
    finally:
        kx_config.reset_runtime_context()


@app.command("dynamic")
def dynamic(
    dimension: Annotated[
        int,
        typer.Option("--dimension", help="Dimensionality of inserted points.", rich_help_panel=_SHAPE_PANEL),
    ] = 3,
    tree_points: Annotated[
        int,
        typer.Option("--tree-points", help="Total number of inserted points.", rich_help_panel=_SHAPE_PANEL),
    ] = 8_192,
    batch_size: Annotated[
        int,
        typer.Option("--batch-size", help="Points appended per add_points call.", rich_help_panel=_SHAPE_PANEL),
    ] = 512,
    seed: Annotated[
        int,
        typer.Option("--seed", help="Random seed for point generation.", rich_help_panel=_SHAPE_PANEL),
    ] = 0,
    metric: Annotated[
        MetricName,
        typer.Option("--metric", case_sensitive=False, help="Distance metric.", rich_help_panel=_INDEX_PANEL),
    ] = MetricName.l2,
    leaf_max_size: Annotated[
        int,
        typer.Option("--leaf-max-size", help="Maximum points per leaf.", rich_help_panel=_INDEX_PANEL),
    ] = 10,
    diagnostics: Annotated[
        Optional[bool],
        typer.Option("--enable-diagnostics/--disable-diagnostics", help="Control psutil resource sampling in operation logs.", rich_help_panel=_RUNTIME_PANEL),
    ] = None,
    log_level: Annotated[
        Optional[str],
        typer.Option("--log-level", help="Override runtime log level.", rich_help_panel=_RUNTIME_PANEL),
    ] = None,
) -> None:
    """Time incremental insertion into a dynamic index."""

    metric_name = MetricName(metric).value
    dimension = _check_dimension(metric_name, dimension)
    if batch_size < 1:
        raise typer.BadParameter("--batch-size must be >= 1.", param_hint="--batch-size")
    _activate_runtime(enable_numba=None, diagnostics=diagnostics, log_level=log_level)
    try:
        index, result = benchmark_dynamic_insert(
            dimension=dimension,
            tree_points=tree_points,
            batch_size=batch_size,
            seed=seed,
            metric=metric_name,
            leaf_max_size=leaf_max_size,
        )
        print(
            f"kdtreex dynamic | points={result.points} batches={result.batches} "
            f"insert={result.insert_seconds:.4f}s "
            f"throughput={result.points_per_second:,.1f} pts/s "
            f"levels={result.levels} static_build={result.static_build_seconds:.4f}s"
        )
        for level, capacity, live in index.sub_trees():
            print(f"level[{level}] | capacity={capacity} live={live}")
    finally:
        kx_config.reset_runtime_context()


def main() -> None:
    app()


__all__ = ["app", "main"]
