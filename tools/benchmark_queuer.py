#!/usr/bin/env -S uv run
"""
Scheduler Benchmark Tool for pacer

Benchmarks Queuer and AsyncQueuer with a simulated I/O handler and reports
throughput plus add-to-settle latency for each concurrency level.

Usage:
    uv run tools/benchmark_queuer.py
    uv run tools/benchmark_queuer.py --items 5000 --concurrency 1,8,64
    uv run tools/benchmark_queuer.py --delay-ms 0
    uv run tools/benchmark_queuer.py --help
"""
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "pydantic>=2.0",
#     "structlog>=23.1",
#     "typer>=0.9.0",
#     "rich>=13.0",
# ]
# ///

from __future__ import annotations

import asyncio
import logging
import statistics
import sys
from dataclasses import dataclass, field
from pathlib import Path
from time import perf_counter

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Import pacer from the local checkout
sys.path.insert(0, str(Path(__file__).parent.parent))

from pacer import AsyncQueuer, Queuer

app = typer.Typer(
    help="Benchmark pacer schedulers",
    add_completion=False,
)


# ---------------------------------------------------------------------------
# Data Classes
# ---------------------------------------------------------------------------


@dataclass
class BenchmarkConfig:
    """Configuration for benchmark runs."""

    items: int = 1000
    concurrency_levels: list[int] = field(default_factory=lambda: [1, 10, 50])
    delay: float = 0.001
    max_size: int | None = None


@dataclass
class BenchmarkResult:
    """Results from a single benchmark run."""

    scheduler: str
    scenario: str
    total_items: int
    total_time: float
    latencies: list[float]  # seconds, add_item() to settlement
    rejected: int = 0

    @property
    def items_per_sec(self) -> float:
        return self.total_items / self.total_time if self.total_time > 0 else 0.0

    def percentile(self, fraction: float) -> float:
        if not self.latencies:
            return 0.0
        ordered = sorted(self.latencies)
        return ordered[min(int(len(ordered) * fraction), len(ordered) - 1)]

    @property
    def p50(self) -> float:
        return statistics.median(self.latencies) if self.latencies else 0.0

    @property
    def max_latency(self) -> float:
        return max(self.latencies) if self.latencies else 0.0


def format_latency_ms(seconds: float) -> str:
    ms = seconds * 1000
    if ms < 1:
        return f"{ms:.3f}ms"
    elif ms < 10:
        return f"{ms:.2f}ms"
    return f"{ms:.1f}ms"


# ---------------------------------------------------------------------------
# Core Benchmark Functions
# ---------------------------------------------------------------------------


def benchmark_queuer(n: int) -> BenchmarkResult:
    """
    Push N items through a started Queuer with a no-op handler.

    Queuer drains inline, so each add_item() returns after the handler ran
    and the latency is the full enqueue + dispatch cost.
    """
    latencies: list[float] = []
    queuer: Queuer[int] = Queuer(lambda value: None, key="bench-sync")

    start = perf_counter()
    for i in range(n):
        t0 = perf_counter()
        queuer.add_item(i)
        latencies.append(perf_counter() - t0)
    total_time = perf_counter() - start

    return BenchmarkResult(
        scheduler="Queuer",
        scenario="inline",
        total_items=queuer.execution_count,
        total_time=total_time,
        latencies=latencies,
    )


async def benchmark_async_queuer(
    n: int,
    concurrency: int,
    delay: float,
    max_size: int | None,
) -> BenchmarkResult:
    """
    Push N items through an AsyncQueuer and wait for all of them to settle.

    Parameters
    ----------
    n           : number of items
    concurrency : AsyncQueuer concurrency bound
    delay       : seconds each handler sleeps (simulated I/O)
    max_size    : optional pending-queue capacity

    Returns
    -------
    BenchmarkResult with one add-to-settle latency per settled item
    """
    added_at: dict[int, float] = {}
    latencies: list[float] = []

    async def handler(value: int) -> int:
        if delay > 0:
            await asyncio.sleep(delay)
        return value

    def on_settled(result: object, value: int, queuer: object) -> None:
        latencies.append(perf_counter() - added_at.pop(value))

    queuer: AsyncQueuer[int] = AsyncQueuer(
        handler,
        key=f"bench-c{concurrency}",
        concurrency=concurrency,
        max_size=max_size,
        on_settled=on_settled,
        on_error=lambda error, value, q: None,
    )

    start = perf_counter()
    for i in range(n):
        added_at[i] = perf_counter()
        if not queuer.add_item(i):
            added_at.pop(i)
    await queuer.flush()
    total_time = perf_counter() - start

    return BenchmarkResult(
        scheduler="AsyncQueuer",
        scenario=f"c{concurrency}",
        total_items=queuer.settled_count,
        total_time=total_time,
        latencies=latencies,
        rejected=queuer.rejection_count,
    )


async def run_async_benchmarks(config: BenchmarkConfig) -> list[BenchmarkResult]:
    results = []
    for concurrency in config.concurrency_levels:
        results.append(
            await benchmark_async_queuer(
                config.items, concurrency, config.delay, config.max_size
            )
        )
    return results


# ---------------------------------------------------------------------------
# Result Formatting
# ---------------------------------------------------------------------------


def format_results(results: list[BenchmarkResult], config: BenchmarkConfig) -> None:
    console = Console()

    console.print()
    console.print(
        Panel(
            "[bold cyan]Scheduler Benchmark Results[/bold cyan]\n"
            f"items={config.items} handler delay={format_latency_ms(config.delay)}"
            + (f" max_size={config.max_size}" if config.max_size else ""),
            expand=False,
        )
    )

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Scheduler", style="cyan")
    table.add_column("Scenario", style="cyan", width=10)
    table.add_column("Items/sec", justify="right", style="green")
    table.add_column("P50", justify="right")
    table.add_column("P95", justify="right")
    table.add_column("P99", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Rejected", justify="right", style="red")

    for result in results:
        table.add_row(
            result.scheduler,
            result.scenario,
            f"{result.items_per_sec:.1f}",
            format_latency_ms(result.p50),
            format_latency_ms(result.percentile(0.95)),
            format_latency_ms(result.percentile(0.99)),
            format_latency_ms(result.max_latency),
            str(result.rejected),
        )

    console.print(table)
    console.print()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@app.command()
def main(
    items: int = typer.Option(
        1000,
        "--items",
        "-n",
        help="Number of items per benchmark",
    ),
    concurrency: str = typer.Option(
        "1,10,50",
        "--concurrency",
        "-c",
        help="Comma-separated AsyncQueuer concurrency levels",
    ),
    delay_ms: float = typer.Option(
        1.0,
        "--delay-ms",
        "-d",
        help="Simulated handler latency in milliseconds",
    ),
    max_size: int | None = typer.Option(
        None,
        "--max-size",
        help="Pending queue capacity (overflow is rejected)",
    ),
) -> None:
    """
    Benchmark pacer schedulers.

    Measures throughput (items/sec) and add-to-settle latency percentiles
    (p50/p95/p99/max) for the inline Queuer and for AsyncQueuer at each
    requested concurrency level.
    """
    # Keep per-item debug events out of the measurements
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(logging.WARNING)
    )

    try:
        levels = [int(level) for level in concurrency.split(",") if level.strip()]
    except ValueError:
        raise typer.BadParameter("concurrency must be a list of integers") from None

    config = BenchmarkConfig(
        items=items,
        concurrency_levels=levels,
        delay=delay_ms / 1000,
        max_size=max_size,
    )

    all_results = [benchmark_queuer(config.items)]
    all_results.extend(asyncio.run(run_async_benchmarks(config)))
    format_results(all_results, config)


if __name__ == "__main__":
    app()
