"""
OpenSens OSINT aggregation - command line
=========================================
Run with:  python -m opensens --bbox -10,35,30,60 --timespan 3d --connectors gdelt,acled

Runs one aggregation and prints the composite signal as a Rich table,
or as JSON with --json.
"""

import argparse
import asyncio
import json
import sys

from rich import box
from rich.console import Console
from rich.table import Table

from .aggregator import Aggregator
from .core.config import get_config
from .core.logger import get_logger, setup_logging
from .signals import CompositeSignal, InvalidRequestError

logger = get_logger(__name__)


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="opensens", description="Aggregate OSINT signals for a bounding box.")
    parser.add_argument("--bbox", default="-180,-90,180,90", help="minLon,minLat,maxLon,maxLat")
    parser.add_argument("--timespan", default="3d", help="time range such as 24h, 3d or 1w")
    parser.add_argument(
        "--connectors",
        default=None,
        help="comma-separated connector ids; gated connectors must be listed to run",
    )
    parser.add_argument("--json", action="store_true", help="print the composite as JSON")
    parser.add_argument("--log-level", default="WARNING")
    return parser.parse_args(argv)


def _render(composite: CompositeSignal, console: Console) -> None:
    summary = Table(title="OpenSens composite signal", box=box.SIMPLE_HEAVY, show_header=False)
    summary.add_column("field", style="bold cyan")
    summary.add_column("value")
    summary.add_row("bbox", ", ".join(f"{v:g}" for v in composite.bbox))
    summary.add_row("time range", composite.time_range)
    summary.add_row("bucket start", composite.bucket_start_iso)
    summary.add_row("events", str(composite.event_count))
    s = composite.sentiment
    summary.add_row(
        "sentiment",
        f"[green]+{s.positive}[/green] / {s.neutral} / [red]-{s.negative}[/red]",
    )
    summary.add_row("credibility", f"{composite.weighted_credibility:.3f}")
    summary.add_row("countries", ", ".join(composite.countries) or "-")
    console.print(summary)

    outcomes = Table(title="Connectors", box=box.SIMPLE)
    outcomes.add_column("connector", style="bold")
    outcomes.add_column("outcome")
    for cid in composite.contributors:
        label = "[yellow]stale[/yellow]" if cid in composite.stale_contributors else "[green]live[/green]"
        outcomes.add_row(cid, label)
    for cid, reason in composite.skipped.items():
        outcomes.add_row(cid, f"[dim]{reason}[/dim]")
    console.print(outcomes)

    if composite.keyword_counts:
        keywords = Table(title="Keywords", box=box.SIMPLE)
        keywords.add_column("keyword")
        keywords.add_column("count", justify="right")
        top = sorted(composite.keyword_counts.items(), key=lambda kv: (-kv[1], kv[0]))[:15]
        for keyword, count in top:
            keywords.add_row(keyword, str(count))
        console.print(keywords)


async def _run(args: argparse.Namespace) -> CompositeSignal:
    connectors = [c.strip() for c in args.connectors.split(",") if c.strip()] if args.connectors else None
    async with Aggregator(config=get_config()) as agg:
        return await agg.aggregate(args.bbox, args.timespan, connectors)


def main(argv=None) -> int:
    args = _parse_args(argv)
    setup_logging(args.log_level, get_config().log_format)
    console = Console()
    try:
        composite = asyncio.run(_run(args))
    except InvalidRequestError as e:
        console.print(f"[red]invalid request:[/red] {e}")
        return 2
    if args.json:
        print(json.dumps(composite.to_dict(), indent=2))
    else:
        _render(composite, console)
    return 0


if __name__ == "__main__":
    sys.exit(main())
