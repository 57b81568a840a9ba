#!/usr/bin/env python3
"""CLI interface for the orchestrator."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from .adapter import format_summary, run_compare, run_graphs
from .core import MatchReport
from .models import CompareConfig, GraphsConfig, load_config, set_dotted


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", type=Path, help="YAML or JSON config file")
    p.add_argument(
        "--config-kv",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Config override, dotted keys for sections (e.g. sprt.elo1=20); repeatable",
    )
    p.add_argument("--alpha", type=float, help="SPRT false-positive rate (default: 0.05)")
    p.add_argument("--beta", type=float, help="SPRT false-negative rate (default: 0.05)")
    p.add_argument("--elo0", type=float, help="SPRT null hypothesis Elo (default: 0)")
    p.add_argument("--elo1", type=float, help="SPRT alternative hypothesis Elo (default: 10)")
    p.add_argument("--verbose", action="store_true", help="Enable verbose output")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the orchestrator CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m processes.orchestrator",
        description="Benchmark graph-drawing optimizers by max-per-edge crossings with an SPRT stopping rule",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    compare = subparsers.add_parser("compare", help="Head-to-head match on random instances")
    compare.add_argument("optimizer1", help="Command line of the first optimizer (tally is from its side)")
    compare.add_argument("optimizer2", help="Command line of the second optimizer")
    compare.add_argument("--max-rounds", type=int, help="Round budget before giving up (default: 1000)")
    compare.add_argument("--seed", type=int, help="Seed for instance generation (default: random, printed)")
    _add_common(compare)

    graphs = subparsers.add_parser("graphs", help="Run one optimizer over the graph corpus")
    graphs.add_argument("optimizer", help="Command line of the optimizer")
    graphs.add_argument("--graphs-dir", type=Path, help="Corpus directory (default: graphs)")
    graphs.add_argument("--filter", help="Only run graphs whose name contains this text")
    graphs.add_argument("--skip-to", help="Skip graphs until one whose name contains this text")
    graphs.add_argument("--save", action="store_true", default=None, help="Save produced graphs")
    graphs.add_argument("--saved-dir", type=Path, help="Where saved graphs go (default: saved)")
    graphs.add_argument("--stats-dir", type=Path, help="Run statistics directory (default: stats)")
    graphs.add_argument(
        "--no-leaderboard",
        dest="compare_to_leaderboard",
        action="store_false",
        default=None,
        help="Do not compare against the best previous scores",
    )
    _add_common(graphs)

    return parser


def _build_config(args: argparse.Namespace, keys: dict[str, str]) -> dict[str, Any]:
    cfg = load_config(args.config, args.config_kv)
    for attr, key in keys.items():
        value = getattr(args, attr, None)
        if value is not None:
            set_dotted(cfg, key, value)
    return cfg


_SPRT_FLAGS = {"alpha": "sprt.alpha", "beta": "sprt.beta", "elo0": "sprt.elo0", "elo1": "sprt.elo1"}


def _run_cancellable(make: Callable[[asyncio.Event], Awaitable[MatchReport]]) -> MatchReport:
    """Run a match with SIGINT mapped to the cancel event."""

    async def runner() -> MatchReport:
        cancel = asyncio.Event()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, cancel.set)
            installed = True
        except (NotImplementedError, RuntimeError, ValueError):
            # no loop signal support here; Ctrl+C raises KeyboardInterrupt instead
            installed = False
        try:
            return await make(cancel)
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)

    return asyncio.run(runner())


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )


def cmd_compare(args: argparse.Namespace) -> int:
    """Execute the compare command."""
    try:
        _configure_logging(args.verbose)
        cfg = _build_config(args, {**_SPRT_FLAGS, "max_rounds": "max_rounds", "seed": "seed"})
        config = CompareConfig.model_validate(cfg)
        report = _run_cancellable(
            lambda cancel: run_compare((args.optimizer1, args.optimizer2), config, cancel=cancel)
        )
        for line in format_summary("compare", report):
            print(line)
        print(f"[compare] Seed: {report.seed}")
        return 0
    except Exception as e:
        print(f"[compare] ✗ Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc()
        return 1


def cmd_graphs(args: argparse.Namespace) -> int:
    """Execute the graphs command."""
    try:
        _configure_logging(args.verbose)
        cfg = _build_config(
            args,
            {
                **_SPRT_FLAGS,
                "graphs_dir": "graphs_dir",
                "filter": "filter",
                "skip_to": "skip_to",
                "save": "save",
                "saved_dir": "saved_dir",
                "stats_dir": "stats_dir",
                "compare_to_leaderboard": "compare_to_leaderboard",
            },
        )
        config = GraphsConfig.model_validate(cfg)
        report = _run_cancellable(lambda cancel: run_graphs(args.optimizer, config, cancel=cancel))
        for line in format_summary("graphs", report):
            print(line)
        scored = [r for r in report.rounds if not r.skipped]
        invalid = sum(1 for r in scored if r.sides[0].disqualified)
        skipped = len(report.rounds) - len(scored)
        print(f"[graphs] Graphs: scored={len(scored) - invalid} invalid={invalid} crashed={skipped}")
        print(f"[graphs] Stats: {config.stats_dir}")
        return 0
    except Exception as e:
        print(f"[graphs] ✗ Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc()
        return 1


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "compare":
        return cmd_compare(args)
    elif args.command == "graphs":
        return cmd_graphs(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
