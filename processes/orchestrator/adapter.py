"""Wires sessions, round sources, persistence and progress output into matches."""

from __future__ import annotations

import asyncio
import sys
from typing import TextIO

from processes.leaderboard.stats import best_scores, read_all_runs, runs_from_round, save_graph, write_runs
from processes.optimizer.session import OptimizerSession
from processes.orchestrator.core import (
    MatchOrchestrator,
    MatchReport,
    MatchTally,
    RoundResult,
    RunMode,
)
from processes.orchestrator.models import CompareConfig, GraphsConfig
from processes.rounds.generator import CorpusRounds, RoundGenerator
from processes.sprt.tester import EloEstimate, SequentialTester, SPRTStatus


def _tester(cfg: CompareConfig | GraphsConfig) -> SequentialTester:
    return SequentialTester(elo0=cfg.sprt.elo0, elo1=cfg.sprt.elo1, alpha=cfg.sprt.alpha, beta=cfg.sprt.beta)


def format_progress(
    tag: str, record: RoundResult, tally: MatchTally, status: SPRTStatus, elo: EloEstimate, tester: SequentialTester
) -> str:
    if record.skipped:
        head = f"[{tag}] round {record.index} {record.graph_name}: skipped (optimizer restarted)"
    else:
        scores = ", ".join(
            f"{s.optimizer}={'invalid' if s.max_per_edge is None else s.max_per_edge}" for s in record.sides
        )
        if record.baseline is not None:
            scores += f", best={record.baseline}"
        outcome = record.outcome.value if record.outcome else "untallied"
        head = f"[{tag}] round {record.index} {record.graph_name}: {scores} -> {outcome}"
    return (
        f"{head} | W/L/D {tally.wins}/{tally.losses}/{tally.draws}"
        f" | ELO {elo.mid:.1f} [{elo.low:.1f}, {elo.high:.1f}]"
        f" | LLR {status.llr:.3f} [{tester.lower_bound:.3f}, {tester.upper_bound:.3f}]"
    )


def format_summary(tag: str, report: MatchReport) -> list[str]:
    lines = []
    if report.cancelled:
        lines.append(f"[{tag}] Cancelled after {len(report.rounds)} completed rounds")
    else:
        lines.append(f"[{tag}] ✓ Finished after {len(report.rounds)} rounds")
    t = report.tally
    lines.append(f"[{tag}] Tally: wins={t.wins} losses={t.losses} draws={t.draws}")
    lines.append(f"[{tag}] ELO: {report.elo.mid:.1f} (95% CI {report.elo.low:.1f} .. {report.elo.high:.1f})")
    lines.append(f"[{tag}] LLR: {report.status.llr:.3f}")
    if report.verdict == "H1":
        lines.append(f"[{tag}] Verdict: H1, {report.optimizers[0]} is stronger")
    elif report.verdict == "H0":
        lines.append(f"[{tag}] Verdict: H0, no measurable improvement for {report.optimizers[0]}")
    else:
        lines.append(f"[{tag}] Verdict: inconclusive")
    return lines


async def run_compare(
    optimizers: tuple[str, str],
    config: CompareConfig,
    *,
    cancel: asyncio.Event | None = None,
    stream: TextIO | None = None,
) -> MatchReport:
    """Head-to-head match on random instances; tally is from the first optimizer's side."""
    stream = stream or sys.stderr
    generator = RoundGenerator(config.seed, config.generator)
    tester = _tester(config)
    print(f"[compare] seed={generator.seed}", file=stream)

    def on_round(record: RoundResult, tally: MatchTally, status: SPRTStatus, elo: EloEstimate) -> None:
        print(format_progress("compare", record, tally, status, elo, tester), file=stream)

    sessions = [
        OptimizerSession(
            command,
            ident,
            reap_timeout=config.session.reap_timeout,
            shutdown_timeout=config.session.shutdown_timeout,
        )
        for ident, command in enumerate(optimizers, start=1)
    ]
    try:
        for session in sessions:
            await session.spawn()
        orchestrator = MatchOrchestrator(
            sessions,
            generator.rounds(config.max_rounds),
            tester,
            RunMode.HEAD_TO_HEAD,
            on_round=on_round,
        )
        return await orchestrator.run(cancel, seed=generator.seed)
    finally:
        for session in sessions:
            await session.close()


async def run_graphs(
    command: str,
    config: GraphsConfig,
    *,
    cancel: asyncio.Event | None = None,
    stream: TextIO | None = None,
) -> MatchReport:
    """One optimizer over the graph corpus, restarting it after crashes.

    Each completed round is appended to the team's stats CSV right away, so a
    later failure leaves earlier rows intact.
    """
    stream = stream or sys.stderr
    rounds = CorpusRounds(config.graphs_dir, config.filter, config.skip_to)
    baseline = best_scores(read_all_runs(config.stats_dir)) if config.compare_to_leaderboard else {}
    tester = _tester(config)
    print(f"[graphs] {len(rounds)} of {rounds.total} graphs selected from {config.graphs_dir}", file=stream)

    async with OptimizerSession(
        command,
        1,
        reap_timeout=config.session.reap_timeout,
        shutdown_timeout=config.session.shutdown_timeout,
    ) as session:
        team = await session.read_start()
        print(f"[graphs] optimizer started as {team!r}", file=stream)

        def on_round(record: RoundResult, tally: MatchTally, status: SPRTStatus, elo: EloEstimate) -> None:
            write_runs(config.stats_dir, team, runs_from_round(record))
            if config.save:
                for side in record.sides:
                    if side.graph is not None:
                        save_graph(config.saved_dir, team, record.graph_name, side.graph)
            print(format_progress("graphs", record, tally, status, elo, tester), file=stream)

        orchestrator = MatchOrchestrator(
            [session],
            rounds,
            tester,
            RunMode.CORPUS,
            baseline=baseline,
            stop_on_decision=config.stop_on_decision,
            on_round=on_round,
        )
        return await orchestrator.run(cancel)
