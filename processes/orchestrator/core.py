"""Match loop: dispatch rounds to optimizer sessions, score, and test."""

from __future__ import annotations

import asyncio
import json
import logging
import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pipeline.graph import Graph
from processes.optimizer.session import OptimizerSession
from processes.optimizer.types import OptimizerCrashed, OptimizerError, ProcessExited, SolveResult
from processes.rounds.generator import GraphRound
from processes.sprt.tester import EloEstimate, SequentialTester, SPRTDecision, SPRTStatus, elo_from_wld
from validators import crossings, is_isomorphic, validate_drawing


class RunMode(str, Enum):
    HEAD_TO_HEAD = "head_to_head"
    CORPUS = "corpus"


class Outcome(str, Enum):
    WIN = "win"
    LOSS = "loss"
    DRAW = "draw"


class MatchAborted(Exception):
    """Fatal optimizer failure; names the optimizer and the stage that failed."""

    def __init__(self, optimizer: str, stage: str, cause: BaseException) -> None:
        super().__init__(f"optimizer {optimizer} failed during {stage}: {cause}")
        self.optimizer = optimizer
        self.stage = stage
        self.cause = cause


@dataclass
class MatchTally:
    """Win/loss/draw counts from the first optimizer's point of view."""

    wins: int = 0
    losses: int = 0
    draws: int = 0

    @property
    def games(self) -> int:
        return self.wins + self.losses + self.draws

    def record(self, outcome: Outcome) -> None:
        if outcome is Outcome.WIN:
            self.wins += 1
        elif outcome is Outcome.LOSS:
            self.losses += 1
        else:
            self.draws += 1


@dataclass
class SideResult:
    optimizer: str
    max_per_edge: int | None
    total_crossings: int | None = None
    duration_ms: int = 0
    diagnostics: list[str] = field(default_factory=list)
    graph: Graph | None = field(default=None, repr=False)

    @property
    def disqualified(self) -> bool:
        return self.max_per_edge is None


@dataclass
class RoundResult:
    index: int
    graph_name: str
    nodes: int
    edges: int
    sides: list[SideResult] = field(default_factory=list)
    baseline: int | None = None
    outcome: Outcome | None = None
    skipped: bool = False


@dataclass
class MatchReport:
    optimizers: list[str]
    tally: MatchTally
    rounds: list[RoundResult]
    status: SPRTStatus
    elo: EloEstimate
    verdict: str
    cancelled: bool = False
    seed: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "optimizers": self.optimizers,
            "wins": self.tally.wins,
            "losses": self.tally.losses,
            "draws": self.tally.draws,
            "rounds": len(self.rounds),
            "llr": self.status.llr,
            "decision": self.status.decision.value,
            "elo": list(self.elo),
            "verdict": self.verdict,
            "cancelled": self.cancelled,
            "seed": self.seed,
        }


RoundCallback = Callable[[RoundResult, MatchTally, SPRTStatus, EloEstimate], None]


def compare_scores(ours: float | None, theirs: float | None) -> Outcome:
    """Lower max-per-edge wins; a missing score counts as worst possible."""
    a = math.inf if ours is None else ours
    b = math.inf if theirs is None else theirs
    if a < b:
        return Outcome.WIN
    if a > b:
        return Outcome.LOSS
    return Outcome.DRAW


def verdict_for(status: SPRTStatus) -> str:
    if status.decision is SPRTDecision.ACCEPT_H1:
        return "H1"
    if status.decision is SPRTDecision.ACCEPT_H0:
        return "H0"
    return "inconclusive"


class MatchOrchestrator:
    """Drives rounds through one (corpus) or two (head-to-head) sessions.

    Rounds are strictly sequential. Within a round all sessions are solved
    concurrently and joined before anything is scored; the tally is only
    touched after the join.
    """

    def __init__(
        self,
        sessions: Sequence[OptimizerSession],
        rounds: Iterable[GraphRound],
        tester: SequentialTester,
        mode: RunMode = RunMode.HEAD_TO_HEAD,
        *,
        baseline: dict[str, int] | None = None,
        stop_on_decision: bool = True,
        logger: logging.Logger | None = None,
        on_round: RoundCallback | None = None,
        keep_graphs: bool = False,
    ) -> None:
        expected = 2 if mode is RunMode.HEAD_TO_HEAD else 1
        if len(sessions) != expected:
            raise ValueError(f"{mode.value} mode needs {expected} session(s), got {len(sessions)}")
        self.sessions = list(sessions)
        self.rounds = rounds
        self.tester = tester
        self.mode = mode
        self.baseline = baseline or {}
        self.stop_on_decision = stop_on_decision
        self.logger = logger or logging.getLogger("processes.orchestrator")
        self.on_round = on_round
        self.keep_graphs = keep_graphs

    async def run(self, cancel: asyncio.Event | None = None, *, seed: int | None = None) -> MatchReport:
        cancel = cancel or asyncio.Event()
        tally = MatchTally()
        records: list[RoundResult] = []
        status = SPRTStatus(0.0, SPRTDecision.CONTINUE)
        elo = EloEstimate(0.0, 0.0, 0.0)
        cancelled = False

        for rnd in self.rounds:
            if cancel.is_set():
                cancelled = True
                break
            outcomes = await self._dispatch_round(rnd, cancel)
            if outcomes is None:
                cancelled = True
                break
            record = await self._score_round(rnd, outcomes)
            records.append(record)
            if record.outcome is not None:
                tally.record(record.outcome)
            status = self.tester.status(tally.wins, tally.losses, tally.draws)
            elo = elo_from_wld(tally.wins, tally.losses, tally.draws)
            self.logger.info(
                json.dumps(
                    {
                        "event": "match_round",
                        "round": rnd.index,
                        "graph": rnd.name,
                        "scores": [s.max_per_edge for s in record.sides],
                        "baseline": record.baseline,
                        "outcome": record.outcome.value if record.outcome else None,
                        "skipped": record.skipped,
                        "tally": [tally.wins, tally.losses, tally.draws],
                        "llr": round(status.llr, 4),
                        "elo": [round(v, 1) for v in elo],
                    }
                )
            )
            if self.on_round is not None:
                self.on_round(record, tally, status, elo)
            if not self.keep_graphs:
                # release drawings once on_round has seen them
                for side in record.sides:
                    side.graph = None
            if self.stop_on_decision and status.decision is not SPRTDecision.CONTINUE:
                break

        report = MatchReport(
            optimizers=[s.label for s in self.sessions],
            tally=tally,
            rounds=records,
            status=status,
            elo=elo,
            verdict=verdict_for(status),
            cancelled=cancelled,
            seed=seed,
        )
        self.logger.info(json.dumps({"event": "match_finished", **report.to_dict()}))
        return report

    async def _dispatch_round(self, rnd: GraphRound, cancel: asyncio.Event) -> list[Any] | None:
        """Dispatch `rnd`; in corpus mode a process that exited between rounds
        is restarted and gets the same graph once more."""
        outcomes = await self._dispatch(rnd.graph, cancel)
        if outcomes is None or self.mode is not RunMode.CORPUS:
            return outcomes
        session, out = self.sessions[0], outcomes[0]
        if not (isinstance(out, ProcessExited) and not out.dispatched):
            return outcomes
        self.logger.info(
            json.dumps(
                {
                    "event": "optimizer_exited_between_rounds",
                    "optimizer": session.label,
                    "status": out.status,
                    "graph": rnd.name,
                }
            )
        )
        await self._recover(session, rnd, out)
        return await self._dispatch(rnd.graph, cancel)

    async def _dispatch(self, graph: Graph, cancel: asyncio.Event) -> list[Any] | None:
        """Join all sessions on `graph`, or return None if cancelled first."""
        join = asyncio.ensure_future(
            asyncio.gather(*(s.solve(graph) for s in self.sessions), return_exceptions=True)
        )
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({join, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not join.done():
                join.cancel()
        if join not in done:
            self.logger.warning(json.dumps({"event": "match_cancelled", "reason": "cancel requested mid-round"}))
            return None
        return join.result()

    async def _score_round(self, rnd: GraphRound, outcomes: list[Any]) -> RoundResult:
        record = RoundResult(rnd.index, rnd.name, len(rnd.graph.nodes), len(rnd.graph.edges))
        for session, out in zip(self.sessions, outcomes):
            if isinstance(out, OptimizerError):
                raise MatchAborted(session.label, "solve", out) from out
            if isinstance(out, BaseException):
                raise out
            if isinstance(out, ProcessExited):
                if self.mode is RunMode.HEAD_TO_HEAD:
                    crash = OptimizerCrashed(session.ident, out.status, "solve")
                    raise MatchAborted(session.label, "solve", crash)
                await self._recover(session, rnd, out)
                record.skipped = True
                return record
            record.sides.append(self._score_side(session, rnd, out))

        if self.mode is RunMode.HEAD_TO_HEAD:
            a, b = record.sides
            record.outcome = compare_scores(a.max_per_edge, b.max_per_edge)
        else:
            side = record.sides[0]
            record.baseline = self.baseline.get(rnd.name)
            if side.max_per_edge is not None and record.baseline is not None:
                record.outcome = compare_scores(side.max_per_edge, record.baseline)
        return record

    async def _recover(self, session: OptimizerSession, rnd: GraphRound, exited: ProcessExited) -> None:
        if exited.dispatched:
            self.logger.warning(
                "No graph was returned for %s by %s (exit status %s); restarting optimizer",
                rnd.name,
                session.label,
                exited.status,
            )
        try:
            await session.restart()
            await session.read_start()
        except OptimizerError as e:
            raise MatchAborted(session.label, "restart", e) from e

    def _score_side(self, session: OptimizerSession, rnd: GraphRound, result: SolveResult) -> SideResult:
        graph = result.final
        side = SideResult(optimizer=session.label, max_per_edge=None, duration_ms=result.duration_ms, graph=graph)

        check = validate_drawing(graph)
        if not check.valid:
            side.diagnostics.append(f"invalid drawing: {check}")
        if len(graph.nodes) != len(rnd.graph.nodes):
            side.diagnostics.append(
                f"node count mismatch: input has {len(rnd.graph.nodes)}, output has {len(graph.nodes)}"
            )
        if len(graph.edges) != len(rnd.graph.edges):
            side.diagnostics.append(
                f"edge count mismatch: input has {len(rnd.graph.edges)}, output has {len(graph.edges)}"
            )
        for msg in side.diagnostics:
            self.logger.warning("Graph %s from %s disqualified: %s", rnd.name, session.label, msg)

        if not is_isomorphic(rnd.graph, graph):
            self.logger.warning(
                "Graph %s from %s does not trivially match the input (relabelled or altered edges?)",
                rnd.name,
                session.label,
            )

        if side.diagnostics:
            return side
        result_crossings = crossings(graph)
        side.max_per_edge = result_crossings.max_per_edge
        side.total_crossings = result_crossings.total
        return side
