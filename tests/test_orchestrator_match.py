"""Tests for the match orchestrator: scoring gates, failures, cancellation, SPRT stop."""

import asyncio
import logging

import pytest

from pipeline.graph import Edge, Graph, Node
from processes.optimizer.session import OptimizerSession
from processes.optimizer.types import OptimizerCrashed, ProcessExited, ProtocolError, ProtocolErrorKind, SolveResult
from processes.orchestrator.core import (
    MatchAborted,
    MatchOrchestrator,
    Outcome,
    RunMode,
    compare_scores,
)
from processes.orchestrator.models import GeneratorConfig
from processes.rounds.generator import GraphRound, RoundGenerator
from processes.sprt import SequentialTester, SPRTDecision
from tests.fixtures.graphs import (
    make_graph,
    six_node_better,
    six_node_instance,
    six_node_worse,
    square_diagonals,
    square_sides,
)


class FakeSession:
    """Stands in for OptimizerSession; `respond(graph, call_index)` builds each answer."""

    def __init__(self, label, respond):
        self.label = label
        self.ident = label
        self.respond = respond
        self.calls = 0
        self.restarts = 0
        self.starts = 0

    async def solve(self, graph):
        self.calls += 1
        out = self.respond(graph, self.calls)
        if asyncio.iscoroutine(out):
            out = await out
        if isinstance(out, BaseException):
            raise out
        if isinstance(out, ProcessExited):
            return out
        return SolveResult(graphs=[out], duration_ms=1)

    async def restart(self):
        self.restarts += 1

    async def read_start(self):
        self.starts += 1
        return self.label


def echo(graph, _):
    return graph


def fixed_rounds(graph_factory, n):
    return (GraphRound(i, f"fixed-{i}", graph_factory()) for i in range(n))


def run_match(orchestrator, cancel=None):
    return asyncio.run(orchestrator.run(cancel))


class TestCompareScores:
    def test_lower_wins(self):
        assert compare_scores(1, 2) is Outcome.WIN
        assert compare_scores(2, 1) is Outcome.LOSS
        assert compare_scores(3, 3) is Outcome.DRAW

    def test_missing_score_is_worst(self):
        assert compare_scores(None, 10**9) is Outcome.LOSS
        assert compare_scores(0, None) is Outcome.WIN
        assert compare_scores(None, None) is Outcome.DRAW


class TestSanityGates:
    def test_invalid_drawing_is_sentinel_loss(self, caplog):
        def overlapping(graph, _):
            return Graph(nodes=[Node(n.id, 0, 0) for n in graph.nodes], edges=graph.edges)

        orch = MatchOrchestrator(
            [FakeSession("bad", overlapping), FakeSession("good", echo)],
            fixed_rounds(square_diagonals, 1),
            SequentialTester(),
        )
        report = run_match(orch)
        record = report.rounds[0]
        assert record.sides[0].disqualified
        assert "invalid drawing" in record.sides[0].diagnostics[0]
        assert record.outcome is Outcome.LOSS
        assert (report.tally.wins, report.tally.losses) == (0, 1)
        assert any("disqualified" in r.getMessage() for r in caplog.records)

    def test_both_invalid_is_draw(self):
        def wrong_size(graph, _):
            return make_graph([(0, 0), (5, 5)], [(0, 1), (0, 1)])

        orch = MatchOrchestrator(
            [FakeSession("a", wrong_size), FakeSession("b", wrong_size)],
            fixed_rounds(square_diagonals, 1),
            SequentialTester(),
        )
        report = run_match(orch)
        assert report.rounds[0].outcome is Outcome.DRAW
        assert report.tally.draws == 1

    def test_node_count_mismatch_disqualifies(self):
        def dropped_node(graph, _):
            return Graph(nodes=graph.nodes[:-1], edges=[])

        orch = MatchOrchestrator(
            [FakeSession("a", echo), FakeSession("b", dropped_node)],
            fixed_rounds(square_sides, 1),
            SequentialTester(),
        )
        record = run_match(orch).rounds[0]
        assert any("node count mismatch" in d for d in record.sides[1].diagnostics)
        assert record.outcome is Outcome.WIN

    def test_isomorphism_mismatch_only_warns(self, caplog):
        caplog.set_level(logging.WARNING)

        def rewired(graph, _):
            return Graph(nodes=graph.nodes, edges=[Edge(0, 1), Edge(2, 3)])

        orch = MatchOrchestrator(
            [FakeSession("a", rewired), FakeSession("b", echo)],
            fixed_rounds(square_diagonals, 1),
            SequentialTester(),
        )
        record = run_match(orch).rounds[0]
        assert record.sides[0].max_per_edge == 0
        assert record.sides[1].max_per_edge == 1
        assert record.outcome is Outcome.WIN
        assert any("does not trivially match" in r.getMessage() for r in caplog.records)


class TestFailures:
    def test_crash_is_fatal_head_to_head(self):
        orch = MatchOrchestrator(
            [FakeSession("a", echo), FakeSession("b", lambda g, i: ProcessExited(9))],
            fixed_rounds(square_sides, 3),
            SequentialTester(),
        )
        with pytest.raises(MatchAborted) as exc_info:
            run_match(orch)
        assert exc_info.value.optimizer == "b"
        assert isinstance(exc_info.value.cause, OptimizerCrashed)
        assert exc_info.value.cause.status == 9

    def test_protocol_error_is_fatal(self):
        error = ProtocolError("a", ProtocolErrorKind.MALFORMED_GRAPH, "{oops")
        orch = MatchOrchestrator(
            [FakeSession("a", lambda g, i: error), FakeSession("b", echo)],
            fixed_rounds(square_sides, 3),
            SequentialTester(),
        )
        with pytest.raises(MatchAborted) as exc_info:
            run_match(orch)
        assert exc_info.value.cause is error
        assert exc_info.value.stage == "solve"

    def test_corpus_crash_restarts_and_skips(self):
        def crash_on_first(graph, i):
            return ProcessExited(1) if i == 1 else graph

        session = FakeSession("solo", crash_on_first)
        orch = MatchOrchestrator(
            [session],
            fixed_rounds(square_diagonals, 3),
            SequentialTester(),
            RunMode.CORPUS,
            baseline={"fixed-1": 5, "fixed-2": 1},
            stop_on_decision=False,
        )
        report = run_match(orch)
        assert session.restarts == 1 and session.starts == 1
        assert report.rounds[0].skipped
        assert report.rounds[1].outcome is Outcome.WIN
        assert report.rounds[2].outcome is Outcome.DRAW
        assert (report.tally.wins, report.tally.losses, report.tally.draws) == (1, 0, 1)

    def test_corpus_exit_between_rounds_resends_graph(self):
        def gone_before_second(graph, i):
            return ProcessExited(0, dispatched=False) if i == 2 else graph

        session = FakeSession("solo", gone_before_second)
        orch = MatchOrchestrator(
            [session],
            fixed_rounds(square_diagonals, 3),
            SequentialTester(),
            RunMode.CORPUS,
            baseline={"fixed-0": 1, "fixed-1": 1, "fixed-2": 1},
            stop_on_decision=False,
        )
        report = run_match(orch)
        assert session.restarts == 1 and session.starts == 1
        assert session.calls == 4
        assert not any(r.skipped for r in report.rounds)
        assert report.tally.draws == 3

    def test_one_shot_optimizer_scores_every_graph(self, stub, caplog):
        caplog.set_level(logging.WARNING)
        rounds = [
            GraphRound(0, "g0", square_diagonals()),
            GraphRound(1, "g1", square_sides()),
            GraphRound(2, "g2", square_diagonals()),
            GraphRound(3, "g3", square_sides()),
        ]

        async def scenario():
            async with OptimizerSession(stub("echo-then-exit"), 1, shutdown_timeout=2.0) as session:
                await session.read_start()
                orch = MatchOrchestrator(
                    [session], rounds, SequentialTester(), RunMode.CORPUS, stop_on_decision=False
                )
                return await orch.run()

        report = asyncio.run(scenario())
        assert [r.skipped for r in report.rounds] == [False] * 4
        assert [r.sides[0].max_per_edge for r in report.rounds] == [1, 0, 1, 0]
        assert not any("No graph was returned" in r.getMessage() for r in caplog.records)

    def test_corpus_without_baseline_is_untallied(self):
        orch = MatchOrchestrator(
            [FakeSession("solo", echo)], fixed_rounds(square_diagonals, 2), SequentialTester(), RunMode.CORPUS
        )
        report = run_match(orch)
        assert [r.outcome for r in report.rounds] == [None, None]
        assert report.tally.games == 0

    def test_wrong_session_count(self):
        with pytest.raises(ValueError):
            MatchOrchestrator([FakeSession("a", echo)], [], SequentialTester(), RunMode.HEAD_TO_HEAD)


class TestDrawingRetention:
    def test_drawings_released_after_callback(self):
        seen = []
        orch = MatchOrchestrator(
            [FakeSession("a", echo), FakeSession("b", echo)],
            fixed_rounds(square_sides, 2),
            SequentialTester(),
            on_round=lambda record, *_: seen.append([s.graph for s in record.sides]),
        )
        report = run_match(orch)
        assert all(g == square_sides() for graphs in seen for g in graphs)
        assert all(s.graph is None for r in report.rounds for s in r.sides)

    def test_keep_graphs_retains_drawings(self):
        orch = MatchOrchestrator(
            [FakeSession("solo", echo)],
            fixed_rounds(square_sides, 2),
            SequentialTester(),
            RunMode.CORPUS,
            keep_graphs=True,
        )
        report = run_match(orch)
        assert all(r.sides[0].graph == square_sides() for r in report.rounds)


class TestCancellation:
    def test_cancel_before_first_round(self):
        async def scenario():
            cancel = asyncio.Event()
            cancel.set()
            orch = MatchOrchestrator(
                [FakeSession("a", echo), FakeSession("b", echo)], fixed_rounds(square_sides, 5), SequentialTester()
            )
            return await orch.run(cancel)

        report = asyncio.run(scenario())
        assert report.cancelled
        assert report.rounds == []

    def test_cancel_mid_round_keeps_completed_rounds(self):
        async def stall_on_third(graph, i):
            if i == 3:
                await asyncio.Event().wait()
            return graph

        async def scenario():
            cancel = asyncio.Event()
            orch = MatchOrchestrator(
                [FakeSession("a", echo), FakeSession("b", stall_on_third)],
                fixed_rounds(square_sides, 10),
                SequentialTester(),
            )
            asyncio.get_running_loop().call_later(0.2, cancel.set)
            return await orch.run(cancel)

        report = asyncio.run(scenario())
        assert report.cancelled
        assert len(report.rounds) == 2
        assert report.tally.draws == 2
        assert report.verdict == "inconclusive"


class TestStopping:
    def test_stops_on_h1_with_fake_sessions(self):
        def better_three_of_four(graph, i):
            return six_node_worse() if i % 4 == 0 else six_node_better()

        seen = []
        orch = MatchOrchestrator(
            [FakeSession("b", better_three_of_four), FakeSession("a", echo)],
            fixed_rounds(six_node_instance, 1000),
            SequentialTester(elo0=0, elo1=10),
            on_round=lambda record, tally, status, elo: seen.append(status.llr),
        )
        report = run_match(orch)
        assert report.verdict == "H1"
        assert report.status.decision is SPRTDecision.ACCEPT_H1
        assert len(report.rounds) < 1000
        assert report.tally.wins > report.tally.losses
        assert seen[-1] >= SequentialTester().upper_bound

    def test_budget_exhaustion_is_inconclusive(self):
        orch = MatchOrchestrator(
            [FakeSession("a", echo), FakeSession("b", echo)],
            RoundGenerator(seed=3, settings=GeneratorConfig(min_nodes=5, max_nodes=8)).rounds(4),
            SequentialTester(),
        )
        report = run_match(orch)
        assert len(report.rounds) == 4
        assert report.tally.draws == 4
        assert report.verdict == "inconclusive"


class TestEndToEnd:
    def test_stronger_optimizer_wins_match(self, stub):
        """B beats the identity optimizer three rounds in four and the SPRT accepts H1."""

        async def scenario():
            sessions = [
                OptimizerSession(stub("alternate"), 1, shutdown_timeout=2.0),
                OptimizerSession(stub("identity"), 2, shutdown_timeout=2.0),
            ]
            try:
                for s in sessions:
                    await s.spawn()
                orch = MatchOrchestrator(sessions, fixed_rounds(six_node_instance, 1000), SequentialTester(0, 10))
                return await orch.run()
            finally:
                for s in sessions:
                    await s.close()

        report = asyncio.run(scenario())
        assert report.optimizers == ["alternate", "identity"]
        assert report.verdict == "H1"
        assert report.tally.losses > 0
        assert report.tally.wins > report.tally.losses
        assert len(report.rounds) < 1000
        assert report.status.llr >= SequentialTester().upper_bound
