"""Tests for random instance generation and corpus round discovery."""

from pathlib import Path

import pytest

from pipeline.io.codec import save_graph_file
from processes.orchestrator.models import GeneratorConfig
from processes.rounds import generator as generator_mod
from processes.rounds.generator import CorpusRounds, RoundGenerator
from tests.fixtures.graphs import square_diagonals, square_sides
from validators import is_valid
from validators.types import InvalidReason, ValidationResult


class TestRoundGenerator:
    def test_same_seed_same_instances(self):
        a = [r.graph for r in RoundGenerator(seed=42).rounds(3)]
        b = [r.graph for r in RoundGenerator(seed=42).rounds(3)]
        assert a == b

    def test_different_seeds_differ(self):
        assert RoundGenerator(seed=1).random_graph() != RoundGenerator(seed=2).random_graph()

    def test_seed_recorded_when_not_given(self):
        gen = RoundGenerator()
        assert isinstance(gen.seed, int)
        replay = RoundGenerator(seed=gen.seed)
        assert gen.random_graph() == replay.random_graph()

    def test_instances_respect_settings(self):
        settings = GeneratorConfig(min_nodes=10, max_nodes=20, coordinate_limit=50, width=100, height=100)
        for rnd in RoundGenerator(seed=7, settings=settings).rounds(10):
            g = rnd.graph
            assert 10 <= len(g.nodes) < 20
            assert [n.id for n in g.nodes] == list(range(len(g.nodes)))
            assert len({(n.x, n.y) for n in g.nodes}) == len(g.nodes)
            assert all(0 <= n.x < 50 and 0 <= n.y < 50 for n in g.nodes)
            assert all(e.source < e.target for e in g.edges)
            assert (g.width, g.height) == (100, 100)
            assert is_valid(g)

    def test_round_names_and_indices(self):
        rounds = list(RoundGenerator(seed=0).rounds(3))
        assert [(r.index, r.name) for r in rounds] == [(0, "random-0"), (1, "random-1"), (2, "random-2")]

    def test_gives_up_after_max_attempts(self, monkeypatch):
        monkeypatch.setattr(
            generator_mod,
            "validate_drawing",
            lambda g: ValidationResult(valid=False, reason=InvalidReason.NODE_ON_EDGE),
        )
        gen = RoundGenerator(seed=0, settings=GeneratorConfig(max_attempts=3))
        with pytest.raises(RuntimeError, match="3 attempts"):
            gen.random_graph()


class TestGeneratorConfig:
    def test_rejects_inverted_node_range(self):
        with pytest.raises(ValueError):
            GeneratorConfig(min_nodes=30, max_nodes=20)

    def test_rejects_lattice_too_small(self):
        with pytest.raises(ValueError):
            GeneratorConfig(min_nodes=2, max_nodes=30, coordinate_limit=5)


@pytest.fixture
def corpus(tmp_path: Path) -> Path:
    root = tmp_path / "graphs"
    save_graph_file(square_diagonals(), root / "b.json")
    save_graph_file(square_sides(), root / "a.json")
    save_graph_file(square_sides(), root / "sub" / "c.json")
    return root


class TestCorpusRounds:
    def test_sorted_recursive_names(self, corpus: Path):
        rounds = list(CorpusRounds(corpus))
        assert [r.name for r in rounds] == ["/a.json", "/b.json", "/sub/c.json"]
        assert [r.index for r in rounds] == [0, 1, 2]
        assert rounds[1].graph == square_diagonals()

    def test_filter(self, corpus: Path):
        assert [r.name for r in CorpusRounds(corpus, filter="sub")] == ["/sub/c.json"]

    def test_skip_to_keeps_corpus_index(self, corpus: Path):
        rounds = list(CorpusRounds(corpus, skip_to="b.json"))
        assert [(r.index, r.name) for r in rounds] == [(1, "/b.json"), (2, "/sub/c.json")]

    def test_empty_selection(self, corpus: Path):
        with pytest.raises(FileNotFoundError):
            CorpusRounds(corpus, filter="nothing-matches")

    def test_missing_directory(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            CorpusRounds(tmp_path / "absent")
