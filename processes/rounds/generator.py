from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from pipeline.graph import Edge, Graph, Node
from pipeline.ingest.corpus import collect_graphs, filter_graphs
from pipeline.io.codec import load_graph_file
from processes.orchestrator.models import GeneratorConfig
from validators import validate_drawing


@dataclass
class GraphRound:
    index: int
    name: str
    graph: Graph


class RoundGenerator:
    """Seeded source of random G(n, p) drawings on an integer lattice.

    Layouts are rejection-sampled until they pass `validate_drawing`, so
    every instance handed to an optimizer is itself a valid drawing.
    """

    def __init__(self, seed: int | None = None, settings: GeneratorConfig | None = None) -> None:
        self.settings = settings or GeneratorConfig()
        if seed is None:
            seed = int(np.random.SeedSequence().generate_state(1)[0])
        self.seed = seed
        self.rng = np.random.default_rng(seed)

    def _edges(self, n: int, p: float) -> list[Edge]:
        src, dst = np.triu_indices(n, k=1)
        mask = self.rng.random(src.shape[0]) < p
        return [Edge(int(s), int(t)) for s, t in zip(src[mask], dst[mask])]

    def _layout(self, n: int) -> list[Node]:
        limit = self.settings.coordinate_limit
        cells = self.rng.choice(limit * limit, size=n, replace=False)
        return [Node(i, int(c % limit), int(c // limit)) for i, c in enumerate(cells)]

    def random_graph(self) -> Graph:
        s = self.settings
        n = int(self.rng.integers(s.min_nodes, s.max_nodes))
        p = float(self.rng.uniform(s.min_edge_probability, s.max_edge_probability))
        edges = self._edges(n, p)
        for _ in range(s.max_attempts):
            graph = Graph(nodes=self._layout(n), edges=edges, width=s.width, height=s.height)
            if validate_drawing(graph).valid:
                return graph
        raise RuntimeError(f"no valid layout for {n} nodes after {s.max_attempts} attempts")

    def rounds(self, limit: int) -> Iterator[GraphRound]:
        for index in range(limit):
            yield GraphRound(index, f"random-{index}", self.random_graph())


class CorpusRounds:
    """Graph files from a corpus directory, in sorted name order."""

    def __init__(self, graphs_dir: Path, filter: str | None = None, skip_to: str | None = None) -> None:
        self.graphs_dir = graphs_dir
        entries = filter_graphs(collect_graphs(graphs_dir), filter)
        if not entries:
            raise FileNotFoundError(f"no graphs found in {graphs_dir}")
        self.total = len(entries)
        indexed = list(enumerate(entries))
        if skip_to:
            while indexed and skip_to not in indexed[0][1][1]:
                indexed.pop(0)
        self.entries = indexed

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[GraphRound]:
        for index, (path, name) in self.entries:
            yield GraphRound(index, name, load_graph_file(path))
