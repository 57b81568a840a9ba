from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DEFAULT_EXTENT = 1_000_000


@dataclass
class Node:
    id: int
    x: int
    y: int


@dataclass
class Point:
    id: int
    x: int
    y: int


@dataclass
class Edge:
    source: int
    target: int

    def normalized(self) -> tuple[int, int]:
        return (min(self.source, self.target), max(self.source, self.target))


@dataclass
class Graph:
    """A straight-line drawing: integer node coordinates plus an edge list.

    Edges reference node ids, not list positions. `points` is carried through
    the wire format untouched; scoring ignores it.
    """

    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    points: list[Point] = field(default_factory=list)
    width: int = DEFAULT_EXTENT
    height: int = DEFAULT_EXTENT

    def node_by_id(self) -> dict[int, Node]:
        return {n.id: n for n in self.nodes}

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [{"id": n.id, "x": n.x, "y": n.y} for n in self.nodes],
            "edges": [{"source": e.source, "target": e.target} for e in self.edges],
            "points": [{"id": p.id, "x": p.x, "y": p.y} for p in self.points],
            "width": self.width,
            "height": self.height,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Graph:
        return cls(
            nodes=[Node(int(n["id"]), int(n["x"]), int(n["y"])) for n in d.get("nodes", [])],
            edges=[Edge(int(e["source"]), int(e["target"])) for e in d.get("edges", [])],
            points=[Point(int(p["id"]), int(p["x"]), int(p["y"])) for p in d.get("points") or []],
            width=int(d.get("width", DEFAULT_EXTENT)),
            height=int(d.get("height", DEFAULT_EXTENT)),
        )
