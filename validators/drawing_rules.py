"""Drawing validation rules for optimizer output.

Checks run in a fixed order and stop at the first violation:
node ids, coordinate bounds, overlapping nodes, edge endpoints, and finally
nodes lying on an unrelated edge.
"""

from __future__ import annotations

import numpy as np

from pipeline.graph import Graph
from validators.crossings import orientation
from validators.types import InvalidReason, ValidationResult


def _fail(reason: InvalidReason, detail: str) -> ValidationResult:
    return ValidationResult(valid=False, reason=reason, detail=detail)


def validate_drawing(graph: Graph) -> ValidationResult:
    """Validate a drawing and return the first violation found, if any."""
    n = len(graph.nodes)

    seen: set[int] = set()
    for node in graph.nodes:
        if not 0 <= node.id < n:
            return _fail(
                InvalidReason.NODE_ID_OUT_OF_RANGE,
                f"node id {node.id} outside 0..{n - 1}",
            )
        if node.id in seen:
            return _fail(InvalidReason.DUPLICATE_NODE_ID, f"node id {node.id} appears twice")
        seen.add(node.id)

    for node in graph.nodes:
        if not (0 <= node.x <= graph.width and 0 <= node.y <= graph.height):
            return _fail(
                InvalidReason.COORDINATE_OUT_OF_BOUNDS,
                f"node {node.id} at ({node.x}, {node.y}) outside [0, {graph.width}] x [0, {graph.height}]",
            )

    occupied: dict[tuple[int, int], int] = {}
    for node in graph.nodes:
        other = occupied.setdefault((node.x, node.y), node.id)
        if other != node.id:
            return _fail(
                InvalidReason.OVERLAPPING_NODES,
                f"nodes {other} and {node.id} both at ({node.x}, {node.y})",
            )

    for e in graph.edges:
        for end in (e.source, e.target):
            if end not in seen:
                return _fail(
                    InvalidReason.EDGE_ENDPOINT_OUT_OF_RANGE,
                    f"edge ({e.source}, {e.target}) references missing node {end}",
                )

    if not graph.nodes:
        return ValidationResult(valid=True)
    by_id = graph.node_by_id()
    xs = np.array([node.x for node in graph.nodes])
    ys = np.array([node.y for node in graph.nodes])
    for e in graph.edges:
        a, b = by_id[e.source], by_id[e.target]
        # Endpoints sit on the box boundary, so strict containment excludes them.
        inside = (
            (xs > min(a.x, b.x)) & (xs < max(a.x, b.x))
            & (ys > min(a.y, b.y)) & (ys < max(a.y, b.y))
        )
        for k in np.flatnonzero(inside):
            c = graph.nodes[int(k)]
            if orientation(a, b, c) == 0:
                return _fail(
                    InvalidReason.NODE_ON_EDGE,
                    f"node {c.id} at ({c.x}, {c.y}) lies on edge ({e.source}, {e.target}) "
                    f"from ({a.x}, {a.y}) to ({b.x}, {b.y})",
                )

    return ValidationResult(valid=True)


def is_valid(graph: Graph) -> bool:
    """Boolean wrapper over `validate_drawing`."""
    return validate_drawing(graph).valid


def is_isomorphic(a: Graph, b: Graph) -> bool:
    """Same-labelling check: equal sizes and identical normalised edge lists.

    Relabelled graphs are reported as different.
    """
    if len(a.nodes) != len(b.nodes) or len(a.edges) != len(b.edges):
        return False
    return sorted(e.normalized() for e in a.edges) == sorted(e.normalized() for e in b.edges)
