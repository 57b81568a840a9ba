from __future__ import annotations

from typing import Protocol

import numpy as np

from pipeline.graph import Graph
from validators.types import CrossingResult

# Coordinates below this bound keep coordinate differences under 2**31, so
# every cross product fits in int64.
_INT64_SAFE = 2**30


class _XY(Protocol):
    x: int
    y: int


def orientation(a: _XY, b: _XY, c: _XY) -> int:
    """Signed cross product of (b - a) and (c - a); zero means collinear."""
    return (b.x - a.x) * (c.y - a.y) - (b.y - a.y) * (c.x - a.x)


def segments_cross(p1: _XY, q1: _XY, p2: _XY, q2: _XY) -> bool:
    """True when the two segments properly cross (touching does not count)."""
    o1 = orientation(p1, q1, p2)
    o2 = orientation(p1, q1, q2)
    o3 = orientation(p2, q2, p1)
    o4 = orientation(p2, q2, q1)
    return o1 * o2 < 0 and o3 * o4 < 0


def _endpoints(graph: Graph) -> tuple[list[tuple[int, int]], list[tuple[int, int, int, int]]]:
    by_id = graph.node_by_id()
    ids: list[tuple[int, int]] = []
    coords: list[tuple[int, int, int, int]] = []
    for e in graph.edges:
        try:
            a, b = by_id[e.source], by_id[e.target]
        except KeyError as exc:
            raise ValueError(f"edge ({e.source}, {e.target}) references unknown node {exc.args[0]}") from exc
        ids.append((e.source, e.target))
        coords.append((a.x, a.y, b.x, b.y))
    return ids, coords


def _count_exact(ids, coords) -> list[int]:
    per_edge = [0] * len(ids)
    for i in range(len(ids)):
        s1, t1 = ids[i]
        ax, ay, bx, by = coords[i]
        for j in range(i + 1, len(ids)):
            s2, t2 = ids[j]
            if s1 in (s2, t2) or t1 in (s2, t2):
                continue
            cx, cy, dx, dy = coords[j]
            o1 = (bx - ax) * (cy - ay) - (by - ay) * (cx - ax)
            o2 = (bx - ax) * (dy - ay) - (by - ay) * (dx - ax)
            o3 = (dx - cx) * (ay - cy) - (dy - cy) * (ax - cx)
            o4 = (dx - cx) * (by - cy) - (dy - cy) * (bx - cx)
            if o1 * o2 < 0 and o3 * o4 < 0:
                per_edge[i] += 1
                per_edge[j] += 1
    return per_edge


def _count_vectorized(ids, coords) -> list[int]:
    ends = np.asarray(ids, dtype=np.int64)
    c = np.asarray(coords, dtype=np.int64)
    ax, ay, bx, by = c[:, 0], c[:, 1], c[:, 2], c[:, 3]
    per_edge = np.zeros(len(ids), dtype=np.int64)
    for i in range(len(ids) - 1):
        j = slice(i + 1, None)
        s1, t1 = ends[i]
        adjacent = (ends[j, 0] == s1) | (ends[j, 0] == t1) | (ends[j, 1] == s1) | (ends[j, 1] == t1)
        dx1, dy1 = bx[i] - ax[i], by[i] - ay[i]
        o1 = np.sign(dx1 * (ay[j] - ay[i]) - dy1 * (ax[j] - ax[i]))
        o2 = np.sign(dx1 * (by[j] - ay[i]) - dy1 * (bx[j] - ax[i]))
        dx2, dy2 = bx[j] - ax[j], by[j] - ay[j]
        o3 = np.sign(dx2 * (ay[i] - ay[j]) - dy2 * (ax[i] - ax[j]))
        o4 = np.sign(dx2 * (by[i] - ay[j]) - dy2 * (bx[i] - ax[j]))
        hit = (o1 * o2 < 0) & (o3 * o4 < 0) & ~adjacent
        n = int(hit.sum())
        if n:
            per_edge[i] += n
            per_edge[j] += hit
    return [int(v) for v in per_edge]


def crossings(graph: Graph) -> CrossingResult:
    """Count proper crossings over all pairs of non-adjacent edges.

    Each crossing adds one to the running total and one to the counter of
    both edges involved. O(E^2); the pair loop runs on int64 arrays when
    all coordinates fit in 30 bits and on Python ints otherwise.
    """
    ids, coords = _endpoints(graph)
    if len(ids) < 2:
        return CrossingResult(total=0, max_per_edge=0, per_edge=[0] * len(ids))
    bound = max(abs(v) for quad in coords for v in quad)
    per_edge = _count_vectorized(ids, coords) if bound < _INT64_SAFE else _count_exact(ids, coords)
    return CrossingResult(total=sum(per_edge) // 2, max_per_edge=max(per_edge), per_edge=per_edge)
