from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from pathlib import Path

import pandas as pd

from pipeline.graph import Graph
from pipeline.io.codec import save_graph_file
from pipeline.io.files import append_csv, ensure_dir
from processes.orchestrator.core import RoundResult

STATS_COLUMNS = ["optimizer", "graph", "max_per_edge", "duration_ms", "unix_timestamp"]


@dataclass
class GraphRunStats:
    optimizer: str
    graph: str
    max_per_edge: int | None
    duration_ms: int
    unix_timestamp: int


def runs_from_round(record: RoundResult, timestamp: int | None = None) -> list[GraphRunStats]:
    """Rows for every side that produced a graph; skipped rounds yield nothing."""
    ts = int(time.time()) if timestamp is None else timestamp
    return [
        GraphRunStats(side.optimizer, record.graph_name, side.max_per_edge, side.duration_ms, ts)
        for side in record.sides
    ]


def _frame(runs: Iterable[GraphRunStats]) -> pd.DataFrame:
    df = pd.DataFrame([asdict(r) for r in runs], columns=STATS_COLUMNS)
    df["max_per_edge"] = pd.to_numeric(df["max_per_edge"], errors="coerce").astype("Int64")
    return df


def write_runs(stats_dir: Path, team: str, runs: Iterable[GraphRunStats]) -> pd.DataFrame:
    """Append runs to `<stats_dir>/<team>.csv` and return the rows written."""
    df = _frame(runs)
    if not df.empty:
        append_csv(df, stats_dir / f"{team.strip('/')}.csv")
    return df


def read_runs(path: Path) -> pd.DataFrame:
    if path.stat().st_size == 0:
        return _frame([])
    df = pd.read_csv(path, dtype={"optimizer": str, "graph": str})
    missing = set(STATS_COLUMNS) - set(df.columns)
    if missing:
        raise ValueError(f"stats file {path} missing columns: {sorted(missing)}")
    df["max_per_edge"] = pd.to_numeric(df["max_per_edge"], errors="coerce").astype("Int64")
    return df[STATS_COLUMNS]


def read_all_runs(stats_dir: Path) -> dict[str, pd.DataFrame]:
    """Every team's runs, keyed by team name in sorted order."""
    if not stats_dir.is_dir():
        return {}
    return {path.stem: read_runs(path) for path in sorted(stats_dir.glob("*.csv"))}


def best_scores(frames: dict[str, pd.DataFrame] | pd.DataFrame) -> dict[str, int]:
    """Lowest valid max-per-edge per graph across all given runs."""
    if isinstance(frames, dict):
        parts = [f for f in frames.values() if not f.empty]
        if not parts:
            return {}
        df = pd.concat(parts, ignore_index=True)
    else:
        df = frames
    valid = df.dropna(subset=["max_per_edge"])
    if valid.empty:
        return {}
    best = valid.groupby("graph")["max_per_edge"].min()
    return {str(graph): int(score) for graph, score in best.items()}


def saved_graph_path(saved_dir: Path, team: str, graph_name: str) -> Path:
    path = saved_dir / team.strip("/") / graph_name.lstrip("/")
    return path.with_suffix(".json")


def save_graph(saved_dir: Path, team: str, graph_name: str, graph: Graph) -> Path:
    path = saved_graph_path(saved_dir, team, graph_name)
    ensure_dir(path.parent)
    save_graph_file(graph, path)
    return path
