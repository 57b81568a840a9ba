from __future__ import annotations

from pathlib import Path


def collect_graphs(root: Path) -> list[tuple[Path, str]]:
    """All files under `root`, recursively, as (path, "/relative/name") sorted by name."""
    if not root.is_dir():
        raise FileNotFoundError(f"graph corpus directory not found: {root}")
    found = [
        (path, "/" + path.relative_to(root).as_posix())
        for path in root.rglob("*")
        if path.is_file()
    ]
    return sorted(found, key=lambda item: item[1])


def filter_graphs(graphs: list[tuple[Path, str]], pattern: str | None) -> list[tuple[Path, str]]:
    if not pattern:
        return graphs
    return [g for g in graphs if pattern in g[1]]
