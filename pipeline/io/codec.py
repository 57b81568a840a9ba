"""Wire codec for graphs: one compact JSON object per line."""

from __future__ import annotations

import json
from pathlib import Path

from jsonschema import ValidationError

from pipeline.graph import Graph
from pipeline.io.files import write_json
from pipeline.io.validate import schema_validator, validate_obj


class GraphDecodeError(ValueError):
    """Raised when a payload is not valid JSON or does not match the graph schema."""


def encode_graph(graph: Graph) -> str:
    return json.dumps(graph.to_dict(), separators=(",", ":"))


def decode_graph(text: str) -> Graph:
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as e:
        raise GraphDecodeError(f"malformed JSON: {e}") from e
    try:
        validate_obj(schema_validator("graph"), obj)
    except ValidationError as e:
        raise GraphDecodeError(f"graph schema violation: {e.message}") from e
    return Graph.from_dict(obj)


def load_graph_file(path: Path) -> Graph:
    return decode_graph(path.read_text(encoding="utf-8"))


def save_graph_file(graph: Graph, path: Path) -> None:
    write_json(graph.to_dict(), path)
