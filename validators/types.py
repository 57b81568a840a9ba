"""Types shared by the drawing validators and the crossing counter."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class InvalidReason(Enum):
    """Enumerated error codes for drawing validation failures."""

    NODE_ID_OUT_OF_RANGE = "node_id_out_of_range"
    DUPLICATE_NODE_ID = "duplicate_node_id"
    COORDINATE_OUT_OF_BOUNDS = "coordinate_out_of_bounds"
    OVERLAPPING_NODES = "overlapping_nodes"
    EDGE_ENDPOINT_OUT_OF_RANGE = "edge_endpoint_out_of_range"
    NODE_ON_EDGE = "node_on_edge"


@dataclass
class ValidationResult:
    """Result of drawing validation. Only the first violation is reported."""

    valid: bool
    reason: InvalidReason | None = None
    detail: str = ""

    def __str__(self) -> str:
        if self.valid:
            return "valid"
        return f"{self.reason.value if self.reason else 'invalid'}: {self.detail}"


@dataclass
class CrossingResult:
    """Crossing statistics for one drawing; `max_per_edge` is the score."""

    total: int = 0
    max_per_edge: int = 0
    per_edge: list[int] = field(default_factory=list)
