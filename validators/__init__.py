"""Graph drawing scoring and validation."""

from .crossings import crossings, orientation, segments_cross
from .drawing_rules import is_isomorphic, is_valid, validate_drawing
from .types import CrossingResult, InvalidReason, ValidationResult

__all__ = [
    "crossings",
    "orientation",
    "segments_cross",
    "validate_drawing",
    "is_valid",
    "is_isomorphic",
    "CrossingResult",
    "ValidationResult",
    "InvalidReason",
]
