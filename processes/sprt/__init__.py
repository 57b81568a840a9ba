"""Sequential probability ratio test and Elo interval estimation."""

from .tester import (
    EloEstimate,
    SequentialTester,
    SPRTDecision,
    SPRTStatus,
    elo_from_wld,
    erf_inv,
    phi_inv,
)

__all__ = [
    "SequentialTester",
    "SPRTDecision",
    "SPRTStatus",
    "EloEstimate",
    "elo_from_wld",
    "erf_inv",
    "phi_inv",
]
