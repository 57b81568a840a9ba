from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple


class SPRTDecision(str, Enum):
    CONTINUE = "continue"
    ACCEPT_H0 = "H0"
    ACCEPT_H1 = "H1"


class SPRTStatus(NamedTuple):
    llr: float
    decision: SPRTDecision


class EloEstimate(NamedTuple):
    low: float
    mid: float
    high: float


def _expected_score(x: float) -> float:
    return 1.0 / (1.0 + 10.0 ** (-x / 400.0))


@dataclass(frozen=True)
class _Probabilities:
    win: float
    loss: float
    draw: float

    @classmethod
    def from_elo(cls, elo: float, draw_elo: float) -> _Probabilities:
        win = _expected_score(-draw_elo + elo)
        loss = _expected_score(-draw_elo - elo)
        return cls(win=win, loss=loss, draw=1.0 - win - loss)


@dataclass(frozen=True)
class SequentialTester:
    """Wald's SPRT over win/loss/draw counts for two Elo hypotheses.

    `elo0` is the null hypothesis, `elo1` the alternative. `alpha` and `beta`
    bound the false-accept rates of H1 and H0 respectively.
    """

    elo0: float = 0.0
    elo1: float = 10.0
    alpha: float = 0.05
    beta: float = 0.05
    lower_bound: float = field(init=False)
    upper_bound: float = field(init=False)

    def __post_init__(self) -> None:
        if not (0.0 < self.alpha < 1.0 and 0.0 < self.beta < 1.0):
            raise ValueError(f"alpha and beta must be in (0, 1), got {self.alpha}, {self.beta}")
        object.__setattr__(self, "lower_bound", math.log(self.beta / (1.0 - self.alpha)))
        object.__setattr__(self, "upper_bound", math.log((1.0 - self.beta) / self.alpha))

    def llr(self, wins: int, losses: int, draws: int) -> float:
        if wins == 0 or losses == 0:
            return 0.0
        total = wins + losses + draws
        p_win, p_loss = wins / total, losses / total
        draw_elo = 200.0 * math.log10((1.0 - 1.0 / p_win) * (1.0 - 1.0 / p_loss))
        p0 = _Probabilities.from_elo(self.elo0, draw_elo)
        p1 = _Probabilities.from_elo(self.elo1, draw_elo)
        llr = 0.0
        for count, a, b in (
            (wins, p1.win, p0.win),
            (losses, p1.loss, p0.loss),
            (draws, p1.draw, p0.draw),
        ):
            # an empty bucket contributes nothing, even where both models give it zero mass
            if count:
                llr += count * math.log(a / b)
        return llr

    def status(self, wins: int, losses: int, draws: int) -> SPRTStatus:
        llr = self.llr(wins, losses, draws)
        if llr >= self.upper_bound:
            return SPRTStatus(llr, SPRTDecision.ACCEPT_H1)
        if llr <= self.lower_bound:
            return SPRTStatus(llr, SPRTDecision.ACCEPT_H0)
        return SPRTStatus(llr, SPRTDecision.CONTINUE)


# Polynomial coefficients for erf_inv (M. Giles, "Approximating the erfinv function").
_ERFINV_CENTRAL = (
    2.81022636e-08,
    3.43273939e-07,
    -3.5233877e-06,
    -4.39150654e-06,
    0.00021858087,
    -0.00125372503,
    -0.00417768164,
    0.246640727,
    1.50140941,
)
_ERFINV_TAIL = (
    -0.000200214257,
    0.000100950558,
    0.00134934322,
    -0.00367342844,
    0.00573950773,
    -0.0076224613,
    0.00943887047,
    1.00167406,
    2.83297682,
)


def erf_inv(x: float) -> float:
    if not -1.0 < x < 1.0:
        if x in (-1.0, 1.0):
            return math.copysign(math.inf, x)
        raise ValueError(f"erf_inv domain is (-1, 1), got {x}")
    w = -math.log((1.0 - x) * (1.0 + x))
    if w < 5.0:
        w -= 2.5
        coeffs = _ERFINV_CENTRAL
    else:
        w = math.sqrt(w) - 3.0
        coeffs = _ERFINV_TAIL
    p = coeffs[0]
    for c in coeffs[1:]:
        p = c + p * w
    y = p * x
    # Newton refinement against math.erf
    for _ in range(2):
        err = math.erf(y) - x
        y -= err / (2.0 / math.sqrt(math.pi) * math.exp(-y * y))
    return y


def phi_inv(p: float) -> float:
    """Inverse CDF of the standard normal distribution."""
    return math.sqrt(2.0) * erf_inv(2.0 * p - 1.0)


def _elo(score: float) -> float:
    if score <= 0.0 or score >= 1.0:
        return 0.0
    return -400.0 * math.log10(1.0 / score - 1.0)


def elo_from_wld(wins: int, losses: int, draws: int) -> EloEstimate:
    """Elo difference with a 95% confidence interval from W/L/D counts."""
    n = wins + losses + draws
    if n == 0:
        return EloEstimate(0.0, 0.0, 0.0)
    w, l, d = wins / n, losses / n, draws / n
    mu = w + d / 2.0
    stdev = math.sqrt(w * (1.0 - mu) ** 2 + l * (0.0 - mu) ** 2 + d * (0.5 - mu) ** 2) / math.sqrt(n)
    z = phi_inv(0.975)
    return EloEstimate(_elo(mu - z * stdev), _elo(mu), _elo(mu + z * stdev))
