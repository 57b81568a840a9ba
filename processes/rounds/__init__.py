"""Round sources: seeded random instances and on-disk graph corpora."""

from .generator import CorpusRounds, GraphRound, RoundGenerator

__all__ = ["RoundGenerator", "CorpusRounds", "GraphRound"]
