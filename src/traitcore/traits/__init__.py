"""Trait baselines, trend analysis and trait interactions."""

from traitcore.traits.interactions import TraitInteractionAnalyzer
from traitcore.traits.ledger import TraitLedger
from traitcore.traits.trends import TrendAnalyzer

__all__ = ["TraitInteractionAnalyzer", "TraitLedger", "TrendAnalyzer"]
