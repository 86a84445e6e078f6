from traitcore.resonance.engine import STRONG_CONNECTION, ResonanceEngine

__all__ = ["STRONG_CONNECTION", "ResonanceEngine"]
