"""
Confidence gating module.

Decides whether a parsed statement may be finalized automatically or has to
wait for a human.
"""

from .gate import DEFAULT_CONFIDENCE_THRESHOLD, ConfidenceGate, GateDecision

__all__ = [
    "DEFAULT_CONFIDENCE_THRESHOLD",
    "ConfidenceGate",
    "GateDecision",
]
