"""
Confidence gate implementation.
"""

import math
from enum import Enum
from typing import Optional

# Parses at or above this overall confidence are finalized automatically
DEFAULT_CONFIDENCE_THRESHOLD = 0.7


class GateDecision(str, Enum):
    """
    Outcome of gating a parse.

    PROCEED: Reconcile and complete the import
    MANUAL_REVIEW: Park the import until a human resolves it
    """

    PROCEED = "PROCEED"
    MANUAL_REVIEW = "MANUAL_REVIEW"


class ConfidenceGate:
    """
    Routes parses by overall confidence.

    Only the statement-level score is consulted. Per-line confidence is
    carried along for display but never gates.
    """

    def __init__(self, threshold: float = DEFAULT_CONFIDENCE_THRESHOLD):
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"Confidence threshold must be between 0 and 1, got {threshold}")
        self.threshold = threshold

    def evaluate(self, confidence: Optional[float]) -> GateDecision:
        """
        Decide what happens to a parse.

        A missing or non-finite score always goes to review.
        """
        if confidence is None or not math.isfinite(confidence) or confidence < self.threshold:
            return GateDecision.MANUAL_REVIEW
        return GateDecision.PROCEED
