"""
Human-in-the-loop review module.

Provides:
- Listing of imports parked for manual review
- Resolution of a review (accept or reject)
"""

from .workflow import ReviewDecision, ReviewOutcome, ReviewWorkflow

__all__ = [
    "ReviewWorkflow",
    "ReviewDecision",
    "ReviewOutcome",
]
