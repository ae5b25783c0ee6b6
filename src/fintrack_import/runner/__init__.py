"""
CLI runner module.

Provides commands:
- card: Register and list cards
- submit: Upload a statement for import
- worker: Process pending imports
- status / list: Follow import progress
- resolve: Accept or reject imports in manual review
- rules: Inspect and train merchant rules
- stats: Pipeline statistics
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
