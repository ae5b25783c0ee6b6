"""
Canonical parsed statement object (SSOT).

This is THE single source of truth for what a parser hands to the pipeline.
Every parser maps its output into ParsedStatement; reconciliation and manual
review only ever read this shape. The JSON form is what import jobs store as
their parsed-data snapshot.
"""

import math
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional


def _decimal(value) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None and value != "" else None


def _date(value) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _confidence(value) -> Optional[float]:
    """Overall confidence as a float in [0, 1]; None stays None."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"confidence must be a number, got {value!r}")
    if not math.isfinite(value) or not 0.0 <= value <= 1.0:
        raise ValueError(f"confidence must be between 0 and 1, got {value!r}")
    return float(value)


@dataclass
class ParsedLine:
    """One transaction line as read from the statement."""

    description: str
    amount: Optional[Decimal] = None
    purchase_date: Optional[date] = None
    installment_index: Optional[int] = None
    installment_total: Optional[int] = None
    category_guess: Optional[str] = None
    # Informational only; lines are never gated individually
    confidence: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "amount": str(self.amount) if self.amount is not None else None,
            "purchase_date": self.purchase_date.isoformat() if self.purchase_date else None,
            "installment_index": self.installment_index,
            "installment_total": self.installment_total,
            "category_guess": self.category_guess,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ParsedLine":
        return cls(
            description=data.get("description") or "",
            amount=_decimal(data.get("amount")),
            purchase_date=_date(data.get("purchase_date")),
            installment_index=data.get("installment_index"),
            installment_total=data.get("installment_total"),
            category_guess=data.get("category_guess"),
            confidence=data.get("confidence"),
        )


@dataclass
class ParsedStatement:
    """
    Structured result of parsing one statement document.

    `confidence` is the parser's overall score in [0, 1]. None means the
    parser could not judge its own output and is treated as 0.
    """

    credit_card_name: Optional[str] = None
    card_last_four_digits: Optional[str] = None
    bank_name: Optional[str] = None
    due_date: Optional[date] = None
    statement_month: Optional[str] = None  # YYYY-MM
    total_amount: Optional[Decimal] = None
    lines: list[ParsedLine] = field(default_factory=list)
    confidence: Optional[float] = None

    @property
    def effective_confidence(self) -> float:
        """Overall confidence with a missing score read as 0."""
        return self.confidence if self.confidence is not None else 0.0

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON storage."""
        return {
            "credit_card_name": self.credit_card_name,
            "card_last_four_digits": self.card_last_four_digits,
            "bank_name": self.bank_name,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "statement_month": self.statement_month,
            "total_amount": str(self.total_amount) if self.total_amount is not None else None,
            "lines": [line.to_dict() for line in self.lines],
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ParsedStatement":
        """Deserialize from dictionary."""
        return cls(
            credit_card_name=data.get("credit_card_name"),
            card_last_four_digits=data.get("card_last_four_digits"),
            bank_name=data.get("bank_name"),
            due_date=_date(data.get("due_date")),
            statement_month=data.get("statement_month"),
            total_amount=_decimal(data.get("total_amount")),
            lines=[ParsedLine.from_dict(line) for line in data.get("lines", [])],
            confidence=_confidence(data.get("confidence")),
        )
