"""Test fixtures and utilities."""

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from fintrack_import.config import Config, ImportConfig
from fintrack_import.parsing.base import StatementParser
from fintrack_import.schemas.statement import ParsedLine, ParsedStatement
from fintrack_import.state_store import StateStore

# Text export of a card statement, Brazilian number format
SAMPLE_STATEMENT_TEXT = """
BANCO: Nubank
Cartão: Ultravioleta
**** 1234
Fatura 03/2024
Vencimento: 10/03/2024
Total: R$ 1.234,56

15/01 UBER TRIP 23,50
20/01 NETFLIX.COM 55,90
LIBERTY DUTY FREE 02/04 123,45
06/07 COT(WEB) 2.310,00 PESO URUGU 330,67 57,55
IOF DESPESA NO EXTERIOR 13,54
"""

# Barely readable export: one line, no total, no due date
SAMPLE_POOR_STATEMENT_TEXT = """
scan page 1
15/01 UBER TRIP 23,50
"""


class StubParser(StatementParser):
    """Parser returning a fixed statement, or raising a fixed error."""

    def __init__(self, statement: ParsedStatement | None = None, error: Exception | None = None):
        self.statement = statement
        self.error = error
        self.calls = 0

    @property
    def name(self) -> str:
        return "stub"

    def parse(self, file_bytes: bytes, filename: str | None = None) -> ParsedStatement:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.statement


def make_statement(
    confidence: float | None = 0.95,
    statement_month: str | None = "2024-03",
    lines: list[ParsedLine] | None = None,
) -> ParsedStatement:
    """Build a parsed statement with a couple of purchases."""
    if lines is None:
        lines = [
            ParsedLine("UBER *TRIP 4029357733", Decimal("23.50"), date(2024, 2, 15), 1, 1),
            ParsedLine("NETFLIX.COM", Decimal("55.90"), date(2024, 2, 20), 1, 1),
        ]
    return ParsedStatement(
        credit_card_name="Ultravioleta",
        card_last_four_digits="1234",
        bank_name="Nubank",
        due_date=date(2024, 3, 10),
        statement_month=statement_month,
        total_amount=sum((line.amount for line in lines), Decimal("0.00")),
        lines=lines,
        confidence=confidence,
    )


@pytest.fixture
def sample_statement_text() -> str:
    """Well-formed statement text export."""
    return SAMPLE_STATEMENT_TEXT


@pytest.fixture
def sample_poor_statement_text() -> str:
    """Statement text the heuristics can barely read."""
    return SAMPLE_POOR_STATEMENT_TEXT


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store with migrations applied."""
    return StateStore(temp_db)


@pytest.fixture
def card_id(store) -> int:
    """Card owned by user 1."""
    return store.create_card(owner_user_id=1, name="Ultravioleta", last_four="1234")


@pytest.fixture
def config(tmp_path, temp_db) -> Config:
    """Config with uploads and database under the test's temp directory."""
    return Config(
        imports=ImportConfig(upload_directory=tmp_path / "uploads", worker_count=1),
        state_db_path=temp_db,
    )
