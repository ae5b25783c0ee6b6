"""
Heuristic parser for text-layer statement exports.

Reads the plain text a bank exports alongside (or instead of) its PDF
statement and pulls out the card, due date, total and the individual
purchase lines. Amounts use the Brazilian format (1.234,56).

Line shapes recognized, tried in this order:
- IOF DESPESA NO EXTERIOR 13,54             (foreign transaction fee)
- 06/07 COT(WEB) 2.310,00 PESO URUGU 330,67 57,55   (international)
- LIBERTY DUTY FREE 02/04 123,45            (installment 2 of 4)
- 15/01 UBER TRIP 23,50                     (dated purchase)
"""

import logging
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

from ..schemas.statement import ParsedLine, ParsedStatement
from .base import StatementParseError, StatementParser

logger = logging.getLogger(__name__)

CARD_NUMBER_PATTERN = re.compile(r"\*{4}\s*(\d{4})")
DUE_DATE_PATTERN = re.compile(
    r"(?:vencimento|due date|vence em)\s*:?\s*(\d{2})/(\d{2})/(\d{4})", re.IGNORECASE
)
TOTAL_PATTERN = re.compile(
    r"(?:total|valor total|amount)\s*:?\s*R\$\s*([0-9.,]+)", re.IGNORECASE
)
BANK_PATTERN = re.compile(r"(?:banco|bank)\s*:?\s*([A-Za-z ]+)", re.IGNORECASE)
STATEMENT_MONTH_PATTERN = re.compile(r"(?<![\d/])(\d{2})/(\d{4})(?!\d)")
CARD_NAME_PATTERNS = [
    re.compile(r"cartão\s*:?\s*([A-Za-z ]+)", re.IGNORECASE),
    re.compile(r"card\s*:?\s*([A-Za-z ]+)", re.IGNORECASE),
]

FOREIGN_FEE_PATTERN = re.compile(r"^IOF\s+DESPESA\s+NO\s+EXTERIOR\s+([\d.,]+)$")
INTERNATIONAL_LINE_PATTERN = re.compile(
    r"^.*?(\d{2}/\d{2})\s+(.+?)\s+([\d.,]+)\s+[A-Z\s]+\s+([\d.,]+)\s+([\d.,]+)$"
)
INSTALLMENT_LINE_PATTERN = re.compile(r"^(.+?)\s+(\d{2}/\d{2})\s+(-?[\d.,]+)$")
DATED_LINE_PATTERN = re.compile(r"^.*?(\d{2}/\d{2})\s+(.+?)\s+(-?[\d.,]+)$")
LEADING_DATE_PATTERN = re.compile(r"^(\d{2}/\d{2})\s+(.+)$")

# Lines mentioning any of these are statement furniture, not purchases
IGNORE_KEYWORDS = [
    "tarifa",
    "juros",
    "saldo",
    "autorização",
    "parcela",
    "cet",
    "multas",
    "fatura",
    "total",
    "rotativo",
    "saque",
    "remuneratórios",
    "cancelar",
    "central",
    "atendimento",
    "seguro",
    "prestamista",
    "valor parcelado",
    "vencimento",
    "banco",
]

FOREIGN_FEE_DESCRIPTION = "IOF DESPESA NO EXTERIOR"

# Per-line confidence for lines matched by a known pattern
LINE_CONFIDENCE = 0.9


def parse_brl_amount(text: str) -> Decimal:
    """Parse "1.234,56" into Decimal("1234.56")."""
    try:
        return Decimal(text.replace(".", "").replace(",", "."))
    except InvalidOperation as e:
        raise ValueError(f"Not an amount: {text!r}") from e


def compute_confidence(
    text: str,
    total_amount: Optional[Decimal],
    due_date: Optional[date],
    lines: list[ParsedLine],
) -> float:
    """
    Score how much of a statement the heuristics recovered.

    Text length contributes up to 0.3, a total 0.3, a due date 0.2 and
    found lines up to 0.3; the sum is capped at 1.0.
    """
    confidence = 0.0
    if len(text) > 100:
        confidence += 0.2
    if len(text) > 500:
        confidence += 0.1
    if total_amount is not None:
        confidence += 0.3
    if due_date is not None:
        confidence += 0.2
    if lines:
        confidence += 0.2
    if len(lines) > 1:
        confidence += 0.1
    return min(round(confidence, 2), 1.0)


class TextStatementParser(StatementParser):
    """
    Parser for statements exported as text.

    The year of a dd/mm purchase date is not printed on most statements; the
    due date's year is used when known, else the current year.
    """

    @property
    def name(self) -> str:
        return "text"

    def parse(self, file_bytes: bytes, filename: Optional[str] = None) -> ParsedStatement:
        if file_bytes.startswith(b"%PDF"):
            raise StatementParseError(
                f"{filename or 'document'} is a binary PDF without an exported text layer; "
                "use the remote parser backend"
            )
        return self.parse_text(self._decode(file_bytes))

    def _decode(self, file_bytes: bytes) -> str:
        try:
            return file_bytes.decode("utf-8")
        except UnicodeDecodeError:
            return file_bytes.decode("latin-1")

    def parse_text(self, text: str) -> ParsedStatement:
        """Parse statement text into a ParsedStatement."""
        if not text.strip():
            raise StatementParseError("Document contains no text")

        due_date = self._extract_due_date(text)
        total_amount = self._extract_total(text)
        year = due_date.year if due_date else date.today().year
        lines = self._extract_lines(text, year)

        statement = ParsedStatement(
            credit_card_name=self._extract_card_name(text),
            card_last_four_digits=self._extract_card_number(text),
            bank_name=self._extract_bank(text),
            due_date=due_date,
            statement_month=self._extract_statement_month(text),
            total_amount=total_amount,
            lines=lines,
            confidence=compute_confidence(text, total_amount, due_date, lines),
        )
        logger.info(
            f"Parsed statement: {len(lines)} lines, total={total_amount}, "
            f"due={due_date}, confidence={statement.confidence}"
        )
        return statement

    def _extract_card_name(self, text: str) -> Optional[str]:
        for pattern in CARD_NAME_PATTERNS:
            match = pattern.search(text)
            if match:
                name = match.group(1).strip()
                if len(name) > 2:
                    return name
        return None

    def _extract_card_number(self, text: str) -> Optional[str]:
        match = CARD_NUMBER_PATTERN.search(text)
        return match.group(1) if match else None

    def _extract_due_date(self, text: str) -> Optional[date]:
        match = DUE_DATE_PATTERN.search(text)
        if not match:
            return None
        day, month, year = (int(g) for g in match.groups())
        try:
            return date(year, month, day)
        except ValueError:
            logger.warning(f"Invalid due date: {match.group(0)}")
            return None

    def _extract_total(self, text: str) -> Optional[Decimal]:
        match = TOTAL_PATTERN.search(text)
        if not match:
            return None
        try:
            return parse_brl_amount(match.group(1))
        except ValueError:
            logger.warning(f"Invalid total amount: {match.group(0)}")
            return None

    def _extract_bank(self, text: str) -> Optional[str]:
        match = BANK_PATTERN.search(text)
        if not match:
            return None
        # Stop at the end of the line the label is on
        return match.group(1).split("\n")[0].strip() or None

    def _extract_statement_month(self, text: str) -> Optional[str]:
        for match in STATEMENT_MONTH_PATTERN.finditer(text):
            month, year = int(match.group(1)), int(match.group(2))
            if 1 <= month <= 12:
                return f"{year:04d}-{month:02d}"
        return None

    def _purchase_date(self, day_month: str, year: int) -> Optional[date]:
        day, month = (int(part) for part in day_month.split("/"))
        try:
            return date(year, month, day)
        except ValueError:
            logger.warning(f"Invalid purchase date {day_month}/{year}")
            return None

    def _should_skip(self, line: str) -> bool:
        lower = line.lower()
        return any(keyword in lower for keyword in IGNORE_KEYWORDS)

    def _extract_lines(self, text: str, year: int) -> list[ParsedLine]:
        lines: list[ParsedLine] = []
        ignored = 0

        for raw in text.splitlines():
            line = raw.strip()
            if not line:
                continue
            if self._should_skip(line):
                logger.debug(f"Skipping statement furniture: '{line}'")
                ignored += 1
                continue

            try:
                parsed = self._parse_line(line, year)
            except ValueError as e:
                logger.warning(f"Could not read line '{line}': {e}")
                parsed = None

            if parsed is None:
                logger.debug(f"No pattern matched: '{line}'")
                ignored += 1
                continue
            lines.append(parsed)

        logger.debug(f"Extracted {len(lines)} lines, ignored {ignored}")
        return lines

    def _parse_line(self, line: str, year: int) -> Optional[ParsedLine]:
        match = FOREIGN_FEE_PATTERN.match(line)
        if match:
            return ParsedLine(
                description=FOREIGN_FEE_DESCRIPTION,
                amount=parse_brl_amount(match.group(1)),
                confidence=LINE_CONFIDENCE,
            )

        match = INTERNATIONAL_LINE_PATTERN.match(line)
        if match:
            # The BRL column is authoritative; the USD column is informational
            return ParsedLine(
                description=match.group(2).strip(),
                amount=parse_brl_amount(match.group(4)),
                purchase_date=self._purchase_date(match.group(1), year),
                confidence=LINE_CONFIDENCE,
            )

        match = INSTALLMENT_LINE_PATTERN.match(line)
        if match:
            description = match.group(1).strip()
            current, total = (int(part) for part in match.group(2).split("/"))
            purchase_date = None
            dated = LEADING_DATE_PATTERN.match(description)
            if dated:
                purchase_date = self._purchase_date(dated.group(1), year)
                description = dated.group(2).strip()
            if 1 <= current <= total:
                return ParsedLine(
                    description=description,
                    amount=parse_brl_amount(match.group(3)),
                    purchase_date=purchase_date,
                    installment_index=current,
                    installment_total=total,
                    confidence=LINE_CONFIDENCE,
                )

        match = DATED_LINE_PATTERN.match(line)
        if match:
            return ParsedLine(
                description=match.group(2).strip(),
                amount=parse_brl_amount(match.group(3)),
                purchase_date=self._purchase_date(match.group(1), year),
                installment_index=1,
                installment_total=1,
                confidence=LINE_CONFIDENCE,
            )

        return None
