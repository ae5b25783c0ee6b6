"""
Base parser interface.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..schemas.statement import ParsedStatement


class StatementParseError(Exception):
    """
    The document could not be turned into a statement at all.

    Distinct from a low-confidence parse, which still yields a
    ParsedStatement and is routed to manual review.
    """

    pass


class StatementParser(ABC):
    """
    Base class for statement parsers.

    A parser turns raw document bytes into a ParsedStatement that carries its
    own overall confidence. Parsers hold no per-job state and may be shared
    by all workers.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Parser name for logging."""
        pass

    @abstractmethod
    def parse(self, file_bytes: bytes, filename: Optional[str] = None) -> ParsedStatement:
        """
        Parse a statement document.

        Args:
            file_bytes: Raw document content
            filename: Original file name, when known

        Returns:
            ParsedStatement with lines and overall confidence

        Raises:
            StatementParseError: If the document cannot be parsed
        """
        pass
