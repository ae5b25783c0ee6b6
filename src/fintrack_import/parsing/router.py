"""
Parser router - chooses the parser for an import's source kind.
"""

import logging
from typing import Optional

from ..config import ParserConfig
from ..schemas.statement import ParsedStatement
from ..state_store.sqlite_store import ImportSource
from .base import StatementParseError, StatementParser
from .remote_parser import RemoteStatementParser
from .text_parser import TextStatementParser

logger = logging.getLogger(__name__)


class ParserRouter:
    """
    Routes a document to a parser by source kind.

    - DOCUMENT: the configured document parser
    - IMAGE, MESSAGE: not supported
    - MANUAL: never parsed automatically
    """

    def __init__(self, document_parser: Optional[StatementParser] = None):
        self.document_parser = document_parser or TextStatementParser()

    @classmethod
    def from_config(cls, config: ParserConfig) -> "ParserRouter":
        """Build a router whose document parser follows the configured backend."""
        if config.backend == "remote":
            parser: StatementParser = RemoteStatementParser(
                base_url=config.base_url,
                token=config.token,
                timeout=config.timeout_seconds,
                max_retries=config.max_retries,
            )
        else:
            parser = TextStatementParser()
        return cls(document_parser=parser)

    def parser_for(self, source: ImportSource) -> StatementParser:
        """
        Get the parser for a source kind.

        Raises:
            StatementParseError: If the source kind cannot be parsed
        """
        if source == ImportSource.DOCUMENT:
            return self.document_parser
        if source == ImportSource.IMAGE:
            raise StatementParseError("Image statement parsing is not supported")
        if source == ImportSource.MESSAGE:
            raise StatementParseError("Email statement parsing is not supported")
        raise StatementParseError("Manual imports are not processed automatically")

    def parse(
        self, source: ImportSource, file_bytes: bytes, filename: Optional[str] = None
    ) -> ParsedStatement:
        """Parse a document with the parser for its source kind."""
        parser = self.parser_for(source)
        logger.debug(f"Parsing {filename or 'document'} with {parser.name} parser")
        return parser.parse(file_bytes, filename)
