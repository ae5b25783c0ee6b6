"""
Statement parsing module.

Parsers turn uploaded documents into ParsedStatement objects. The router
picks one by source kind; failures raise StatementParseError.
"""

from .base import StatementParseError, StatementParser
from .remote_parser import RemoteParserError, RemoteStatementParser
from .router import ParserRouter
from .text_parser import TextStatementParser

__all__ = [
    "StatementParser",
    "StatementParseError",
    "TextStatementParser",
    "RemoteStatementParser",
    "RemoteParserError",
    "ParserRouter",
]
