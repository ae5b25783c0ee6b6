"""
HTTP client for an external statement parsing service.

The service accepts the raw document as a multipart upload on
POST {base_url}/api/parse/ and answers with the JSON form of a
ParsedStatement (see ParsedStatement.to_dict).
"""

import logging
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..schemas.statement import ParsedStatement
from .base import StatementParseError, StatementParser

logger = logging.getLogger(__name__)


class RemoteParserError(StatementParseError):
    """The parsing service could not be reached or answered with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RemoteStatementParser(StatementParser):
    """
    Client for a remote parsing service.

    Features:
    - Token authentication
    - Automatic retry with backoff on transient server errors
    - Transport and HTTP failures surface as StatementParseError
    """

    DEFAULT_TIMEOUT = 60
    PARSE_ENDPOINT = "/api/parse/"

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 2,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize the client.

        Args:
            base_url: Service URL (e.g., "http://localhost:8090")
            token: API token, sent as "Authorization: Token <token>" when set
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if token:
            self.session.headers["Authorization"] = f"Token {token}"

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[502, 503, 504],
            allowed_methods=["POST"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    @property
    def name(self) -> str:
        return "remote"

    def parse(self, file_bytes: bytes, filename: Optional[str] = None) -> ParsedStatement:
        url = f"{self.base_url}{self.PARSE_ENDPOINT}"
        files = {"file": (filename or "statement", file_bytes)}

        try:
            response = self.session.post(url, files=files, timeout=self.timeout)
        except requests.exceptions.ConnectionError as e:
            raise RemoteParserError(f"Failed to connect to parsing service at {self.base_url}: {e}") from e
        except requests.exceptions.Timeout as e:
            raise RemoteParserError(f"Parsing service timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            raise RemoteParserError(f"Parsing request failed: {e}") from e

        if not response.ok:
            raise RemoteParserError(
                f"Parsing service error {response.status_code}: {response.reason}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RemoteParserError(f"Parsing service returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise RemoteParserError("Parsing service returned an unexpected payload")

        try:
            statement = ParsedStatement.from_dict(data)
        except (ValueError, TypeError, ArithmeticError) as e:
            raise RemoteParserError(f"Parsing service returned malformed statement: {e}") from e

        logger.info(
            f"Remote parse of {filename or 'statement'}: {len(statement.lines)} lines, "
            f"confidence={statement.confidence}"
        )
        return statement
