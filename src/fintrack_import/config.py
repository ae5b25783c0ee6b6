"""
Configuration management (SSOT).

This module defines ALL configuration for the import pipeline.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- The confidence threshold is the single value the confidence gate reads
- Worker count and queue capacity bound the background processing pool
- The auto-apply threshold is the single value merchant rules are compared to
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class ImportConfig:
    """Import orchestration settings."""

    # Where uploaded statement files are stored
    upload_directory: Path = field(default_factory=lambda: Path("data/uploads"))
    # Parses below this overall confidence go to manual review
    confidence_threshold: float = 0.7
    # Background worker pool size
    worker_count: int = 2
    # Maximum number of accepted jobs waiting for a worker
    queue_capacity: int = 100
    # Due date fallback when the statement does not carry one (days from today)
    default_due_days: int = 30


@dataclass
class CategorizationConfig:
    """Merchant rule settings."""

    # Confirmations required before a rule applies its category on import
    auto_apply_threshold: int = 3


@dataclass
class ParserConfig:
    """Document parser configuration.

    backend:
    - "text": built-in heuristic parser for text-layer statement exports
    - "remote": external parsing service reached over HTTP
    """

    backend: str = "text"
    base_url: str = "http://localhost:8090"
    token: str = ""
    timeout_seconds: int = 60
    max_retries: int = 2


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    imports: ImportConfig = field(default_factory=ImportConfig)
    categorization: CategorizationConfig = field(default_factory=CategorizationConfig)
    parser: ParserConfig = field(default_factory=ParserConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not 0.0 <= self.imports.confidence_threshold <= 1.0:
            errors.append("imports.confidence_threshold must be between 0 and 1")
        if self.imports.worker_count < 1:
            errors.append("imports.worker_count must be >= 1")
        if self.imports.queue_capacity < 1:
            errors.append("imports.queue_capacity must be >= 1")
        if self.imports.default_due_days < 0:
            errors.append("imports.default_due_days must be >= 0")

        if self.categorization.auto_apply_threshold < 1:
            errors.append("categorization.auto_apply_threshold must be >= 1")

        if self.parser.backend not in ("text", "remote"):
            errors.append(f"parser.backend must be 'text' or 'remote', got: {self.parser.backend}")
        if self.parser.backend == "remote" and not self.parser.base_url:
            errors.append("parser.base_url is required when parser.backend is 'remote'")

        return errors


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - FINTRACK_STATE_DB
    - FINTRACK_UPLOAD_DIR
    - FINTRACK_CONFIDENCE_THRESHOLD
    - FINTRACK_WORKERS
    - FINTRACK_QUEUE_CAPACITY
    - FINTRACK_PARSER_BACKEND (text/remote)
    - FINTRACK_PARSER_URL
    - FINTRACK_PARSER_TOKEN

    Raises:
        ConfigValidationError: If the resulting configuration is invalid
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Import config
    imports_data = data.get("imports", {})
    try:
        imports = ImportConfig(
            upload_directory=Path(
                os.environ.get(
                    "FINTRACK_UPLOAD_DIR", imports_data.get("upload_directory", "data/uploads")
                )
            ),
            confidence_threshold=float(
                os.environ.get(
                    "FINTRACK_CONFIDENCE_THRESHOLD",
                    imports_data.get("confidence_threshold", 0.7),
                )
            ),
            worker_count=int(
                os.environ.get("FINTRACK_WORKERS", imports_data.get("worker_count", 2))
            ),
            queue_capacity=int(
                os.environ.get(
                    "FINTRACK_QUEUE_CAPACITY", imports_data.get("queue_capacity", 100)
                )
            ),
            default_due_days=int(imports_data.get("default_due_days", 30)),
        )
    except ValueError as e:
        raise ConfigValidationError(f"Invalid numeric value in imports config: {e}") from e

    # Categorization config
    categorization_data = data.get("categorization", {})
    categorization = CategorizationConfig(
        auto_apply_threshold=int(categorization_data.get("auto_apply_threshold", 3)),
    )

    # Parser config
    parser_data = data.get("parser", {})
    parser = ParserConfig(
        backend=os.environ.get("FINTRACK_PARSER_BACKEND", parser_data.get("backend", "text")),
        base_url=os.environ.get(
            "FINTRACK_PARSER_URL", parser_data.get("base_url", "http://localhost:8090")
        ),
        token=os.environ.get("FINTRACK_PARSER_TOKEN", parser_data.get("token", "")),
        timeout_seconds=int(parser_data.get("timeout_seconds", 60)),
        max_retries=int(parser_data.get("max_retries", 2)),
    )

    # State DB
    state_db = os.environ.get("FINTRACK_STATE_DB", data.get("state_db_path", "data/state.db"))

    config = Config(
        imports=imports,
        categorization=categorization,
        parser=parser,
        state_db_path=Path(state_db),
    )

    errors = config.validate()
    if errors:
        raise ConfigValidationError("; ".join(errors))

    return config


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Statement Import Pipeline Configuration

imports:
  upload_directory: "data/uploads"   # Stored statement files
  confidence_threshold: 0.7          # Below this: manual review
  worker_count: 2                    # Background workers
  queue_capacity: 100                # Accepted jobs waiting for a worker
  default_due_days: 30               # Due date fallback (days from today)

categorization:
  auto_apply_threshold: 3            # Confirmations before a rule auto-applies

# Document parser
# backend: "text" (built-in, text-layer exports) or "remote" (HTTP parsing service)
parser:
  backend: "text"
  base_url: "http://localhost:8090"
  token: ""
  timeout_seconds: 60
  max_retries: 2

# State database path
state_db_path: "data/state.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
