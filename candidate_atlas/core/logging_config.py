"""
Logging setup for ingestion runs.

Log lines go to stderr; stdout is reserved for command output (summary
tables, JSON mappings, previews) so it can be piped.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Optional

from candidate_atlas.core.exceptions import ConfigurationError

# Per-statement SQL and per-request HTTP logging drown out per-file progress.
QUIET_LOGGERS = (
    "sqlalchemy.engine",
    "httpx",
    "httpcore",
    "anthropic",
    "openai",
    "google_genai",
)

_is_configured = False


def resolve_level(level: Optional[str]) -> str:
    """Upper-cased level name; INFO when unset."""
    name = (level or "INFO").strip().upper()
    if not isinstance(logging.getLevelName(name), int):
        raise ConfigurationError(f"Unknown log level: {level}")
    return name


def configure_logging(level: Optional[str] = None) -> None:
    """
    Install the stderr handler once per process.

    Args:
        level: Level name such as "DEBUG" or "INFO"; defaults to INFO.

    Raises:
        ConfigurationError: The level name is not a logging level
    """
    global _is_configured

    log_level = resolve_level(level)
    if _is_configured:
        return

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                }
            },
            "handlers": {
                "stderr": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "level": log_level,
                    "stream": "ext://sys.stderr",
                }
            },
            "root": {
                "handlers": ["stderr"],
                "level": log_level,
            },
            "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
        }
    )

    logging.getLogger("candidate_atlas").setLevel(log_level)

    _is_configured = True
