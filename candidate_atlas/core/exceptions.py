"""
Exception taxonomy for the ingestion pipeline.

File-local problems (InputError, PersistenceError) fail the current file and
are subject to the orchestrator's retry policy. MappingValidationError never
escapes the AI header-mapping boundary; it is converted into a structured
diagnostic there.
"""
from typing import Optional


class CandidateAtlasError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(CandidateAtlasError):
    """Raised when settings cannot produce a usable component."""


class InputError(CandidateAtlasError):
    """Raised when a source file is missing, unreadable, unsupported or headerless."""

    def __init__(self, message: str, file_path: Optional[str] = None):
        self.file_path = file_path
        self.message = message
        super().__init__(message)


class RowStreamError(InputError):
    """Raised when a spreadsheet turns out to be corrupt while it is being streamed."""


class MappingValidationError(CandidateAtlasError):
    """Raised when an AI header-mapping response is not valid JSON or breaks the schema."""

    def __init__(self, message: str, code: str = "INVALID_AI_MAPPING"):
        self.code = code
        self.message = message
        super().__init__(message)


class PersistenceError(CandidateAtlasError):
    """Raised for database failures that are not recoverable unique-constraint races."""


class StatusTrackerError(CandidateAtlasError):
    """Raised when the ingestion status store cannot be read or written."""
