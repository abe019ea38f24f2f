"""Exception hierarchy shared by the pipeline and its collaborators."""

from __future__ import annotations

from typing import Any, Optional


class SchemaLensError(Exception):
    """Base class for all errors raised by schemalens."""


class ConfigError(SchemaLensError, ValueError):
    """Raised when configuration values or files are invalid."""


class InvalidInputError(SchemaLensError, ValueError):
    """Raised when the input cannot be normalized into row tables."""

    MESSAGES = {
        "primitive": "Input cannot be a primitive value",
        "empty": "Input cannot be empty",
        "invalid": "Unable to detect input structure",
    }

    def __init__(self, reason: str, message: Optional[str] = None) -> None:
        super().__init__(message or self.MESSAGES.get(reason, "Invalid input"))
        self.reason = reason


class StructureIncompleteError(SchemaLensError):
    """Raised when no usable structure can be derived for a table."""

    def __init__(self, message: str, *, table: Optional[str] = None) -> None:
        super().__init__(message)
        self.table = table


class LimitExceededError(SchemaLensError):
    """Raised when a dataset is too large to send for enrichment."""

    def __init__(self, message: str, *, result: Any = None) -> None:
        super().__init__(message)
        self.result = result


class EnrichmentError(SchemaLensError):
    """Raised when enrichment fails; carries the unenriched structural result."""

    def __init__(self, message: str, *, partial_result: Any) -> None:
        super().__init__(message)
        self.partial_result = partial_result


class LLMResponseError(SchemaLensError, RuntimeError):
    """Raised when an LLM response cannot be parsed or validated."""

    def __init__(self, message: str, *, response: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.response = response
