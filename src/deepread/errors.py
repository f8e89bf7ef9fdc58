"""Error taxonomy for the retrieval and analysis pipeline.

  ValidationError     bad input shape/length; rejected before any work, never retried
  NoSourcesError      no usable cached content (a distinct, user-facing empty state)
  AIUnavailableError  completion provider unavailable or non-2xx; retryable
  QueryFailedError    unparseable model output or other query failure; retryable
  ConfigError         invalid or forbidden configuration value
"""

from __future__ import annotations


class DeepreadError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(DeepreadError, ValueError):
    """Raised when request input fails validation."""


class NoSourcesError(DeepreadError):
    """Raised when none of the requested sources has usable cached content."""

    def __init__(self, message: str = "Project has no sources with cached content") -> None:
        super().__init__(message)


class AIUnavailableError(DeepreadError):
    """Raised when the completion provider cannot be reached or returns an error."""

    def __init__(self, message: str = "AI service unavailable") -> None:
        super().__init__(message)


class QueryFailedError(DeepreadError):
    """Raised when a query cannot be completed (e.g. the model output is not data)."""


class ConfigError(DeepreadError, ValueError):
    """Raised when a config file contains an invalid or forbidden value."""
