from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    ARTICLE_NOT_FOUND = "ARTICLE_NOT_FOUND"
    ARTICLE_FETCH_FAILED = "ARTICLE_FETCH_FAILED"
    INVALID_INPUT = "INVALID_INPUT"
    STARTUP_FAILED = "STARTUP_FAILED"


class WiktermError(Exception):
    """Raised for all expected failure conditions.

    The navigation engine is the only place that turns this into user-visible
    state (the error overlay). The one exception is ``STARTUP_FAILED``, which
    the CLI converts into a diagnostic and a non-zero exit code.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable
