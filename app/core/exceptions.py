"""
Error types raised by the question-to-result pipeline.

Every failure the pipeline can surface is a SqlAiError, so the web layer
only has to catch one type and show its message.
"""

from typing import Optional


class SqlAiError(Exception):
    """Base class for every pipeline failure."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class TranslationError(SqlAiError):
    """The question could not be turned into SQL."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class SqlExecutionError(SqlAiError):
    """
    The SQL statement failed or was refused before running.

    Always carries the attempted SQL so it can be shown next to the error.
    """

    def __init__(
        self, message: str, sql: str, cause: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.sql = sql
        self.cause = cause


class ProcessingError(SqlAiError):
    """Anything else that went wrong, with the original message kept."""
