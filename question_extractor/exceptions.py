"""
Exceptions
==========
Error taxonomy surfaced to callers so they can render distinct states:
an unreadable document, a failing remote service, or (not an error)
zero questions found.
"""

from __future__ import annotations

from typing import Optional


class QuestionExtractorError(Exception):
    """Base class for all extractor errors."""


class DocumentUnreadableError(QuestionExtractorError):
    """The PDF could not be opened (missing, corrupt, or not a PDF)."""

    def __init__(self, message: str, source: str = ""):
        super().__init__(message)
        self.source = source


class RemoteExtractionError(QuestionExtractorError):
    """The remote extraction service failed after all retries."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteResponseError(RemoteExtractionError):
    """The remote service answered, but not with parseable JSON."""
