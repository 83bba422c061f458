"""
Error taxonomy for docmemory.

Data conditions (a bad sidecar, a closed index) are logged and degraded
around; only caller mistakes are raised all the way out.
"""

from typing import Optional


class DocMemoryError(Exception):
    """Base error for the package"""


class MalformedRecord(DocMemoryError):
    """A metadata record is missing required fields or cannot be parsed."""

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        if source:
            message = f"{source}: {message}"
        super().__init__(message)


class StoreReadError(DocMemoryError):
    """The organized folder tree could not be read."""


class IndexUnavailable(DocMemoryError):
    """The memory index is closed or has not been initialized."""


class InvalidQueryOptions(DocMemoryError, ValueError):
    """Search options are out of range. Always surfaced to the caller."""
