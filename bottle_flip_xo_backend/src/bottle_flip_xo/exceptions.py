"""
Store/transport error definitions.

Game-rule violations are never exceptions (they come back as False/None);
only failures talking to the document store end up here.
"""

from typing import Optional


class StoreError(Exception):
    """Base error for document store operations.

    Attributes:
        path: Store path the failed operation targeted, if known.
        status_code: HTTP status code if the store is reached over HTTP.
    """

    def __init__(self, message: str, path: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.path = path
        self.status_code = status_code


class StoreUnavailableError(StoreError):
    """Store unreachable, timed out, or answered with a server error."""

    pass


class StorePermissionError(StoreError):
    """Store rejected the request (security rules or bad credentials)."""

    pass
