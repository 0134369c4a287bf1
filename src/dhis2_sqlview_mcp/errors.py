# DHIS2 SQL View MCP Server
# File: errors.py
# Version: v1

"""Error taxonomy for SQL view execution.

Fatal errors (authentication, not found, forbidden, other 4xx) abort an
execution immediately. Transient errors (network, timeout, 408/429/5xx) fail
the current page; the client retries them a bounded number of times before
letting them reach the batch orchestrator.
"""

from __future__ import annotations

from typing import Optional


class SqlViewError(RuntimeError):
    """Base class for errors raised while talking to DHIS2 SQL views."""

    fatal = True

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url
        self.resource_id = resource_id

    @property
    def code(self) -> str:
        return "SQL_VIEW_ERROR"


class AuthenticationError(SqlViewError):
    @property
    def code(self) -> str:
        return "AUTHENTICATION_FAILED"


class ForbiddenError(SqlViewError):
    @property
    def code(self) -> str:
        return "FORBIDDEN"


class ResourceNotFoundError(SqlViewError):
    @property
    def code(self) -> str:
        return "NOT_FOUND"


class RemoteRequestError(SqlViewError):
    """Any other 4xx: the request itself was rejected (bad variable, etc.)."""

    @property
    def code(self) -> str:
        return "BAD_REQUEST"


class TransientError(SqlViewError):
    """Network failure, timeout or server-side error; safe to retry."""

    fatal = False

    @property
    def code(self) -> str:
        return "TRANSIENT"


_TRANSIENT_STATUSES = {408, 425, 429}


def classify_status(
    status_code: int,
    message: str,
    *,
    url: Optional[str] = None,
    resource_id: Optional[str] = None,
) -> SqlViewError:
    """Map an HTTP status code to the matching error class."""
    if status_code == 401:
        cls: type[SqlViewError] = AuthenticationError
    elif status_code == 403:
        cls = ForbiddenError
    elif status_code == 404:
        cls = ResourceNotFoundError
    elif status_code in _TRANSIENT_STATUSES or status_code >= 500:
        cls = TransientError
    else:
        cls = RemoteRequestError

    return cls(message, status_code=status_code, url=url, resource_id=resource_id)
