"""Domain exceptions for the client state layer.

Managers and clients raise these, never ``httpx`` exceptions; translating
them into user-facing status is the facade's job (``ChatApp.error``,
``ConnectionState``).
"""

from __future__ import annotations


class WorkspaceValidationError(ValueError):
    """Malformed input, e.g. a bad repository URL.  Never retried."""


class WorkspaceNotFoundError(LookupError):
    """The service no longer recognises the referenced workspace id."""


class TransportError(RuntimeError):
    """Network or service failure.  The state is unknown, not empty."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StaleEventError(RuntimeError):
    """An event or async result arrived for a workspace that is no longer active.

    Internal only: callers catch it and drop the payload.
    """
