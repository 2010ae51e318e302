"""Domain error taxonomy for the entitlement pipeline.

Services raise these; the API layer maps them to HTTP responses through
one exception handler (see app.main).  ``detail`` is what the end user
sees, so keep it terse ("already enrolled", "download link expired").
Operator context goes in the log line, not in the message.
"""

from __future__ import annotations

from fastapi import status


class PipelineError(Exception):
    """Base class; ``status_code`` is the HTTP equivalent."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class InvalidInput(PipelineError):
    status_code = status.HTTP_400_BAD_REQUEST


class Forbidden(PipelineError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(PipelineError):
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(PipelineError):
    status_code = status.HTTP_409_CONFLICT


class Expired(PipelineError):
    status_code = status.HTTP_410_GONE


class QuotaExceeded(PipelineError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class DependencyFailure(PipelineError):
    """An email or blob collaborator call failed or timed out.

    Swallowed (logged) on fire-and-forget paths.  Only propagated when a
    caller is synchronously waiting on the side effect.
    """

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, detail: str, *, dependency: str) -> None:
        super().__init__(detail)
        self.dependency = dependency
