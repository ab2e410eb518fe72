"""Custom exception hierarchy for the Scaleway reconciler."""

from __future__ import annotations


class ReconcilerError(Exception):
    """Base exception for all reconciler errors."""


class ConfigError(ReconcilerError):
    """Invalid or missing configuration."""


class ValidationError(ReconcilerError):
    """A desired-state record failed validation. Never retried."""


class APIError(ReconcilerError):
    """Error communicating with the compute API."""

    def __init__(self, message: str, status_code: int | None = None, response_body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class NotFoundError(APIError):
    """HTTP 404: the resource is absent on the provider side."""

    def __init__(self, message: str = "Resource not found", response_body: str | None = None):
        super().__init__(message, status_code=404, response_body=response_body)


class ConflictError(APIError):
    """HTTP 409: the request conflicts with the current resource state."""

    def __init__(self, message: str = "Resource state conflict", response_body: str | None = None):
        super().__init__(message, status_code=409, response_body=response_body)


class ResourcePendingError(APIError):
    """A polled resource has not reached its target state yet."""


class ReconcileError(ReconcilerError):
    """A reconciliation step failed; carries the resource context."""

    def __init__(
        self,
        message: str,
        kind: str,
        operation: str,
        resource_id: str | None = None,
        cause: BaseException | None = None,
    ):
        ident = resource_id or "<new>"
        super().__init__(f"{operation} {kind} {ident}: {message}")
        self.kind = kind
        self.operation = operation
        self.resource_id = resource_id
        self.cause = cause


class PartialFailureError(ReconcileError):
    """A multi-step operation failed after the remote resource was created.

    The resource exists (``resource_id`` is set) but one or more follow-up
    steps did not converge. Nothing is rolled back.
    """

    def __init__(self, kind: str, operation: str, resource_id: str, errors: list[BaseException]):
        summary = "; ".join(str(e) for e in errors)
        super().__init__(
            f"{len(errors)} step(s) failed: {summary}",
            kind=kind,
            operation=operation,
            resource_id=resource_id,
            cause=errors[0] if errors else None,
        )
        self.errors = list(errors)
