"""Exception types raised by the hub cluster controller."""

from typing import Any, Optional


class ApiError(Exception):
    """A non-success response from the Kubernetes API server."""

    def __init__(
        self,
        status: int,
        reason: str = "",
        message: str = "",
        body: Optional[dict[str, Any]] = None,
    ):
        self.status = status
        self.reason = reason
        self.message = message
        self.body = body or {}
        super().__init__(f"{status} {reason}: {message}".strip())


class NotFoundError(ApiError):
    """The requested object does not exist (HTTP 404 or cache miss)."""

    def __init__(self, kind: str, name: str, namespace: str = "", message: str = ""):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        where = f"{namespace}/{name}" if namespace else name
        super().__init__(404, "NotFound", message or f"{kind} {where} not found")


class ConflictError(ApiError):
    """Optimistic concurrency failure or create of an existing object (HTTP 409)."""


class GoneError(ApiError):
    """The watch resource version is too old (HTTP 410)."""


class ManifestBuildError(ValueError):
    """Desired ManifestWork could not be built from the given input."""


class EnsureError(ValueError):
    """Existing and desired objects do not describe the same resource."""


class ReconcileCancelled(Exception):
    """A sync was asked to stop between steps."""
