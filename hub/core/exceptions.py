"""
Hub-wide exception hierarchy.

Services raise these; ``hub.create_app`` registers one handler per type so
every blueprint gets the same status codes and ``{"error": ...}`` bodies.

Usage:
    from hub.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Process", resource_id=42)
    raise ValidationError("title is required")
"""


class NotFoundError(Exception):
    """A requested row does not exist. Maps to HTTP 404.

    Args:
        resource: Human-readable entity name ("Process", "Task", "Wave").
        resource_id: The key that was looked up. Logged, not returned.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)

    @property
    def public_message(self) -> str:
        return f"{self.resource} not found"


class ValidationError(Exception):
    """Input is missing or violates a business rule. Maps to HTTP 400.

    Args:
        message: Human-readable explanation returned as ``error``.
        details: Optional field-level breakdown.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """The write would duplicate a unique row or break a graph invariant.

    Maps to HTTP 409.
    """

    def __init__(self, message: str, resource: str | None = None) -> None:
        self.message = message
        self.resource = resource
        super().__init__(message)


class UpstreamError(Exception):
    """A third-party API (Asana, LLM provider) failed. Maps to HTTP 502.

    Args:
        message: Underlying message, propagated to the caller.
        code: Machine-readable code such as ``asana_sync_failed``.
        status_code: Upstream HTTP status when known.
    """

    def __init__(self, message: str, code: str | None = None, status_code: int | None = None) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)


class NotConnectedError(Exception):
    """The signed-in user has no usable Asana token.

    Args:
        message: Human-readable hint returned as ``message``.
        code: Machine-readable code returned as ``error``.
        status: HTTP status (401 for reads and writes, 502 for strict deletes).
    """

    def __init__(self, message: str = "Asana not connected. Go to Settings to connect.",
                 code: str = "not_connected", status: int = 401) -> None:
        self.message = message
        self.code = code
        self.status = status
        super().__init__(message)


class GoneError(Exception):
    """The resource exists but no longer accepts writes (a closed survey
    wave). Maps to HTTP 410.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)
