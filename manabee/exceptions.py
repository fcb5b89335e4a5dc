"""
Exception Classes - Strongly typed exception hierarchy.

Every error carries a stable ``code`` and the HTTP status it maps to, so the
API layer can translate it without inspecting messages.
"""

from fastapi import status


class ManabeeError(Exception):
    """Base exception for all service errors."""

    code: str = "internal"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "Internal error") -> None:
        self.message = message
        super().__init__(message)


class UnauthenticatedError(ManabeeError):
    """Raised when no verified caller identity is attached."""

    code = "unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class PermissionDeniedError(ManabeeError):
    """Raised when the caller lacks the required role."""

    code = "permission-denied"
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, required_role: str) -> None:
        self.required_role = required_role
        super().__init__(f"{required_role.capitalize()} access required")


class InvalidArgumentError(ManabeeError):
    """Raised when a request is structurally invalid."""

    code = "invalid-argument"
    status_code = status.HTTP_400_BAD_REQUEST


class QuotaExceededError(ManabeeError):
    """Raised when the caller has used up today's AI requests."""

    code = "resource-exhausted"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"Daily AI request limit ({limit}) exceeded. Try again tomorrow.")


class NotFoundError(ManabeeError):
    """Raised when a referenced record does not exist."""

    code = "not-found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, resource_id: str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found: {resource_id}")


class TargetNotFoundError(NotFoundError):
    """Raised when a notification target user does not exist."""

    def __init__(self, user_id: str) -> None:
        super().__init__("Target user", user_id)


class FailedPreconditionError(ManabeeError):
    """Raised when the system is not in a state that allows the operation."""

    code = "failed-precondition"
    status_code = status.HTTP_412_PRECONDITION_FAILED


class ProviderUnavailableError(FailedPreconditionError):
    """Raised when the AI provider is not configured."""

    code = "provider-unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"{provider} not configured")


class IncompleteResponseError(ManabeeError):
    """Raised when any part of an aggregate AI generation returned no usable data."""

    code = "internal"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self) -> None:
        super().__init__("Incomplete response from AI")


class ProviderError(ManabeeError):
    """Raised when the AI provider call itself failed."""

    code = "internal"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str) -> None:
        super().__init__(f"AI generation failed: {message}")
        self.message = message


class DeliveryProviderError(ManabeeError):
    """Raised when the multicast push call could not be completed."""

    code = "internal"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str) -> None:
        super().__init__(f"Failed to send notification: {message}")
        self.message = message


class StoreError(ManabeeError):
    """Raised when the persistence layer fails unexpectedly."""

    code = "internal"

    def __init__(self, message: str) -> None:
        super().__init__(f"Store error: {message}")
        self.message = message


class InvalidTransitionError(ManabeeError):
    """Raised when a question job transition is not allowed by the lifecycle."""

    code = "failed-precondition"
    status_code = status.HTTP_412_PRECONDITION_FAILED

    def __init__(self, from_status: str, to_status: str) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid job transition: {from_status} -> {to_status}")


class InternalError(ManabeeError):
    """Raised for unexpected failures not covered by a more specific error."""

    def __init__(self, message: str = "Internal error") -> None:
        super().__init__(message)
