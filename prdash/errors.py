"""Upstream failure classification and the shared error notification channel."""

from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel, ConfigDict


class ApiErrorKind(str, Enum):
    AUTH_INVALID = "auth_invalid"  # 401
    AUTH_FORBIDDEN = "auth_forbidden"  # 403
    NETWORK_UNAVAILABLE = "network_unavailable"  # no status
    UPSTREAM_ERROR = "upstream_error"  # anything else


class ApiError(BaseModel):
    """A classified upstream failure, as published to subscribers."""

    model_config = ConfigDict(frozen=True)

    kind: ApiErrorKind
    operation: str
    status: int | None = None
    message: str
    detail: str = ""

    @property
    def is_auth_error(self) -> bool:
        return self.kind in (ApiErrorKind.AUTH_INVALID, ApiErrorKind.AUTH_FORBIDDEN)


def classify(operation: str, status: int | None, detail: str = "") -> ApiError:
    """Map an HTTP status (or its absence) onto one of the four error kinds."""
    if status == 401:
        kind = ApiErrorKind.AUTH_INVALID
        message = (
            "Authentication failed. Your Personal Access Token may be invalid or expired. "
            "Please provide a valid PAT."
        )
    elif status == 403:
        kind = ApiErrorKind.AUTH_FORBIDDEN
        message = (
            "Access forbidden. Your Personal Access Token may not have the required permissions. "
            "Please provide a valid PAT with proper scopes."
        )
    elif not status:
        kind = ApiErrorKind.NETWORK_UNAVAILABLE
        message = "Network error occurred. Please check your connection and Personal Access Token configuration."
    else:
        kind = ApiErrorKind.UPSTREAM_ERROR
        message = (
            f"Error occurred while fetching data ({status}). "
            "Please verify your Personal Access Token and configuration."
        )
    return ApiError(kind=kind, operation=operation, status=status or None, message=message, detail=detail)


Subscriber = Callable[[ApiError], None]


class ErrorNotifier:
    """Fan-out of classified errors to whoever is listening (usually the CLI)."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, error: ApiError) -> None:
        for callback in list(self._subscribers):
            callback(error)


class LoadError(RuntimeError):
    """A response arrived but its shape cannot be processed.

    This is an upstream contract break rather than an outage, so it is raised
    to the caller instead of being replaced by a default.
    """

    def __init__(self, operation: str, detail: str) -> None:
        super().__init__(f"{operation} returned an unexpected response: {detail}")
        self.operation = operation
        self.detail = detail
