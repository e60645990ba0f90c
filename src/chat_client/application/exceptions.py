from __future__ import annotations

from chat_client.domain.value_objects.enums import ErrorKind


class AppError(Exception):
    """Base application error."""

    kind: ErrorKind = ErrorKind.NETWORK_FAILURE

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class NetworkFailure(AppError):
    """Transient transport failure or timeout. Eligible for manual retry."""

    kind = ErrorKind.NETWORK_FAILURE


class AuthExpired(AppError):
    kind = ErrorKind.AUTH_EXPIRED


class NotFoundError(AppError):
    kind = ErrorKind.NOT_FOUND


class MalformedServerData(AppError):
    kind = ErrorKind.MALFORMED_SERVER_DATA


class FetchFailedError(AppError):
    """History fetch failed; ``cause`` keeps the underlying kind."""

    kind = ErrorKind.FETCH_FAILED

    def __init__(self, detail: str = "", cause: ErrorKind | None = None) -> None:
        self.cause = cause
        super().__init__(detail)


class ConflictError(AppError):
    kind = ErrorKind.CONFLICT


class ValidationError(AppError):
    kind = ErrorKind.VALIDATION


class SessionClosedError(AppError):
    kind = ErrorKind.SESSION_CLOSED


class ForbiddenError(AppError):
    kind = ErrorKind.FORBIDDEN
