from __future__ import annotations

from enum import StrEnum


class PendingState(StrEnum):
    PENDING = "pending"
    FAILED = "failed"


class ConnectionState(StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class SessionState(StrEnum):
    CLOSED = "closed"
    OPENING = "opening"
    ACTIVE = "active"


class ChangeType(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ErrorKind(StrEnum):
    NETWORK_FAILURE = "network_failure"
    AUTH_EXPIRED = "auth_expired"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    MALFORMED_SERVER_DATA = "malformed_server_data"
    FETCH_FAILED = "fetch_failed"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    SESSION_CLOSED = "session_closed"
    SUPERSEDED = "superseded"
