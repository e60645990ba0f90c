from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from chat_client.application.exceptions import AppError, FetchFailedError
from chat_client.domain.value_objects.enums import ErrorKind

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Outcome(Generic[T]):
    """Explicit result of an operation whose failures the caller must handle."""

    value: T | None = None
    error: ErrorKind | None = None
    detail: str = ""
    cause: ErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None) -> Outcome[T]:
        return cls(value=value)

    @classmethod
    def failure(
        cls,
        error: ErrorKind,
        detail: str = "",
        cause: ErrorKind | None = None,
    ) -> Outcome[T]:
        return cls(error=error, detail=detail, cause=cause)

    @classmethod
    def from_error(cls, exc: AppError) -> Outcome[T]:
        cause = exc.cause if isinstance(exc, FetchFailedError) else None
        return cls(error=exc.kind, detail=exc.detail, cause=cause)
