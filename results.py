"""Outcome type returned by every service operation.

Services never raise for expected business failures. They return a
``ServiceResult`` tagged with one of the ``Outcome`` values; the HTTP layer and
the CLI translate the tag. A result is truthy only when it succeeded, so
``if not service.return_book(loan_id)`` reads naturally.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class Outcome(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID_INPUT = "invalid_input"


@dataclass(frozen=True)
class ServiceResult(Generic[T]):
    outcome: Outcome
    value: Optional[T] = None
    message: str = ""
    entity: Optional[str] = None  # which entity was missing, for NOT_FOUND

    @classmethod
    def ok(cls, value: T = None, message: str = "") -> "ServiceResult[T]":
        return cls(Outcome.OK, value=value, message=message)

    @classmethod
    def not_found(cls, entity: str, message: str | None = None) -> "ServiceResult[T]":
        return cls(Outcome.NOT_FOUND, message=message or f"{entity} not found.", entity=entity)

    @classmethod
    def conflict(cls, message: str) -> "ServiceResult[T]":
        return cls(Outcome.CONFLICT, message=message)

    @classmethod
    def invalid(cls, message: str) -> "ServiceResult[T]":
        return cls(Outcome.INVALID_INPUT, message=message)

    @property
    def is_ok(self) -> bool:
        return self.outcome is Outcome.OK

    def __bool__(self) -> bool:
        return self.is_ok
