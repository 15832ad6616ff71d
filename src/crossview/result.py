from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class CalibrationError(Exception):
    pass


class InvalidInputError(CalibrationError, ValueError):
    """Buffer or shape contract violation. Raised, never returned."""


class FailureReason(str, Enum):
    DETECTION_FAILURE = "detection_failure"
    INSUFFICIENT_DATA = "insufficient_data"
    NUMERICAL_FAILURE = "numerical_failure"
    INVALID_INPUT = "invalid_input"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """
    Uniform success/failure result.

    A failed outcome may still carry a documented fallback `value`
    (e.g. the identity homography for a degenerate fit).
    """

    value: T | None = None
    reason: FailureReason | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.reason is None

    def __bool__(self) -> bool:
        return self.ok

    def unwrap(self) -> T:
        if self.reason is not None:
            raise CalibrationError(f"{self.reason.value}: {self.message}" if self.message else self.reason.value)
        return self.value  # type: ignore[return-value]

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, reason: FailureReason, message: str = "", fallback: T | None = None) -> "Outcome[T]":
        return cls(value=fallback, reason=reason, message=message)
