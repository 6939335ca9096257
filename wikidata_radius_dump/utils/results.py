"""
Explicit phase outcomes.

Phase functions return a PhaseResult instead of deciding at each call site
whether an exception is fatal: ``success`` carries the value, ``degraded``
carries a fallback value plus the error that caused it, ``fatal`` carries
only the error.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar


T = TypeVar("T")


class PhaseOutcome(Enum):
    SUCCESS = "success"
    DEGRADED = "degraded"
    FATAL = "fatal"


@dataclass(frozen=True)
class PhaseResult(Generic[T]):
    outcome: PhaseOutcome
    value: Optional[T] = None
    error: Optional[Exception] = None

    @classmethod
    def success(cls, value: T) -> "PhaseResult[T]":
        return cls(PhaseOutcome.SUCCESS, value=value)

    @classmethod
    def degraded(cls, fallback: T, error: Exception) -> "PhaseResult[T]":
        return cls(PhaseOutcome.DEGRADED, value=fallback, error=error)

    @classmethod
    def fatal(cls, error: Exception) -> "PhaseResult[T]":
        return cls(PhaseOutcome.FATAL, error=error)

    @property
    def is_fatal(self) -> bool:
        return self.outcome is PhaseOutcome.FATAL

    @property
    def is_degraded(self) -> bool:
        return self.outcome is PhaseOutcome.DEGRADED

    def unwrap(self) -> T:
        """Return the value, raising the stored error for fatal results."""
        if self.outcome is PhaseOutcome.FATAL:
            raise self.error
        return self.value
