"""Typed results returned by the auction controller.

Callers branch on ``Outcome.kind`` instead of parsing messages:

- ok: operation applied (or was an idempotent no-op)
- denied: visibility or eligibility rule refused the caller
- validation: malformed, missing or wrong-mode bid value
- conflict: auction closed, bid no longer improves, or invalid transition
- not_found: task or user does not exist
"""
import enum
from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class OutcomeKind(str, enum.Enum):
    """Outcome categories."""

    OK = "ok"
    DENIED = "denied"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of an engine operation."""

    kind: OutcomeKind
    value: Optional[T] = None
    reason: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.OK

    @classmethod
    def success(cls, value: Optional[T] = None, **details: Any) -> "Outcome[T]":
        return cls(OutcomeKind.OK, value=value, details=details)

    @classmethod
    def denied(cls, reason: str, **details: Any) -> "Outcome[T]":
        return cls(OutcomeKind.DENIED, reason=reason, details=details)

    @classmethod
    def invalid(cls, reason: str, **details: Any) -> "Outcome[T]":
        return cls(OutcomeKind.VALIDATION, reason=reason, details=details)

    @classmethod
    def conflict(cls, reason: str, **details: Any) -> "Outcome[T]":
        return cls(OutcomeKind.CONFLICT, reason=reason, details=details)

    @classmethod
    def not_found(cls, reason: str, **details: Any) -> "Outcome[T]":
        return cls(OutcomeKind.NOT_FOUND, reason=reason, details=details)
