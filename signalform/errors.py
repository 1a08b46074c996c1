"""Structured error types for the SignalForm engine.

Two families live here:

- FieldError, a data record describing one field-level validation failure.
  Field, async and cross-field errors are never raised; they travel as data
  so a UI can render all of them at once.
- The SignalFormError exception hierarchy, used for the failures that must
  stop the caller: a cyclic dependency configuration, a submit-time snapshot
  of an invalid form, writes to unknown fields or to a destroyed form, and a
  runaway reactive flush.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from signalform.types import ErrorKind, FieldErrorCode


@dataclass(frozen=True)
class FieldError:
    """Per-field validation error details.

    Represents a single field validation failure with specific error code,
    human-readable message, and optional context about what was expected vs received.

    Attributes:
        path: Name of the field that failed (dot-notation for nested values)
        code: Specific validation error code
        message: Human-readable error description
        expected: Optional - what was expected (type, format, enum values, etc.)
        received: Optional - what was actually received

    Examples:
        >>> err = FieldError(
        ...     path="email",
        ...     code=FieldErrorCode.INVALID_FORMAT,
        ...     message="Invalid email format",
        ...     expected="email",
        ...     received="not-an-email"
        ... )
        >>> err.path
        'email'
    """
    path: str
    code: FieldErrorCode
    message: str
    expected: Optional[Any] = None
    received: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "path": self.path,
            "code": self.code.value if isinstance(self.code, FieldErrorCode) else self.code,
            "message": self.message,
        }
        if self.expected is not None:
            result["expected"] = self.expected
        if self.received is not None:
            result["received"] = self.received
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldError":
        """Create FieldError from dict."""
        code = data["code"]
        if isinstance(code, str):
            code = FieldErrorCode(code)
        return cls(
            path=data["path"],
            code=code,
            message=data["message"],
            expected=data.get("expected"),
            received=data.get("received"),
        )


class SignalFormError(Exception):
    """Base class for every exception raised by SignalForm."""

    kind: ErrorKind = ErrorKind.CONFIGURATION


class CircularDependencyError(SignalFormError):
    """Raised when the dependency rules of a form contain a directed cycle.

    Computed values written back into a cyclic graph would recompute each
    other forever, so the resolver refuses to wire any effect and the form
    never becomes usable.

    Attributes:
        cycles: Every distinct cycle found, each as a closed path of field
            names (e.g. ``["a", "b", "a"]``)
    """

    def __init__(self, cycles: List[List[str]]):
        self.cycles = cycles
        cycle_str = ", ".join(" -> ".join(cycle) for cycle in cycles)
        super().__init__(
            f"Circular dependency detected: {cycle_str}. "
            f"Computed values on this graph would never settle; "
            f"review the dependsOn lists of these fields."
        )


class FormValidationError(SignalFormError):
    """Raised by Form.get_values() when a field fails its pipeline.

    Attributes:
        errors: One FieldError per failing field
    """

    kind = ErrorKind.FIELD

    def __init__(self, errors: List[FieldError]):
        self.errors = errors
        names = ", ".join(e.path for e in errors)
        super().__init__(f"Form has invalid fields: {names}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "ok": False,
            "kind": self.kind.value,
            "fields": [e.to_dict() for e in self.errors],
        }


class UnknownFieldError(SignalFormError, KeyError):
    """Raised when a field name is not registered on the form."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown field '{name}'")

    def __str__(self) -> str:
        return self.args[0]


class FormDestroyedError(SignalFormError):
    """Raised when writing to a form after destroy() was called."""


class ReactiveLoopError(SignalFormError):
    """Raised when a reactive flush keeps re-triggering effects without settling."""


__all__ = [
    "FieldError",
    "SignalFormError",
    "CircularDependencyError",
    "FormValidationError",
    "UnknownFieldError",
    "FormDestroyedError",
    "ReactiveLoopError",
]
