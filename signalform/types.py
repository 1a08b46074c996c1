"""Core type definitions for the SignalForm engine.

This module defines the enumerations shared across the package:
- FieldErrorCode: Validation error codes for individual fields
- ErrorKind: Whether an exception reports invalid data or a broken setup
- FormEventType: Event types emitted by a form on its event stream

Plus the small value object returned by the field contract:
- ValidationOutcome: Result of validating a single raw value
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class FieldErrorCode(str, Enum):
    """Validation error codes for individual field failures.

    Used in FieldError objects to provide specific, actionable feedback.
    """
    REQUIRED = "required"
    INVALID_TYPE = "invalid_type"
    INVALID_FORMAT = "invalid_format"
    INVALID_VALUE = "invalid_value"
    TOO_LONG = "too_long"
    TOO_SHORT = "too_short"
    CUSTOM = "custom"


class ErrorKind(str, Enum):
    """Category of a raised SignalFormError.

    FIELD errors report invalid values and can be fixed by editing the form.
    CONFIGURATION errors report a form that cannot be built or used as set up.
    """
    FIELD = "field"
    CONFIGURATION = "configuration"


class FormEventType(str, Enum):
    """Event types for the form event stream."""
    FIELD_UPDATED = "field.updated"
    FORM_TOUCHED = "form.touched"
    FORM_RESET = "form.reset"
    VALIDATION_PASSED = "validation.passed"
    VALIDATION_FAILED = "validation.failed"
    HISTORY_UNDO = "history.undo"
    HISTORY_REDO = "history.redo"
    HISTORY_CHECKPOINT = "history.checkpoint"
    FORM_DESTROYED = "form.destroyed"


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of running a field's validation rule against one value.

    Attributes:
        valid: Whether the value satisfied the field's schema
        error_message: First human-readable error, None when valid

    Examples:
        >>> ok = ValidationOutcome(valid=True)
        >>> ok.error_message is None
        True
    """
    valid: bool
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {"valid": self.valid}
        if self.error_message is not None:
            result["errorMessage"] = self.error_message
        return result


__all__ = [
    "FieldErrorCode",
    "ErrorKind",
    "FormEventType",
    "ValidationOutcome",
]
