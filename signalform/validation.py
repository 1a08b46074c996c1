"""JSON Schema validation engine for individual form fields.

Each field carries a JSON Schema describing the values it accepts. This
module wraps a jsonschema validator around that schema and translates the
library's errors into FieldError records with stable codes and readable
messages, ready to be shown next to the field.

Values in a live form are Python objects, not JSON, so the validator adds
one keyword on top of Draft 7: ``pyType`` checks for ``date``,
``datetime`` or ``decimal`` instances.
"""

import datetime as _dt
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional

import jsonschema
from jsonschema import Draft7Validator, validators

from signalform.errors import FieldError
from signalform.types import FieldErrorCode
from signalform.utils import is_empty

_PY_TYPES = {
    "date": lambda v: isinstance(v, _dt.date) and not isinstance(v, _dt.datetime),
    "datetime": lambda v: isinstance(v, _dt.datetime),
    "decimal": lambda v: isinstance(v, Decimal),
}


def _py_type(validator: Any, py_type: str, instance: Any, schema: Dict[str, Any]) -> Iterator[jsonschema.ValidationError]:
    check = _PY_TYPES.get(py_type)
    if check is not None and not check(instance):
        yield jsonschema.ValidationError(f"{instance!r} is not of type {py_type!r}")


FieldValidator = validators.extend(Draft7Validator, validators={"pyType": _py_type})


@dataclass(frozen=True)
class ValidationResult:
    """Result of validating one field value against its schema.

    Attributes:
        is_valid: Whether the value passed all validation checks
        errors: List of validation errors (empty if valid)
        data: The value that was validated

    Examples:
        >>> engine = ValidationEngine({'type': 'string'}, name='title')
        >>> result = engine.validate('hello')
        >>> result.is_valid
        True
        >>> result.errors
        []
    """
    is_valid: bool
    errors: List[FieldError]
    data: Any = None

    @property
    def first_message(self) -> Optional[str]:
        """Message of the first error, or None when valid."""
        return self.errors[0].message if self.errors else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "isValid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
        }


class ValidationEngine:
    """JSON Schema validation engine for a single field.

    Wraps the jsonschema library and translates validation errors into
    FieldError records whose path is the field name.

    ``None`` and ``""`` are treated as "no value": they produce a REQUIRED
    error when the field is required and pass untouched otherwise, without
    consulting the schema.

    Attributes:
        schema: The JSON Schema for the field's value
        name: The field name used as error path
        required: Whether an empty value is an error

    Examples:
        >>> engine = ValidationEngine({'type': 'integer', 'minimum': 0}, name='age', required=True)
        >>> engine.validate(30).is_valid
        True
        >>> engine.validate(-1).errors[0].code
        <FieldErrorCode.INVALID_VALUE: 'invalid_value'>
        >>> engine.validate(None).errors[0].code
        <FieldErrorCode.REQUIRED: 'required'>
    """

    def __init__(self, schema: Dict[str, Any], name: str = "", required: bool = False) -> None:
        """Initialize the validation engine with a JSON Schema.

        Args:
            schema: A JSON Schema definition (Draft 7 or compatible)
            name: Field name reported in error paths
            required: Whether None/"" should fail validation

        Raises:
            jsonschema.SchemaError: If the provided schema is invalid
        """
        self.schema = schema
        self.name = name
        self.required = required
        FieldValidator.check_schema(schema)
        self.validator = FieldValidator(schema, format_checker=jsonschema.FormatChecker())

    def validate(self, value: Any) -> ValidationResult:
        """Validate one value against the field schema.

        Args:
            value: The value to validate

        Returns:
            ValidationResult with is_valid flag and errors list
        """
        if is_empty(value):
            if self.required:
                return ValidationResult(
                    is_valid=False,
                    errors=[
                        FieldError(
                            path=self.name,
                            code=FieldErrorCode.REQUIRED,
                            message=f"Field '{self.name}' is required",
                            expected="required field",
                            received=None,
                        )
                    ],
                    data=value,
                )
            return ValidationResult(is_valid=True, errors=[], data=value)

        errors = sorted(self.validator.iter_errors(value), key=lambda e: [str(p) for p in e.path])
        if not errors:
            return ValidationResult(is_valid=True, errors=[], data=value)

        return ValidationResult(
            is_valid=False,
            errors=[self._translate_error(error) for error in errors],
            data=value,
        )

    def _translate_error(self, error: jsonschema.ValidationError) -> FieldError:
        """Translate a jsonschema ValidationError to a FieldError.

        Error mapping:
            - 'type' errors -> INVALID_TYPE
            - 'format' and 'pattern' errors -> INVALID_FORMAT
            - 'enum' or 'const' errors -> INVALID_VALUE
            - 'minLength' / 'minItems' errors -> TOO_SHORT
            - 'maxLength' / 'maxItems' errors -> TOO_LONG
            - numeric bound errors -> INVALID_VALUE
            - anything else -> CUSTOM
        """
        path = self.name
        if error.path:
            suffix = ".".join(str(p) for p in error.path)
            path = f"{path}.{suffix}" if path else suffix
        label = path or "value"

        if error.validator in ("type", "pyType"):
            expected_type = error.validator_value
            received_type = type(error.instance).__name__
            return FieldError(
                path=path,
                code=FieldErrorCode.INVALID_TYPE,
                message=f"Field '{label}' has invalid type. Expected {expected_type}, got {received_type}",
                expected=expected_type,
                received=received_type,
            )

        if error.validator == "format":
            return FieldError(
                path=path,
                code=FieldErrorCode.INVALID_FORMAT,
                message=f"Field '{label}' has invalid format. Expected format: {error.validator_value}",
                expected=error.validator_value,
                received=error.instance,
            )

        if error.validator == "pattern":
            return FieldError(
                path=path,
                code=FieldErrorCode.INVALID_FORMAT,
                message=f"Field '{label}' does not match required pattern: {error.validator_value}",
                expected=f"pattern: {error.validator_value}",
                received=error.instance,
            )

        if error.validator in ("enum", "const"):
            return FieldError(
                path=path,
                code=FieldErrorCode.INVALID_VALUE,
                message=f"Field '{label}' has invalid value. Must be one of: {error.validator_value}",
                expected=error.validator_value,
                received=error.instance,
            )

        if error.validator in ("minLength", "minItems"):
            minimum = error.validator_value
            actual = len(error.instance) if error.instance else 0
            return FieldError(
                path=path,
                code=FieldErrorCode.TOO_SHORT,
                message=f"Field '{label}' is too short. Minimum length: {minimum}, got: {actual}",
                expected=f"minimum {minimum}",
                received=actual,
            )

        if error.validator in ("maxLength", "maxItems"):
            maximum = error.validator_value
            actual = len(error.instance) if error.instance else 0
            return FieldError(
                path=path,
                code=FieldErrorCode.TOO_LONG,
                message=f"Field '{label}' is too long. Maximum length: {maximum}, got: {actual}",
                expected=f"maximum {maximum}",
                received=actual,
            )

        if error.validator in ("minimum", "maximum", "exclusiveMinimum", "exclusiveMaximum", "multipleOf"):
            return FieldError(
                path=path,
                code=FieldErrorCode.INVALID_VALUE,
                message=f"Field '{label}' violates {error.validator} constraint: {error.validator_value}",
                expected=f"{error.validator}: {error.validator_value}",
                received=error.instance,
            )

        return FieldError(
            path=path,
            code=FieldErrorCode.CUSTOM,
            message=f"Field '{label}' validation failed: {error.message}",
            expected=error.validator_value,
            received=error.instance,
        )


__all__ = [
    "FieldValidator",
    "ValidationEngine",
    "ValidationResult",
]
