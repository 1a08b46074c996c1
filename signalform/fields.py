"""Field descriptors: the per-field contract the form engine consumes.

A FieldDescriptor knows three things about one named slot of form data:

- how to validate a value (a JSON Schema, run through ValidationEngine)
- how to turn untrusted input (strings from an importer, a query string,
  a spreadsheet cell) into the field's Python type
- how to display a value

The form engine only ever calls ``validate``, ``transform_input`` and
``format``. The factory functions at the bottom of this module cover the
field kinds most forms need; anything else can be expressed by building a
FieldDescriptor directly.

Usage:
    >>> qty = integer_field("qty", minimum=1, required=True)
    >>> qty.transform_input(" 5 ")
    5
    >>> qty.validate(0).valid
    False
    >>> qty.format(1200)
    '1200'
"""

import datetime as _dt
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, Optional, Union

from dateutil import parser as date_parser

from signalform.types import ValidationOutcome
from signalform.utils import is_empty
from signalform.validation import ValidationEngine, ValidationResult

SchemaSource = Union[Dict[str, Any], Callable[[], Dict[str, Any]]]

# Exceptions a transform may raise on garbage input. Anything else is a bug
# in the transform and propagates.
_TRANSFORM_ERRORS = (ValueError, TypeError, ArithmeticError, InvalidOperation, OverflowError)


@dataclass(frozen=True)
class FieldDescriptor:
    """Immutable description of one form field.

    Attributes:
        name: Unique key of the field within its form
        schema: JSON Schema for the field's value, or a zero-argument
            callable returning one
        label: Display label (defaults to the name)
        required: Whether None/"" fail validation
        transform: Converts untrusted input into the field's type; may raise
            ValueError/TypeError on garbage, which maps to None
        formatter: Renders a non-None value for display (defaults to str)

    Examples:
        >>> f = FieldDescriptor("nickname", {"type": "string", "maxLength": 3})
        >>> f.validate("bob")
        ValidationOutcome(valid=True, error_message=None)
        >>> f.validate("robert").valid
        False
    """
    name: str
    schema: SchemaSource = field(default_factory=dict)
    label: Optional[str] = None
    required: bool = False
    transform: Optional[Callable[[Any], Any]] = None
    formatter: Optional[Callable[[Any], str]] = None
    _engine: ValidationEngine = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        """Validate the name and build the validation engine."""
        if not self.name:
            raise ValueError("FieldDescriptor requires a non-empty name")
        if self.label is None:
            object.__setattr__(self, "label", self.name)
        object.__setattr__(
            self,
            "_engine",
            ValidationEngine(self.resolve_schema(), name=self.name, required=self.required),
        )

    def resolve_schema(self) -> Dict[str, Any]:
        """Return the JSON Schema, calling the schema factory if one was given."""
        return self.schema() if callable(self.schema) else self.schema

    def check(self, raw: Any) -> ValidationResult:
        """Validate and return every error, not just the first."""
        return self._engine.validate(raw)

    def validate(self, raw: Any) -> ValidationOutcome:
        """Validate a value, reporting only the first error message."""
        result = self._engine.validate(raw)
        return ValidationOutcome(valid=result.is_valid, error_message=result.first_message)

    def transform_input(self, raw: Any) -> Any:
        """Convert untrusted input to the field's type. Never raises on bad input.

        Returns:
            The converted value, or None for empty or unparseable input
        """
        if is_empty(raw):
            return None
        if self.transform is None:
            return raw
        try:
            return self.transform(raw)
        except _TRANSFORM_ERRORS:
            return None

    def format(self, value: Any) -> str:
        """Render a value for display. None renders as an empty string."""
        if value is None:
            return ""
        if self.formatter is None:
            return str(value)
        return self.formatter(value)


def _strip_string(raw: Any) -> Optional[str]:
    text = str(raw).strip()
    return text or None


def string_field(
    name: str,
    *,
    label: Optional[str] = None,
    required: bool = False,
    min_length: Optional[int] = None,
    max_length: Optional[int] = None,
    pattern: Optional[str] = None,
    format: Optional[str] = None,
) -> FieldDescriptor:
    """Text field. Input is converted with ``str`` and stripped."""
    schema: Dict[str, Any] = {"type": "string"}
    if min_length is not None:
        schema["minLength"] = min_length
    if max_length is not None:
        schema["maxLength"] = max_length
    if pattern is not None:
        schema["pattern"] = pattern
    if format is not None:
        schema["format"] = format
    return FieldDescriptor(name, schema, label=label, required=required, transform=_strip_string)


def _to_int(raw: Any) -> int:
    if isinstance(raw, bool):
        raise TypeError("booleans are not integers")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, (float, Decimal)):
        if raw != int(raw):
            raise ValueError(f"{raw!r} is not integral")
        return int(raw)
    return int(str(raw).strip().replace("_", ""))


def integer_field(
    name: str,
    *,
    label: Optional[str] = None,
    required: bool = False,
    minimum: Optional[int] = None,
    maximum: Optional[int] = None,
) -> FieldDescriptor:
    """Whole-number field."""
    schema: Dict[str, Any] = {"type": "integer"}
    if minimum is not None:
        schema["minimum"] = minimum
    if maximum is not None:
        schema["maximum"] = maximum
    return FieldDescriptor(name, schema, label=label, required=required, transform=_to_int)


def decimal_field(
    name: str,
    *,
    label: Optional[str] = None,
    required: bool = False,
    minimum: Optional[Union[int, Decimal]] = None,
    maximum: Optional[Union[int, Decimal]] = None,
    places: Optional[int] = None,
) -> FieldDescriptor:
    """Exact decimal field. Values are Decimal; ints and floats also validate.

    ``places`` quantizes transformed input and fixes the display precision.
    """
    schema: Dict[str, Any] = {"type": "number"}
    if minimum is not None:
        schema["minimum"] = minimum
    if maximum is not None:
        schema["maximum"] = maximum

    def transform(raw: Any) -> Decimal:
        if isinstance(raw, bool):
            raise TypeError("booleans are not decimals")
        value = raw if isinstance(raw, Decimal) else Decimal(str(raw).strip().replace(",", ""))
        if not value.is_finite():
            raise ValueError(f"{raw!r} is not a finite number")
        if places is not None:
            value = value.quantize(Decimal(1).scaleb(-places))
        return value

    def formatter(value: Any) -> str:
        if places is None:
            return str(value)
        return f"{Decimal(value):,.{places}f}"

    return FieldDescriptor(
        name, schema, label=label, required=required, transform=transform, formatter=formatter
    )


_TRUE_STRINGS = frozenset({"true", "1", "yes", "y", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "n", "off"})


def _to_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)) and raw in (0, 1):
        return bool(raw)
    text = str(raw).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise ValueError(f"cannot interpret {raw!r} as a boolean")


def boolean_field(
    name: str, *, label: Optional[str] = None, required: bool = False
) -> FieldDescriptor:
    """Yes/no field. Accepts common textual spellings on input."""
    return FieldDescriptor(
        name,
        {"type": "boolean"},
        label=label,
        required=required,
        transform=_to_bool,
        formatter=lambda v: "Yes" if v else "No",
    )


def date_field(
    name: str,
    *,
    label: Optional[str] = None,
    required: bool = False,
    dayfirst: bool = False,
    display_format: str = "%Y-%m-%d",
) -> FieldDescriptor:
    """Calendar date field. Strings are parsed leniently with dateutil."""

    def transform(raw: Any) -> _dt.date:
        if isinstance(raw, _dt.datetime):
            return raw.date()
        if isinstance(raw, _dt.date):
            return raw
        return date_parser.parse(str(raw), dayfirst=dayfirst).date()

    return FieldDescriptor(
        name,
        {"pyType": "date"},
        label=label,
        required=required,
        transform=transform,
        formatter=lambda v: v.strftime(display_format),
    )


def enum_field(
    name: str,
    choices: Iterable[Any],
    *,
    label: Optional[str] = None,
    required: bool = False,
) -> FieldDescriptor:
    """Single choice among fixed options. Input matches by value or by its string form."""
    options = list(choices)

    def transform(raw: Any) -> Any:
        if raw in options:
            return raw
        text = str(raw).strip()
        for option in options:
            if str(option) == text:
                return option
        raise ValueError(f"{raw!r} is not one of {options!r}")

    return FieldDescriptor(name, {"enum": options}, label=label, required=required, transform=transform)


__all__ = [
    "FieldDescriptor",
    "string_field",
    "integer_field",
    "decimal_field",
    "boolean_field",
    "date_field",
    "enum_field",
]
