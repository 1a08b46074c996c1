"""SignalForm: a reactive form state engine.

SignalForm turns a list of declarative field descriptors into live form
state:
- Per-field value, touched, error and validity cells that update reactively
- Form-level validity, dirtiness and error maps, including cross-field rules
- Dependency rules between fields (visibility, enablement, computed values)
  with cycle detection
- Debounced, cancellable async validation where only the latest check wins
- Undo/redo history with named checkpoints

Basic usage:
    >>> from signalform import Form, string_field, integer_field
    >>> form = Form(
    ...     [string_field("name", required=True), integer_field("age", minimum=0)],
    ...     initial={"name": "a", "age": 1},
    ... )
    >>> form.set_value("name", "b")
    >>> form.get_dirty_values()
    {'name': 'b'}
    >>> form.destroy()
"""

__version__ = "0.1.0"
__author__ = "SignalForm Team"

# Version info
VERSION = (0, 1, 0)

# Core exports
from signalform.async_validator import AsyncValidator, CancellationToken
from signalform.dependencies import (
    DependencyContext,
    DependencyPatterns,
    DependencyResolver,
    DependencyRule,
)
from signalform.errors import (
    CircularDependencyError,
    FieldError,
    FormDestroyedError,
    FormValidationError,
    ReactiveLoopError,
    SignalFormError,
    UnknownFieldError,
)
from signalform.events import EventEmitter, FormEvent
from signalform.fields import (
    FieldDescriptor,
    boolean_field,
    date_field,
    decimal_field,
    enum_field,
    integer_field,
    string_field,
)
from signalform.form import CrossFieldRule, FieldConfig, Form, FormField, FormOptions
from signalform.history import FormHistory, HistoryEntry, HistoryOptions
from signalform.reactive import Cell, Derived, action, batch, effect, reaction, untracked
from signalform.types import FieldErrorCode, FormEventType, ValidationOutcome

# Package metadata
__all__ = [
    "__version__",
    "VERSION",
    "Form",
    "FormField",
    "FormOptions",
    "FieldConfig",
    "CrossFieldRule",
    "FieldDescriptor",
    "string_field",
    "integer_field",
    "decimal_field",
    "boolean_field",
    "date_field",
    "enum_field",
    "AsyncValidator",
    "CancellationToken",
    "DependencyResolver",
    "DependencyRule",
    "DependencyContext",
    "DependencyPatterns",
    "FormHistory",
    "HistoryEntry",
    "HistoryOptions",
    "EventEmitter",
    "FormEvent",
    "FormEventType",
    "FieldErrorCode",
    "ValidationOutcome",
    "Cell",
    "Derived",
    "effect",
    "reaction",
    "batch",
    "action",
    "untracked",
    "FieldError",
    "SignalFormError",
    "CircularDependencyError",
    "FormValidationError",
    "UnknownFieldError",
    "FormDestroyedError",
    "ReactiveLoopError",
]
