"""The form aggregator: reactive per-field state composed into form-level signals.

A Form is built from FieldDescriptors plus optional configuration:

- one FormField per descriptor, holding value/touched cells and the
  derived error, validity, dirtiness, visibility and enablement
- a DependencyResolver wired from the fields' dependency rules
- an AsyncValidator per field that configures one
- cross-field rules evaluated against the whole value map
- an optional FormHistory recording every change of the value map

Errors are data: a field's ``error`` cell stays None until the field is
touched, so a fresh form does not greet the user with a wall of errors.
``touch_all()`` (or ``validate_all()``) surfaces everything at once.

Usage:
    form = Form(
        [decimal_field("price"), integer_field("qty"), decimal_field("total")],
        initial={"price": Decimal("0"), "qty": 0},
        field_configs={
            "total": FieldConfig(dependency=DependencyRule(
                depends_on=["price", "qty"],
                compute=lambda v: (v["price"] or 0) * (v["qty"] or 0),
            )),
        },
        history=True,
    )
    form.patch_values({"price": Decimal("100"), "qty": 5})
    form.values.get()["total"]    # Decimal("500")
    form.undo()
    form.destroy()
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from signalform.async_validator import AsyncValidator, AsyncValidatorFn
from signalform.dependencies import DependencyResolver, DependencyRule
from signalform.errors import (
    FieldError,
    FormDestroyedError,
    FormValidationError,
    SignalFormError,
    UnknownFieldError,
)
from signalform.events import EventEmitter, FormEvent, new_event_id
from signalform.fields import FieldDescriptor
from signalform.history import FormHistory, HistoryOptions
from signalform.reactive import Cell, Derived, Reaction, batch, reaction
from signalform.types import FormEventType
from signalform.utils import deep_clone, deep_equal, is_empty

logger = logging.getLogger(__name__)

Values = Dict[str, Any]


@dataclass(frozen=True)
class FieldConfig:
    """Per-field extras beyond the descriptor.

    Attributes:
        async_validate: Async check ``(value, token) -> message | None``
        async_debounce_ms: Debounce before the async check runs
        dependency: Visibility/enablement/computed-value rule
        readonly: Ignore user writes to this field
    """
    async_validate: Optional[AsyncValidatorFn] = None
    async_debounce_ms: int = 300
    dependency: Optional[DependencyRule] = None
    readonly: bool = False

    def __post_init__(self):
        if self.async_debounce_ms < 0:
            raise ValueError(f"async_debounce_ms must be >= 0, got {self.async_debounce_ms}")


@dataclass(frozen=True)
class CrossFieldRule:
    """A rule validated against several fields jointly.

    Attributes:
        fields: Names of the fields the rule reads
        validate: Values -> error message, or None when satisfied
        error_field: Field the message is routed to, if any

    Examples:
        >>> rule = CrossFieldRule(
        ...     fields=["password", "confirm"],
        ...     validate=lambda v: None if v["password"] == v["confirm"] else "Passwords differ",
        ...     error_field="confirm",
        ... )
        >>> rule.validate({"password": "a", "confirm": "b"})
        'Passwords differ'
    """
    fields: Sequence[str]
    validate: Callable[[Values], Optional[str]]
    error_field: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "fields", tuple(self.fields))


@dataclass(frozen=True)
class FormOptions:
    """Form-wide configuration.

    Attributes:
        field_configs: FieldConfig (or equivalent dict) per field name
        cross_validations: Cross-field rules
        history: Record an undo/redo history of the value map
        history_options: Size and debounce of that history
    """
    field_configs: Mapping[str, FieldConfig] = field(default_factory=dict)
    cross_validations: Sequence[CrossFieldRule] = ()
    history: bool = False
    history_options: Optional[HistoryOptions] = None

    def __post_init__(self):
        configs = {
            name: config if isinstance(config, FieldConfig) else FieldConfig(**config)
            for name, config in self.field_configs.items()
        }
        object.__setattr__(self, "field_configs", configs)
        object.__setattr__(self, "cross_validations", tuple(self.cross_validations))


class FormField:
    """Reactive state of one field.

    All attributes are read-only cells; write through the owning Form.

    Attributes:
        value: Current value
        initial: Value the field is dirty against
        touched: Whether the user interacted with the field
        error: First validation message, None while untouched or valid
        valid: ``error`` is None
        async_validating: An async check is running
        async_error: Latest async check message
        fully_valid: Valid synchronously and asynchronously
        combined_error: ``error``, else ``async_error``, else ``cross_error``
        cross_error: First cross-field message routed to this field
        dirty: ``value`` differs structurally from ``initial``
        visible: Dependency-resolved visibility
        enabled: Dependency-resolved enablement
        readonly: User writes are ignored
    """

    def __init__(
        self,
        descriptor: FieldDescriptor,
        initial: Any,
        config: FieldConfig,
        resolver: DependencyResolver,
        routed_cross_errors: Derived[Dict[str, List[str]]],
    ):
        self.descriptor = descriptor
        self.name = descriptor.name
        self.readonly = config.readonly
        self._value: Cell[Any] = Cell(deep_clone(initial))
        self._initial: Cell[Any] = Cell(deep_clone(initial))
        self._touched: Cell[bool] = Cell(False)

        self.value: Derived[Any] = self._value.as_readonly()
        self.initial: Derived[Any] = self._initial.as_readonly()
        self.touched: Derived[bool] = self._touched.as_readonly()
        self.error: Derived[Optional[str]] = Derived(self._compute_error)
        self.valid: Derived[bool] = Derived(lambda: self.error.get() is None)

        self.validator: Optional[AsyncValidator] = None
        if config.async_validate is not None:
            self.validator = AsyncValidator(
                config.async_validate, debounce_ms=config.async_debounce_ms, name=self.name
            )
            self.async_validating: Derived[bool] = self.validator.loading
            self.async_error: Derived[Optional[str]] = self.validator.error
        else:
            self.async_validating = Cell(False).as_readonly()
            self.async_error = Cell(None).as_readonly()

        self.cross_error: Derived[Optional[str]] = Derived(
            lambda: next(iter(routed_cross_errors.get().get(self.name, ())), None)
        )
        self.fully_valid: Derived[bool] = Derived(
            lambda: self.valid.get() and self.async_error.get() is None
        )
        self.combined_error: Derived[Optional[str]] = Derived(
            lambda: self.error.get() or self.async_error.get() or self.cross_error.get()
        )
        self.dirty: Derived[bool] = Derived(
            lambda: not deep_equal(self._value.get(), self._initial.get())
        )
        self.visible: Derived[bool] = Derived(lambda: resolver.is_visible(self.name))
        self.enabled: Derived[bool] = Derived(lambda: resolver.is_enabled(self.name))

    def _compute_error(self) -> Optional[str]:
        if not self._touched.get():
            return None
        return self.descriptor.validate(self._value.get()).error_message

    def format(self) -> str:
        """The current value rendered for display."""
        return self.descriptor.format(self._value.peek())

    def __repr__(self) -> str:
        return f"FormField({self.name!r}, value={self._value.peek()!r})"


class Form:
    """Reactive form state built from field descriptors.

    Args:
        fields: One descriptor per field; names must be unique
        initial: Initial values by field name; missing fields start at None
        options: FormOptions; alternatively pass its attributes as keywords
        form_id: Identifier stamped on emitted events (generated if omitted)

    Raises:
        CircularDependencyError: If the dependency rules contain a cycle
        UnknownFieldError: If configuration names a field that does not exist
        ValueError: On duplicate field names

    Attributes:
        values: Map of every field's value
        initial_values: Map of every field's initial value
        errors: Map of every field's synchronous error
        async_errors: Map of every field's async error
        cross_errors: Messages of every failing cross-field rule
        cross_field_errors: Routed cross-field messages by field name
        valid: All fields fully valid and no cross-field errors
        validating: Any async check in flight
        dirty: Any field differs from its initial value
        pristine: No field has been touched
        visible_fields: Names of the visible fields
        dependencies: The form's DependencyResolver
        events: EventEmitter for FormEvents
    """

    def __init__(
        self,
        fields: Iterable[FieldDescriptor],
        initial: Optional[Mapping[str, Any]] = None,
        options: Optional[FormOptions] = None,
        *,
        form_id: Optional[str] = None,
        **kwargs: Any,
    ):
        if options is not None and kwargs:
            raise TypeError("Pass either options or keyword options, not both")
        self.options = options if options is not None else FormOptions(**kwargs)
        self.form_id = form_id or f"form_{uuid.uuid4().hex[:16]}"
        self.events = EventEmitter()
        self.dependencies = DependencyResolver()
        self._destroyed = False
        self._effects: List[Reaction] = []
        self._history: Optional[FormHistory[Values]] = None

        descriptors = list(fields)
        names = [d.name for d in descriptors]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate field names: {', '.join(duplicates)}")
        self._check_configuration(names)

        initial = dict(initial or {})
        self._fields: Dict[str, FormField] = {}
        self._routed_cross: Derived[Dict[str, List[str]]] = Derived(self._compute_routed_cross)
        for descriptor in descriptors:
            config = self.options.field_configs.get(descriptor.name, FieldConfig())
            self._fields[descriptor.name] = FormField(
                descriptor,
                initial.get(descriptor.name),
                config,
                self.dependencies,
                self._routed_cross,
            )
            if config.dependency is not None:
                self.dependencies.register(descriptor.name, config.dependency)

        self.values: Derived[Values] = Derived(
            lambda: {name: f.value.get() for name, f in self._fields.items()}
        )
        self.initial_values: Derived[Values] = Derived(
            lambda: {name: f.initial.get() for name, f in self._fields.items()}
        )
        self.errors: Derived[Dict[str, Optional[str]]] = Derived(
            lambda: {name: f.error.get() for name, f in self._fields.items()}
        )
        self.async_errors: Derived[Dict[str, Optional[str]]] = Derived(
            lambda: {name: f.async_error.get() for name, f in self._fields.items()}
        )
        self._cross_results: Derived[List[tuple]] = Derived(self._evaluate_cross_rules)
        self.cross_errors: Derived[List[str]] = Derived(
            lambda: [message for _, message in self._cross_results.get()]
        )
        self.cross_field_errors: Derived[Dict[str, str]] = Derived(
            lambda: {name: messages[0] for name, messages in self._routed_cross.get().items()}
        )
        self.valid: Derived[bool] = Derived(
            lambda: all(f.fully_valid.get() for f in self._fields.values())
            and not self.cross_errors.get()
        )
        self.validating: Derived[bool] = Derived(
            lambda: any(f.async_validating.get() for f in self._fields.values())
        )
        self.dirty: Derived[bool] = Derived(
            lambda: any(f.dirty.get() for f in self._fields.values())
        )
        self.pristine: Derived[bool] = Derived(
            lambda: not any(f.touched.get() for f in self._fields.values())
        )
        self.visible_fields: Derived[List[str]] = Derived(
            lambda: [name for name, f in self._fields.items() if f.visible.get()]
        )

        try:
            self.dependencies.initialize(self.values, self._write, self._reset_field)
            self._wire_async_validation()
            if self.options.history:
                self._wire_history()
        except Exception:
            self._teardown()
            raise
        logger.debug("Form %s ready with fields %s", self.form_id, names)

    def _check_configuration(self, names: List[str]) -> None:
        known = set(names)
        for name, config in self.options.field_configs.items():
            if name not in known:
                raise UnknownFieldError(name)
            if config.dependency is not None:
                for dep in config.dependency.depends_on:
                    if dep not in known:
                        raise UnknownFieldError(dep)
        for rule in self.options.cross_validations:
            for name in rule.fields:
                if name not in known:
                    raise UnknownFieldError(name)
            if rule.error_field is not None and rule.error_field not in known:
                raise UnknownFieldError(rule.error_field)

    def _evaluate_cross_rules(self) -> List[tuple]:
        values = self.values.get()
        results = []
        for rule in self.options.cross_validations:
            message = rule.validate(values)
            if message:
                results.append((rule, message))
        return results

    def _compute_routed_cross(self) -> Dict[str, List[str]]:
        routed: Dict[str, List[str]] = {}
        for rule, message in self._cross_results.get():
            if rule.error_field is not None:
                routed.setdefault(rule.error_field, []).append(message)
        return routed

    def _wire_async_validation(self) -> None:
        for f in self._fields.values():
            validator = f.validator
            if validator is None:
                continue

            def revalidate(state: tuple, validator: AsyncValidator = validator) -> None:
                value, touched = state
                if touched and not self._destroyed:
                    validator.validate(value)

            self._effects.append(
                reaction(
                    lambda f=f: (f.value.get(), f.touched.get()),
                    revalidate,
                    fire_immediately=True,
                )
            )

    def _wire_history(self) -> None:
        history: FormHistory[Values] = FormHistory(
            self.values.peek(), self.options.history_options
        )
        self._history = history

        def record(values: Values) -> None:
            if not history.pending and deep_equal(values, history.current_entry.state):
                return
            history.push(values)

        self._effects.append(reaction(self.values.get, record))

    # -- field access ----------------------------------------------------

    @property
    def fields(self) -> Dict[str, FormField]:
        return dict(self._fields)

    @property
    def history(self) -> Optional[FormHistory[Values]]:
        """The form's history, or None when history is disabled."""
        return self._history

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def field(self, name: str) -> FormField:
        """Look up a field by name.

        Raises:
            UnknownFieldError: If no field is called ``name``
        """
        try:
            return self._fields[name]
        except KeyError:
            raise UnknownFieldError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._fields

    def format_value(self, name: str) -> str:
        """Display string for the field's current value."""
        return self.field(name).format()

    # -- writes ----------------------------------------------------------

    def _ensure_alive(self) -> None:
        if self._destroyed:
            raise FormDestroyedError(f"Form {self.form_id} has been destroyed")

    def _write(self, name: str, value: Any) -> None:
        f = self._fields.get(name)
        if f is not None:
            f._value.set(value)

    def _reset_field(self, name: str) -> None:
        f = self._fields.get(name)
        if f is not None:
            with batch():
                f._value.set(deep_clone(f._initial.peek()))
                f._touched.set(False)

    def _emit(self, event_type: FormEventType, field_name: Optional[str] = None, **payload: Any) -> None:
        self.events.emit(
            FormEvent(
                event_id=new_event_id(),
                type=event_type,
                form_id=self.form_id,
                field=field_name,
                payload=payload or None,
            )
        )

    def set_value(self, name: str, value: Any) -> None:
        """Write one field.

        Writes to readonly fields are ignored.

        Raises:
            UnknownFieldError: If no field is called ``name``
            FormDestroyedError: After ``destroy()``
        """
        self._ensure_alive()
        f = self.field(name)
        if f.readonly:
            logger.debug("Ignoring write to readonly field %r", name)
            return
        if deep_equal(f._value.peek(), value):
            return
        f._value.set(value)
        self._emit(FormEventType.FIELD_UPDATED, name, value=value)

    def set_raw_value(self, name: str, raw: Any) -> None:
        """Write untrusted input, converted by the field's ``transform_input``."""
        self.set_value(name, self.field(name).descriptor.transform_input(raw))

    def patch_values(self, values: Mapping[str, Any]) -> None:
        """Write several fields as one change.

        Every name is checked before anything is written.
        """
        self._ensure_alive()
        for name in values:
            self.field(name)
        with batch():
            for name, value in values.items():
                self.set_value(name, value)

    def touch_all(self) -> None:
        """Mark every field touched, surfacing all validation errors."""
        self._ensure_alive()
        with batch():
            for f in self._fields.values():
                f._touched.set(True)
        self._emit(FormEventType.FORM_TOUCHED)

    def mark_touched(self, name: str) -> None:
        self._ensure_alive()
        self.field(name)._touched.set(True)

    def mark_pristine(self) -> None:
        """Clear the touched flag of every field. Values are kept."""
        self._ensure_alive()
        with batch():
            for f in self._fields.values():
                f._touched.set(False)

    def reset(self, new_initial: Optional[Mapping[str, Any]] = None) -> None:
        """Reinstall initial values and clear touched and async state.

        Args:
            new_initial: Replaces the initial values; fields it omits reset
                to None. Without it the current initial values are reused.
        """
        self._ensure_alive()
        source = dict(new_initial) if new_initial is not None else self.initial_values.peek()
        with batch():
            for name, f in self._fields.items():
                value = source.get(name)
                f._initial.set(deep_clone(value))
                f._value.set(deep_clone(value))
                f._touched.set(False)
                if f.validator is not None:
                    f.validator.reset()
        self._emit(FormEventType.FORM_RESET)

    # -- reads -----------------------------------------------------------

    def get_values(self) -> Values:
        """Trusted snapshot of all values, run through each field's pipeline.

        Every value is converted with ``transform_input`` and validated.

        Raises:
            FormValidationError: Listing every field that fails
        """
        result: Values = {}
        errors: List[FieldError] = []
        for name, f in self._fields.items():
            raw = f.value.peek()
            candidate = f.descriptor.transform_input(raw)
            if candidate is None and not is_empty(raw):
                candidate = raw
            checked = f.descriptor.check(candidate)
            if checked.is_valid:
                result[name] = deep_clone(candidate)
            else:
                errors.extend(checked.errors)
        if errors:
            raise FormValidationError(errors)
        return result

    def get_dirty_values(self) -> Values:
        """Only the fields whose value differs from their initial value."""
        return {
            name: deep_clone(f.value.peek())
            for name, f in self._fields.items()
            if f.dirty.peek()
        }

    async def validate_all(self) -> bool:
        """Touch every field, await every async check, and report validity.

        Async checks run immediately through ``validate_async``, bypassing
        their debounce.

        Returns:
            Whether the form is valid synchronously, asynchronously and
            across fields
        """
        self.touch_all()
        checks = [
            f.validator.validate_async(f.value.peek())
            for f in self._fields.values()
            if f.validator is not None
        ]
        if checks:
            await asyncio.gather(*checks)
        valid = self.valid.peek()
        if valid:
            self._emit(FormEventType.VALIDATION_PASSED)
        else:
            self._emit(
                FormEventType.VALIDATION_FAILED,
                errors={k: v for k, v in self.errors.peek().items() if v},
                asyncErrors={k: v for k, v in self.async_errors.peek().items() if v},
                crossErrors=self.cross_errors.peek(),
            )
        return valid

    # -- history ---------------------------------------------------------

    def _require_history(self) -> FormHistory[Values]:
        self._ensure_alive()
        if self._history is None:
            raise SignalFormError("History is not enabled for this form")
        return self._history

    def _restore(self, state: Optional[Values]) -> Optional[Values]:
        if state is None:
            return None
        with batch():
            for name, value in state.items():
                self._write(name, value)
        return state

    def undo(self) -> Optional[Values]:
        """Restore the previous value map. Returns it, or None at the oldest entry."""
        restored = self._restore(self._require_history().undo())
        if restored is not None:
            self._emit(FormEventType.HISTORY_UNDO)
        return restored

    def redo(self) -> Optional[Values]:
        """Re-apply the value map undone last. Returns it, or None if nothing to redo."""
        restored = self._restore(self._require_history().redo())
        if restored is not None:
            self._emit(FormEventType.HISTORY_REDO)
        return restored

    def checkpoint(self, label: str) -> None:
        """Label the current state so it can be returned to with ``go_to_checkpoint``."""
        self._require_history().checkpoint(label)
        self._emit(FormEventType.HISTORY_CHECKPOINT, label=label)

    def go_to_checkpoint(self, label: str) -> Optional[Values]:
        return self._restore(self._require_history().go_to_checkpoint(label))

    # -- teardown --------------------------------------------------------

    def _teardown(self) -> None:
        for e in self._effects:
            e.dispose()
        self._effects.clear()
        for f in self._fields.values():
            if f.validator is not None:
                f.validator.dispose()
        self.dependencies.cleanup()
        if self._history is not None:
            self._history.dispose()

    def destroy(self) -> None:
        """Dispose every effect, cancel async work and tear down dependencies.

        Safe to call more than once. Cells stay readable afterwards; writes
        raise FormDestroyedError.
        """
        if self._destroyed:
            return
        self._destroyed = True
        self._teardown()
        self._emit(FormEventType.FORM_DESTROYED)
        self.events.clear()
        logger.debug("Form %s destroyed", self.form_id)

    def __repr__(self) -> str:
        state = "destroyed" if self._destroyed else "active"
        return f"Form({self.form_id!r}, fields={list(self._fields)}, {state})"


__all__ = [
    "FieldConfig",
    "CrossFieldRule",
    "FormOptions",
    "FormField",
    "Form",
]
