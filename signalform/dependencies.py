"""Inter-field dependency rules: visibility, enablement and computed values.

A DependencyRule is attached to one field and names the fields it depends
on. The resolver turns the registered rules into a directed graph (an edge
from A to B when B's rule depends on A), refuses cyclic graphs, and wires
one reaction per rule, in topological order, that re-evaluates the rule
whenever one of its dependencies changes:

- ``show_when`` / ``enable_when`` drive the field's visible/enabled cells
- ``compute`` derives the field's value and writes it back through the
  form, where other rules observe it in the same pass
- ``on_dependency_change`` runs a side effect with a DependencyContext

Rules receive the form's full value map, but only changes to the fields
listed in ``depends_on`` re-trigger them.

Usage:
    resolver = DependencyResolver()
    resolver.register("city", DependencyPatterns.show_when_equals("country", "TR"))
    resolver.register("total", DependencyRule(
        depends_on=["price", "qty"],
        compute=lambda v: (v["price"] or 0) * (v["qty"] or 0),
    ))
    resolver.initialize(form_values, set_value, reset_field)
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from numbers import Number
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from signalform.errors import CircularDependencyError
from signalform.reactive import Cell, Derived, Reaction, batch, reaction

logger = logging.getLogger(__name__)

Values = Mapping[str, Any]


@dataclass(frozen=True)
class DependencyContext:
    """Handle passed to ``on_dependency_change`` for acting on the dependent field.

    Attributes:
        field_name: The field the rule belongs to
        reset: Restores the field to its initial value
        set_value: Writes a new value into the field
    """
    field_name: str
    reset: Callable[[], None]
    set_value: Callable[[Any], None]


@dataclass(frozen=True)
class DependencyRule:
    """How one field reacts to other fields.

    Attributes:
        depends_on: Names of the fields this rule reads
        show_when: Values -> whether the field is visible
        enable_when: Values -> whether the field is editable
        compute: Values -> the field's derived value
        on_dependency_change: (values, context) -> None, a side effect; may
            return an awaitable, which is scheduled on the running loop

    Examples:
        >>> rule = DependencyRule(depends_on=["country"], show_when=lambda v: v["country"] == "TR")
        >>> rule.depends_on
        ('country',)
    """
    depends_on: Sequence[str] = ()
    show_when: Optional[Callable[[Values], bool]] = None
    enable_when: Optional[Callable[[Values], bool]] = None
    compute: Optional[Callable[[Values], Any]] = None
    on_dependency_change: Optional[Callable[[Values, DependencyContext], Any]] = None

    def __post_init__(self):
        if isinstance(self.depends_on, str):
            object.__setattr__(self, "depends_on", (self.depends_on,))
        else:
            object.__setattr__(self, "depends_on", tuple(self.depends_on))


@dataclass
class FieldDependencyState:
    """Reactive outputs of one field's rule."""
    visible: Cell[bool] = field(default_factory=lambda: Cell(True))
    enabled: Cell[bool] = field(default_factory=lambda: Cell(True))
    computed_value: Cell[Any] = field(default_factory=lambda: Cell(None))


class DependencyResolver:
    """Owns the dependency rules of one form and the reactions that apply them."""

    def __init__(self) -> None:
        self._rules: Dict[str, DependencyRule] = {}
        self._states: Dict[str, FieldDependencyState] = {}
        self._reactions: List[Reaction] = []
        self._tasks: Set["asyncio.Task[Any]"] = set()

    @property
    def rules(self) -> Dict[str, DependencyRule]:
        return dict(self._rules)

    def register(self, field_name: str, rule: DependencyRule) -> None:
        """Store (or replace) the rule for ``field_name``.

        Takes effect at the next ``initialize``.
        """
        self._rules[field_name] = rule

    def initialize(
        self,
        values: Derived[Dict[str, Any]],
        set_value: Callable[[str, Any], None],
        reset_field: Callable[[str], None],
    ) -> None:
        """Check the graph for cycles, then wire one reaction per rule.

        Any previously wired reactions are disposed first.

        Raises:
            CircularDependencyError: If the rules contain a directed cycle.
                Nothing is wired in that case.
        """
        self.cleanup()
        if self.has_circular_dependency():
            raise CircularDependencyError(self.find_circular_dependencies())

        order = self.topological_order()
        for name in order:
            self._states[name] = FieldDependencyState()
        with batch():
            for name in order:
                self._reactions.append(self._wire(name, values, set_value, reset_field))
        logger.debug("Wired %d dependency rules in order %s", len(order), order)

    def _wire(
        self,
        name: str,
        values: Derived[Dict[str, Any]],
        set_value: Callable[[str, Any], None],
        reset_field: Callable[[str], None],
    ) -> Reaction:
        rule = self._rules[name]
        state = self._states[name]
        context = DependencyContext(
            field_name=name,
            reset=lambda: reset_field(name),
            set_value=lambda value: set_value(name, value),
        )

        def watched() -> Tuple[Any, ...]:
            current = values.get()
            return tuple(current.get(dep) for dep in rule.depends_on)

        def apply_state(_: Any) -> None:
            current = values.peek()
            if rule.show_when is not None:
                state.visible.set(bool(rule.show_when(current)))
            if rule.enable_when is not None:
                state.enabled.set(bool(rule.enable_when(current)))
            if rule.compute is not None:
                computed = rule.compute(current)
                state.computed_value.set(computed)
                set_value(name, computed)

        def notify(_: Any) -> None:
            result = rule.on_dependency_change(values.peek(), context)
            if inspect.isawaitable(result):
                self._schedule(name, result)

        has_state_rule = (
            rule.show_when is not None or rule.enable_when is not None or rule.compute is not None
        )
        if has_state_rule and rule.on_dependency_change is not None:
            initial = True

            def both(projection: Any) -> None:
                nonlocal initial
                apply_state(projection)
                if initial:
                    initial = False
                    return
                notify(projection)

            return reaction(watched, both, fire_immediately=True)
        if rule.on_dependency_change is not None:
            return reaction(watched, notify)
        return reaction(watched, apply_state, fire_immediately=True)

    def _schedule(self, name: str, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning("No running event loop for async on_dependency_change of %r", name)
            return
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("on_dependency_change failed", exc_info=task.exception())

    def get_state(self, field_name: str) -> Optional[FieldDependencyState]:
        return self._states.get(field_name)

    def is_visible(self, field_name: str) -> bool:
        """Tracked read of the field's visibility. Fields without rules are visible."""
        state = self._states.get(field_name)
        return state.visible.get() if state is not None else True

    def is_enabled(self, field_name: str) -> bool:
        """Tracked read of the field's enablement. Fields without rules are enabled."""
        state = self._states.get(field_name)
        return state.enabled.get() if state is not None else True

    def get_computed_value(self, field_name: str) -> Any:
        state = self._states.get(field_name)
        return state.computed_value.get() if state is not None else None

    def get_dependencies(self, field_name: str) -> List[str]:
        """Fields that ``field_name``'s rule depends on."""
        rule = self._rules.get(field_name)
        return list(rule.depends_on) if rule is not None else []

    def get_dependents(self, field_name: str) -> List[str]:
        """Fields whose rules depend on ``field_name``."""
        return [name for name, rule in self._rules.items() if field_name in rule.depends_on]

    def get_dependency_graph(self) -> Dict[str, List[str]]:
        """Adjacency map: field name -> names it depends on."""
        return {name: list(rule.depends_on) for name, rule in self._rules.items()}

    def has_circular_dependency(self) -> bool:
        """Whether the registered rules contain at least one directed cycle."""
        visited: Set[str] = set()
        on_stack: Set[str] = set()

        def visit(node: str) -> bool:
            if node in on_stack:
                return True
            if node in visited:
                return False
            visited.add(node)
            on_stack.add(node)
            for dep in self.get_dependencies(node):
                if visit(dep):
                    return True
            on_stack.discard(node)
            return False

        return any(visit(name) for name in self._rules)

    def find_circular_dependencies(self) -> List[List[str]]:
        """Enumerate distinct cycles, each as a closed path like ``["a", "b", "a"]``.

        The search restarts from every rule, so a cycle is reported once
        starting from the first of its fields that was registered.
        """
        cycles: List[List[str]] = []
        seen: Set[Tuple[str, ...]] = set()

        for root in self._rules:
            visited: Set[str] = set()
            path: List[str] = []

            def visit(node: str) -> None:
                if node in path:
                    cycle = path[path.index(node):] + [node]
                    key = _canonical_cycle(cycle)
                    if key not in seen:
                        seen.add(key)
                        cycles.append(cycle)
                    return
                if node in visited:
                    return
                visited.add(node)
                path.append(node)
                for dep in self.get_dependencies(node):
                    visit(dep)
                path.pop()

            visit(root)
        return cycles

    def topological_order(self) -> List[str]:
        """Rule fields ordered so every field comes after the fields it depends on.

        Assumes the graph is acyclic.
        """
        order: List[str] = []
        done: Set[str] = set()

        def visit(node: str) -> None:
            if node in done:
                return
            done.add(node)
            for dep in self.get_dependencies(node):
                visit(dep)
            if node in self._rules:
                order.append(node)

        for name in self._rules:
            visit(name)
        return order

    def cleanup(self) -> None:
        """Dispose every wired reaction and forget per-field state. Idempotent."""
        for r in self._reactions:
            r.dispose()
        self._reactions.clear()
        self._states.clear()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()


def _canonical_cycle(cycle: List[str]) -> Tuple[str, ...]:
    nodes = cycle[:-1]
    start = nodes.index(min(nodes))
    return tuple(nodes[start:] + nodes[:start])


def _as_number(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, Number):
        return value
    try:
        return int(str(value))
    except ValueError:
        pass
    try:
        return float(str(value))
    except ValueError:
        return 0


class DependencyPatterns:
    """Ready-made rules for the common cases."""

    @staticmethod
    def show_when_equals(depends_on: str, value: Any) -> DependencyRule:
        return DependencyRule(depends_on=[depends_on], show_when=lambda v: v.get(depends_on) == value)

    @staticmethod
    def show_when_truthy(depends_on: str) -> DependencyRule:
        return DependencyRule(depends_on=[depends_on], show_when=lambda v: bool(v.get(depends_on)))

    @staticmethod
    def show_when_in(depends_on: str, allowed: Sequence[Any]) -> DependencyRule:
        options = list(allowed)
        return DependencyRule(depends_on=[depends_on], show_when=lambda v: v.get(depends_on) in options)

    @staticmethod
    def disable_when_empty(depends_on: str) -> DependencyRule:
        """Enable the field only once ``depends_on`` holds a value."""
        return DependencyRule(
            depends_on=[depends_on],
            enable_when=lambda v: v.get(depends_on) is not None and v.get(depends_on) != "",
        )

    @staticmethod
    def sum_of(fields: Sequence[str]) -> DependencyRule:
        """Compute the sum of ``fields``. Missing or non-numeric values count as 0."""
        names = list(fields)
        return DependencyRule(
            depends_on=names, compute=lambda v: sum(_as_number(v.get(f)) for f in names)
        )

    @staticmethod
    def concat(fields: Sequence[str], separator: str = " ") -> DependencyRule:
        """Join the non-empty values of ``fields`` with ``separator``."""
        names = list(fields)
        return DependencyRule(
            depends_on=names,
            compute=lambda v: separator.join(str(v.get(f)) for f in names if v.get(f)),
        )

    @staticmethod
    def reset_on_change(depends_on: str) -> DependencyRule:
        """Reset the field whenever ``depends_on`` changes."""
        return DependencyRule(
            depends_on=[depends_on], on_dependency_change=lambda _, ctx: ctx.reset()
        )


__all__ = [
    "DependencyContext",
    "DependencyRule",
    "FieldDependencyState",
    "DependencyResolver",
    "DependencyPatterns",
]
