"""Unit tests for the dependency resolver.

Tests cover:
- Cycle detection and enumeration
- Visibility, enablement and computed values driven by rules
- Transitive computed chains and evaluation order
- on_dependency_change side effects
- Graph queries, cleanup and the ready-made patterns
"""

from decimal import Decimal

import pytest

from signalform.dependencies import (
    DependencyPatterns,
    DependencyResolver,
    DependencyRule,
)
from signalform.errors import CircularDependencyError
from signalform.reactive import Cell, Derived, batch


class Harness:
    """Minimal stand-in for a form: one cell per field plus a value map."""

    def __init__(self, **initial):
        self.initial = dict(initial)
        self.cells = {name: Cell(value) for name, value in initial.items()}
        self.values = Derived(lambda: {name: c.get() for name, c in self.cells.items()})

    def set_value(self, name, value):
        self.cells[name].set(value)

    def reset_field(self, name):
        self.cells[name].set(self.initial[name])

    def wire(self, resolver):
        resolver.initialize(self.values, self.set_value, self.reset_field)

    def __getitem__(self, name):
        return self.cells[name].get()


class TestCycleDetection:
    """Test has_circular_dependency and find_circular_dependencies."""

    def test_two_field_cycle(self):
        """Should detect exactly the cycle [A, B, A]."""
        resolver = DependencyResolver()
        resolver.register("A", DependencyRule(depends_on=["B"]))
        resolver.register("B", DependencyRule(depends_on=["A"]))

        assert resolver.has_circular_dependency() is True
        assert resolver.find_circular_dependencies() == [["A", "B", "A"]]

    def test_self_dependency(self):
        """Should report a field depending on itself."""
        resolver = DependencyResolver()
        resolver.register("A", DependencyRule(depends_on=["A"]))
        assert resolver.find_circular_dependencies() == [["A", "A"]]

    def test_three_field_cycle_reported_once(self):
        """Should not report rotations of the same cycle."""
        resolver = DependencyResolver()
        resolver.register("a", DependencyRule(depends_on=["b"]))
        resolver.register("b", DependencyRule(depends_on=["c"]))
        resolver.register("c", DependencyRule(depends_on=["a"]))
        assert resolver.find_circular_dependencies() == [["a", "b", "c", "a"]]

    def test_distinct_cycles(self):
        """Should report every distinct cycle."""
        resolver = DependencyResolver()
        resolver.register("a", DependencyRule(depends_on=["b"]))
        resolver.register("b", DependencyRule(depends_on=["a"]))
        resolver.register("c", DependencyRule(depends_on=["d"]))
        resolver.register("d", DependencyRule(depends_on=["c"]))
        assert resolver.find_circular_dependencies() == [["a", "b", "a"], ["c", "d", "c"]]

    def test_acyclic_graph(self):
        """Should report no cycles for a chain or a diamond."""
        resolver = DependencyResolver()
        resolver.register("total", DependencyRule(depends_on=["subtotal", "tax"]))
        resolver.register("subtotal", DependencyRule(depends_on=["price", "qty"]))
        resolver.register("tax", DependencyRule(depends_on=["subtotal"]))
        assert resolver.has_circular_dependency() is False
        assert resolver.find_circular_dependencies() == []

    def test_initialize_refuses_cycles(self):
        """Should raise before wiring anything."""
        resolver = DependencyResolver()
        resolver.register("A", DependencyRule(depends_on=["B"], compute=lambda v: 1))
        resolver.register("B", DependencyRule(depends_on=["A"], compute=lambda v: 2))
        harness = Harness(A=None, B=None)

        with pytest.raises(CircularDependencyError) as exc_info:
            harness.wire(resolver)

        assert exc_info.value.cycles == [["A", "B", "A"]]
        assert "A -> B -> A" in str(exc_info.value)
        assert resolver.get_state("A") is None
        assert harness["A"] is None


class TestRuleEffects:
    """Test visibility, enablement and computed values."""

    def test_show_when_equals(self):
        """Should show the field only while the dependency matches."""
        resolver = DependencyResolver()
        resolver.register("city", DependencyPatterns.show_when_equals("country", "TR"))
        harness = Harness(country=None, city=None)
        harness.wire(resolver)

        assert resolver.is_visible("city") is False
        harness.set_value("country", "TR")
        assert resolver.is_visible("city") is True
        harness.set_value("country", "US")
        assert resolver.is_visible("city") is False

    def test_enable_when(self):
        """Should enable the field once the dependency has a value."""
        resolver = DependencyResolver()
        resolver.register("district", DependencyPatterns.disable_when_empty("city"))
        harness = Harness(city="", district=None)
        harness.wire(resolver)

        assert resolver.is_enabled("district") is False
        harness.set_value("city", "Izmir")
        assert resolver.is_enabled("district") is True

    def test_compute_writes_back(self):
        """Should compute total = price * qty without a manual write."""
        resolver = DependencyResolver()
        resolver.register("total", DependencyRule(
            depends_on=["price", "qty"],
            compute=lambda v: (v["price"] or 0) * (v["qty"] or 0),
        ))
        harness = Harness(price=None, qty=None, total=None)
        harness.wire(resolver)
        assert harness["total"] == 0

        harness.set_value("price", Decimal("100"))
        harness.set_value("qty", 5)

        assert harness["total"] == Decimal("500")
        assert resolver.get_computed_value("total") == Decimal("500")

    def test_transitive_chain(self):
        """Should propagate computed values through dependent rules."""
        resolver = DependencyResolver()
        resolver.register("total", DependencyRule(
            depends_on=["subtotal", "shipping"],
            compute=lambda v: (v["subtotal"] or 0) + (v["shipping"] or 0),
        ))
        resolver.register("subtotal", DependencyRule(
            depends_on=["price", "qty"],
            compute=lambda v: (v["price"] or 0) * (v["qty"] or 0),
        ))
        harness = Harness(price=0, qty=0, shipping=0, subtotal=None, total=None)
        harness.wire(resolver)

        with batch():
            harness.set_value("price", 10)
            harness.set_value("qty", 3)
            harness.set_value("shipping", 5)

        assert harness["subtotal"] == 30
        assert harness["total"] == 35

    def test_rules_only_rerun_for_their_dependencies(self):
        """Should not re-evaluate a rule when an unrelated field changes."""
        calls = []
        resolver = DependencyResolver()
        resolver.register("b", DependencyRule(
            depends_on=["a"], show_when=lambda v: calls.append(v["a"]) or True
        ))
        harness = Harness(a=1, b=None, other="x")
        harness.wire(resolver)

        harness.set_value("other", "y")
        assert calls == [1]
        harness.set_value("a", 2)
        assert calls == [1, 2]

    def test_on_dependency_change_resets_field(self):
        """Should reset the dependent field when the dependency changes."""
        resolver = DependencyResolver()
        resolver.register("city", DependencyPatterns.reset_on_change("country"))
        harness = Harness(country="US", city="Ankara")
        harness.wire(resolver)
        assert harness["city"] == "Ankara"

        harness.set_value("city", "Boston")
        harness.set_value("country", "TR")

        assert harness["city"] == "Ankara"

    def test_on_dependency_change_context(self):
        """Should pass a context that writes the dependent field."""
        seen = []

        def on_change(values, ctx):
            seen.append(ctx.field_name)
            ctx.set_value(values["first"].upper())

        resolver = DependencyResolver()
        resolver.register("shout", DependencyRule(depends_on=["first"], on_dependency_change=on_change))
        harness = Harness(first="ada", shout=None)
        harness.wire(resolver)
        assert seen == []

        harness.set_value("first", "grace")
        assert seen == ["shout"]
        assert harness["shout"] == "GRACE"


class TestQueries:
    """Test graph queries and defaults."""

    def setup_method(self):
        self.resolver = DependencyResolver()
        self.resolver.register("subtotal", DependencyRule(depends_on=["price", "qty"]))
        self.resolver.register("total", DependencyRule(depends_on=["subtotal"]))
        self.resolver.register("discount", DependencyRule(depends_on=["subtotal"]))

    def test_get_dependencies(self):
        """Should list the fields a rule depends on."""
        assert self.resolver.get_dependencies("subtotal") == ["price", "qty"]
        assert self.resolver.get_dependencies("price") == []

    def test_get_dependents(self):
        """Should list the fields whose rules depend on a field."""
        assert self.resolver.get_dependents("subtotal") == ["total", "discount"]
        assert self.resolver.get_dependents("total") == []

    def test_get_dependency_graph(self):
        """Should return the adjacency map."""
        assert self.resolver.get_dependency_graph() == {
            "subtotal": ["price", "qty"],
            "total": ["subtotal"],
            "discount": ["subtotal"],
        }

    def test_topological_order(self):
        """Should place every rule after the rules it depends on."""
        resolver = DependencyResolver()
        resolver.register("total", DependencyRule(depends_on=["subtotal"]))
        resolver.register("subtotal", DependencyRule(depends_on=["price"]))
        assert resolver.topological_order() == ["subtotal", "total"]

    def test_defaults_for_fields_without_rules(self):
        """Should treat unknown fields as visible and enabled."""
        assert self.resolver.is_visible("nope") is True
        assert self.resolver.is_enabled("nope") is True
        assert self.resolver.get_computed_value("nope") is None
        assert self.resolver.get_state("nope") is None


class TestCleanup:
    """Test teardown."""

    def test_cleanup_stops_rules_and_is_idempotent(self):
        """Should dispose reactions and forget state, safely twice."""
        resolver = DependencyResolver()
        resolver.register("double", DependencyRule(depends_on=["n"], compute=lambda v: (v["n"] or 0) * 2))
        harness = Harness(n=1, double=None)
        harness.wire(resolver)
        assert harness["double"] == 2

        resolver.cleanup()
        resolver.cleanup()
        harness.set_value("n", 5)

        assert harness["double"] == 2
        assert resolver.get_state("double") is None

    def test_reinitialize_replaces_reactions(self):
        """Should dispose earlier reactions when initialized again."""
        calls = []
        resolver = DependencyResolver()
        resolver.register("b", DependencyRule(depends_on=["a"], compute=lambda v: calls.append(1) or v["a"]))
        harness = Harness(a=1, b=None)
        harness.wire(resolver)
        harness.wire(resolver)
        calls.clear()

        harness.set_value("a", 2)
        assert calls == [1]


class TestPatterns:
    """Test DependencyPatterns."""

    def test_show_when_truthy_and_in(self):
        """Should drive visibility from truthiness and membership."""
        resolver = DependencyResolver()
        resolver.register("details", DependencyPatterns.show_when_truthy("has_details"))
        resolver.register("vat", DependencyPatterns.show_when_in("kind", ["company", "ngo"]))
        harness = Harness(has_details=False, kind="person", details=None, vat=None)
        harness.wire(resolver)

        assert resolver.is_visible("details") is False
        assert resolver.is_visible("vat") is False
        harness.set_value("has_details", True)
        harness.set_value("kind", "ngo")
        assert resolver.is_visible("details") is True
        assert resolver.is_visible("vat") is True

    def test_sum_of(self):
        """Should sum numeric values, counting missing or garbage as 0."""
        resolver = DependencyResolver()
        resolver.register("total", DependencyPatterns.sum_of(["a", "b", "c"]))
        harness = Harness(a=1, b="2", c="x", total=None)
        harness.wire(resolver)
        assert harness["total"] == 3

    def test_concat(self):
        """Should join non-empty values with the separator."""
        resolver = DependencyResolver()
        resolver.register("full_name", DependencyPatterns.concat(["first", "middle", "last"]))
        harness = Harness(first="Ada", middle=None, last="Lovelace", full_name=None)
        harness.wire(resolver)
        assert harness["full_name"] == "Ada Lovelace"
