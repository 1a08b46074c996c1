"""Unit tests for the reactive primitives.

Tests cover:
- Cell reads, writes and change detection
- Derived laziness, caching and glitch-free recomputation
- Effects: immediate run, re-run on change, dynamic dependencies, disposal
- Batching via batch() and @action
- reaction() change filtering
- Runaway flush protection and failing effects
- Notification order and per-thread batching
"""

import logging
import threading

import pytest

from signalform.errors import ReactiveLoopError
from signalform.reactive import (
    Cell,
    Derived,
    action,
    batch,
    effect,
    pending_count,
    reaction,
    untracked,
)


class TestCell:
    """Test Cell reads and writes."""

    def test_get_returns_initial_value(self):
        """Should hold the value it was created with."""
        cell = Cell(3)
        assert cell.get() == 3
        assert cell.peek() == 3

    def test_set_and_update(self):
        """Should replace the value via set and update."""
        cell = Cell(1)
        cell.set(2)
        cell.update(lambda v: v * 10)
        assert cell.get() == 20

    def test_structurally_equal_write_does_not_notify(self):
        """Should skip notification when the new value is structurally equal."""
        cell = Cell({"tags": ["a"]})
        runs = []
        e = effect(lambda: runs.append(cell.get()))

        cell.set({"tags": ["a"]})
        assert len(runs) == 1

        cell.set({"tags": ["a", "b"]})
        assert len(runs) == 2
        e.dispose()

    def test_bool_and_int_are_distinct_values(self):
        """Should treat False -> 0 as a change."""
        cell = Cell(False)
        runs = []
        e = effect(lambda: runs.append(cell.get()))
        cell.set(0)
        assert runs == [False, 0]
        e.dispose()

    def test_readonly_view_follows_cell(self):
        """Should reflect writes to the underlying cell."""
        cell = Cell("a")
        view = cell.as_readonly()
        cell.set("b")
        assert view.get() == "b"
        assert not hasattr(view, "set")


class TestDerived:
    """Test Derived laziness and caching."""

    def test_not_computed_until_read(self):
        """Should not run its function before the first read."""
        calls = []
        source = Cell(1)
        derived = Derived(lambda: calls.append(1) or source.get() + 1)
        assert calls == []
        assert derived.get() == 2
        assert len(calls) == 1

    def test_cached_between_reads(self):
        """Should not recompute when no source changed."""
        calls = []
        source = Cell(1)
        derived = Derived(lambda: calls.append(1) or source.get() * 2)
        derived.get()
        derived.get()
        assert len(calls) == 1

    def test_read_after_write_is_fresh(self):
        """Should never return a stale value after a source write."""
        source = Cell(1)
        derived = Derived(lambda: source.get() * 2)
        assert derived.get() == 2
        source.set(5)
        assert derived.get() == 10

    def test_chained_derived(self):
        """Should propagate through a chain of derived values."""
        source = Cell(2)
        double = Derived(lambda: source.get() * 2)
        quadruple = Derived(lambda: double.get() * 2)
        assert quadruple.get() == 8
        source.set(3)
        assert quadruple.get() == 12

    def test_diamond_has_no_intermediate_values(self):
        """Should notify an effect once per change, with a consistent value."""
        a = Cell(1)
        b = Derived(lambda: a.get() * 2)
        c = Derived(lambda: a.get() * 3)
        d = Derived(lambda: b.get() + c.get())
        seen = []
        e = effect(lambda: seen.append(d.get()))

        a.set(2)

        assert seen == [5, 10]
        e.dispose()


class TestEffect:
    """Test effect execution and disposal."""

    def test_runs_immediately_and_on_change(self):
        """Should run once on creation and again when a read cell changes."""
        cell = Cell("x")
        seen = []
        e = effect(lambda: seen.append(cell.get()))
        cell.set("y")
        assert seen == ["x", "y"]
        e.dispose()

    def test_dispose_stops_reruns(self):
        """Should not run after dispose."""
        cell = Cell(0)
        seen = []
        e = effect(lambda: seen.append(cell.get()))
        e.dispose()
        cell.set(1)
        assert seen == [0]
        assert e.disposed is True

    def test_dispose_is_idempotent(self):
        """Should tolerate repeated dispose calls."""
        e = effect(lambda: None)
        e.dispose()
        e.dispose()
        assert e.disposed

    def test_dynamic_dependencies(self):
        """Should only track the cells read during the latest run."""
        use_left = Cell(True)
        left = Cell("L")
        right = Cell("R")
        seen = []
        e = effect(lambda: seen.append(left.get() if use_left.get() else right.get()))

        use_left.set(False)
        left.set("L2")
        assert seen == ["L", "R"]

        right.set("R2")
        assert seen == ["L", "R", "R2"]
        e.dispose()

    def test_writes_from_effects_are_observed_in_same_pass(self):
        """Should let one effect's write drive another effect before returning."""
        source = Cell(1)
        mirror = Cell(0)
        seen = []
        e1 = effect(lambda: mirror.set(source.get() * 100))
        e2 = effect(lambda: seen.append(mirror.get()))

        source.set(2)

        assert seen == [100, 200]
        e1.dispose()
        e2.dispose()

    def test_untracked_reads_do_not_subscribe(self):
        """Should not re-run for cells read inside untracked()."""
        tracked = Cell(1)
        ignored = Cell(1)
        runs = []

        def body():
            with untracked():
                other = ignored.get()
            runs.append((tracked.get(), other))

        e = effect(body)
        ignored.set(2)
        assert len(runs) == 1
        tracked.set(2)
        assert runs[-1] == (2, 2)
        e.dispose()

    def test_runaway_effect_raises(self):
        """Should raise ReactiveLoopError instead of looping forever."""
        counter = Cell(0)
        with pytest.raises(ReactiveLoopError):
            effect(lambda: counter.set(counter.get() + 1))
        assert pending_count() == 0

    def test_rerun_keeps_notification_order(self):
        """Should notify effects in subscription order even after one re-ran alone."""
        a = Cell(0)
        b = Cell(0)
        order = []
        first = effect(lambda: (a.get(), b.get(), order.append("first")))
        second = effect(lambda: (a.get(), order.append("second")))

        b.set(1)
        order.clear()
        a.set(1)

        assert order == ["first", "second"]
        first.dispose()
        second.dispose()


class TestBatching:
    """Test batch() and @action."""

    def test_batch_defers_effects(self):
        """Should run effects once after the outermost batch exits."""
        first = Cell("Ada")
        last = Cell("Lovelace")
        seen = []
        e = effect(lambda: seen.append(f"{first.get()} {last.get()}"))

        with batch():
            first.set("Grace")
            last.set("Hopper")
            assert pending_count() == 1
            assert seen == ["Ada Lovelace"]

        assert seen == ["Ada Lovelace", "Grace Hopper"]
        e.dispose()

    def test_nested_batches_flush_once(self):
        """Should only flush when the outermost batch exits."""
        cell = Cell(0)
        seen = []
        e = effect(lambda: seen.append(cell.get()))
        with batch():
            cell.set(1)
            with batch():
                cell.set(2)
            assert seen == [0]
        assert seen == [0, 2]
        e.dispose()

    def test_action_decorator_batches(self):
        """Should batch all writes made inside the decorated function."""
        a = Cell(0)
        b = Cell(0)
        seen = []
        e = effect(lambda: seen.append(a.get() + b.get()))

        @action
        def set_both(value):
            a.set(value)
            b.set(value)
            return value * 2

        assert set_both(5) == 10
        assert seen == [0, 10]
        e.dispose()

    def test_batches_are_per_thread(self):
        """Should not defer this thread's effects while another thread batches."""
        cell = Cell(0)
        seen = []
        r = reaction(cell.get, seen.append)
        entered = threading.Event()
        release = threading.Event()

        def hold_batch():
            with batch():
                entered.set()
                release.wait(timeout=5)

        worker = threading.Thread(target=hold_batch)
        worker.start()
        assert entered.wait(timeout=5)
        try:
            cell.set(1)
            assert seen == [1]
        finally:
            release.set()
            worker.join()
        r.dispose()


class TestReaction:
    """Test reaction() change filtering."""

    def test_fires_only_when_projection_changes(self):
        """Should ignore changes that leave the projection equal."""
        person = Cell({"name": "Ada", "age": 36})
        seen = []
        r = reaction(lambda: person.get()["name"], seen.append)

        person.set({"name": "Ada", "age": 37})
        assert seen == []

        person.set({"name": "Grace", "age": 37})
        assert seen == ["Grace"]
        r.dispose()

    def test_fire_immediately(self):
        """Should call the effect with the initial projection when asked to."""
        cell = Cell(1)
        seen = []
        r = reaction(cell.get, seen.append, fire_immediately=True)
        cell.set(2)
        assert seen == [1, 2]
        r.dispose()

    def test_effect_reads_are_not_tracked(self):
        """Should not re-run when a cell read only by the effect changes."""
        watched = Cell(1)
        other = Cell("a")
        seen = []
        r = reaction(watched.get, lambda v: seen.append((v, other.get())))

        other.set("b")
        assert seen == []
        watched.set(2)
        assert seen == [(2, "b")]
        r.dispose()


class TestFlushFailures:
    """Test effects that raise during a flush."""

    @staticmethod
    def failing(message):
        def effect_fn(value):
            raise RuntimeError(message)

        return effect_fn

    def test_remaining_effects_still_run(self):
        """Should drain the queue before re-raising, leaving nothing queued."""
        a = Cell(0)
        seen = []
        broken = reaction(a.get, self.failing("rule bug"))
        healthy = reaction(a.get, seen.append)

        with pytest.raises(RuntimeError, match="rule bug"):
            a.set(1)

        assert seen == [1]
        assert pending_count() == 0

        unrelated = Cell(0)
        unrelated.set(1)
        assert seen == [1]
        broken.dispose()
        healthy.dispose()

    def test_first_error_raised_later_ones_logged(self, caplog):
        """Should raise the first failure and log the others."""
        a = Cell(0)
        first = reaction(a.get, self.failing("first"))
        second = reaction(a.get, self.failing("second"))

        with caplog.at_level(logging.WARNING, logger="signalform.reactive"):
            with pytest.raises(RuntimeError, match="first"):
                a.set(1)

        assert "failed during flush" in caplog.text
        first.dispose()
        second.dispose()

    def test_reaction_failing_on_first_run_is_disposed(self):
        """Should not leave a half-built reaction subscribed."""
        a = Cell(0)
        calls = []

        def effect_fn(value):
            calls.append(value)
            raise ValueError("bad initial value")

        with pytest.raises(ValueError):
            reaction(a.get, effect_fn, fire_immediately=True)

        a.set(1)
        assert calls == [0]
