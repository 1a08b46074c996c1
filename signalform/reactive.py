"""Reactive primitives the form engine is built on.

Three building blocks, in the spirit of MobX-style observables:

- Cell: a mutable value holder. Reading it inside a Derived or Effect
  registers a dependency; writing a different value notifies dependents.
- Derived: a lazily recomputed, cached value. Staleness is pushed
  synchronously through the graph the moment a source changes, so a read
  that follows a write never returns an outdated result.
- Effect: a side effect that runs immediately and re-runs whenever
  anything it read changes, until disposed. ``reaction()`` is the variant
  that only calls its effect when a tracked projection actually changes.

Effects never run re-entrantly. Effects scheduled while another effect is
running (for instance because it wrote a Cell) are queued and drained in
FIFO order by the outermost flush. ``batch()`` and ``@action`` defer the
flush until the outermost scope exits, so a group of writes is observed
as a single change.

Usage:
    >>> price = Cell(2)
    >>> qty = Cell(3)
    >>> total = Derived(lambda: price.get() * qty.get())
    >>> seen = []
    >>> e = effect(lambda: seen.append(total.get()))
    >>> with batch():
    ...     price.set(10)
    ...     qty.set(5)
    >>> seen
    [6, 50]
    >>> e.dispose()
"""

from __future__ import annotations

import contextvars
import functools
import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Generic, Iterator, Optional, TypeVar

from typing_extensions import ParamSpec

from signalform.errors import ReactiveLoopError
from signalform.utils import deep_equal

T = TypeVar("T")
R = TypeVar("R")
P = ParamSpec("P")

logger = logging.getLogger(__name__)

# Upper bound on effect runs within one flush. An acyclic form settles in a
# handful of passes; hitting this means some effect keeps producing new values.
MAX_FLUSH_RUNS = 10_000

# The derivation currently evaluating. Cell.get() and Derived.get() register
# themselves as its sources.
_current_observer: contextvars.ContextVar[Optional["_Observer"]] = contextvars.ContextVar(
    "signalform_current_observer", default=None
)


class _Scheduler(threading.local):
    """Batch depth and effect queue of the current thread."""

    def __init__(self) -> None:
        self.batch_depth = 0
        self.flushing = False
        # Insertion-ordered set of effects waiting to run.
        self.pending: Dict["Effect", None] = {}


_scheduler = _Scheduler()


class _Observer:
    """Anything that can depend on a source: Derived or Effect."""

    __slots__ = ()

    def _mark_stale(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class _Source:
    """Mixin for values that can be observed: Cell and Derived."""

    __slots__ = ()

    _observers: Dict[_Observer, None]

    def _track(self) -> None:
        observer = _current_observer.get()
        if observer is not None:
            self._observers[observer] = None
            observer._sources[self] = None

    def _notify(self) -> None:
        for observer in list(self._observers):
            observer._mark_stale()

    def _remove_observer(self, observer: _Observer) -> None:
        self._observers.pop(observer, None)


def _release_sources(observer: Any, previous: Dict[_Source, None]) -> None:
    """Unsubscribe ``observer`` from the sources it no longer read.

    Sources read again keep the observer at its original position, so
    notification order stays the order in which observers first subscribed.
    """
    for source in previous:
        if source not in observer._sources:
            source._remove_observer(observer)


def _schedule(effect: "Effect") -> None:
    _scheduler.pending[effect] = None
    if _scheduler.batch_depth == 0 and not _scheduler.flushing:
        _flush()


def _flush() -> None:
    """Run queued effects until the queue is empty.

    An effect that raises does not stop the flush; the remaining effects
    still run and the first error is re-raised once the queue is drained.
    """
    pending = _scheduler.pending
    _scheduler.flushing = True
    runs = 0
    error: Optional[Exception] = None
    try:
        while pending:
            effect = next(iter(pending))
            del pending[effect]
            runs += 1
            if runs > MAX_FLUSH_RUNS:
                pending.clear()
                raise ReactiveLoopError(
                    f"Reactive flush did not settle after {MAX_FLUSH_RUNS} effect runs"
                )
            try:
                effect._run()
            except Exception as exc:
                if error is None:
                    error = exc
                else:
                    logger.warning("Effect %r failed during flush", effect, exc_info=True)
    finally:
        _scheduler.flushing = False
    if error is not None:
        raise error


def _begin_batch() -> None:
    _scheduler.batch_depth += 1


def _end_batch() -> None:
    _scheduler.batch_depth -= 1
    if _scheduler.batch_depth == 0 and not _scheduler.flushing:
        _flush()


def pending_count() -> int:
    """Number of effects queued on this thread but not yet run. Useful in tests."""
    return len(_scheduler.pending)


@contextmanager
def batch() -> Iterator[None]:
    """Defer effects until the outermost batch exits.

    Usage:
        with batch():
            first.set("Ada")
            last.set("Lovelace")
            # effects observe both writes at once, here
    """
    _begin_batch()
    try:
        yield
    finally:
        _end_batch()


def action(fn: Callable[P, R]) -> Callable[P, R]:
    """Decorator: run ``fn`` inside a batch."""

    @functools.wraps(fn)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        _begin_batch()
        try:
            return fn(*args, **kwargs)
        finally:
            _end_batch()

    return wrapper


@contextmanager
def untracked() -> Iterator[None]:
    """Read cells without registering them as dependencies."""
    token = _current_observer.set(None)
    try:
        yield
    finally:
        _current_observer.reset(token)


class Cell(_Source, Generic[T]):
    """A mutable observable value."""

    __slots__ = ("_value", "_observers")

    def __init__(self, value: T) -> None:
        self._value = value
        self._observers = {}

    def get(self) -> T:
        """Read the value. Inside a derivation, registers the dependency."""
        self._track()
        return self._value

    def peek(self) -> T:
        """Read the value without tracking."""
        return self._value

    def set(self, value: T) -> None:
        """Write a new value; dependents are notified only if it changed.

        Change is judged by structural equality (``deep_equal``).

        Containers mutated in place and written back as the same object do
        not count as a change. Write a fresh object instead.
        """
        old = self._value
        if deep_equal(old, value):
            return
        self._value = value
        # Mark the whole downstream graph stale before any effect runs.
        _begin_batch()
        try:
            self._notify()
        finally:
            _end_batch()

    def update(self, fn: Callable[[T], T]) -> None:
        self.set(fn(self._value))

    def as_readonly(self) -> "Derived[T]":
        """A read-only view that follows this cell."""
        return Derived(self.get)

    def __repr__(self) -> str:
        return f"Cell({self._value!r})"


_UNSET: Any = object()


class Derived(_Source, _Observer, Generic[T]):
    """A lazily computed value that caches until a source changes."""

    __slots__ = ("_fn", "_value", "_dirty", "_sources", "_observers")

    def __init__(self, fn: Callable[[], T]) -> None:
        self._fn = fn
        self._value: T = _UNSET
        self._dirty = True
        self._sources: Dict[_Source, None] = {}
        self._observers = {}

    def get(self) -> T:
        """Read the value, recomputing first if any source changed."""
        self._track()
        if self._dirty:
            self._recompute()
        return self._value

    def peek(self) -> T:
        """Read the value without tracking."""
        if self._dirty:
            self._recompute()
        return self._value

    def _recompute(self) -> None:
        previous, self._sources = self._sources, {}
        token = _current_observer.set(self)
        try:
            self._value = self._fn()
        finally:
            _current_observer.reset(token)
            _release_sources(self, previous)
        self._dirty = False

    def _mark_stale(self) -> None:
        if not self._dirty:
            self._dirty = True
            self._notify()

    def _clear_sources(self) -> None:
        for source in self._sources:
            source._remove_observer(self)
        self._sources.clear()

    def dispose(self) -> None:
        """Disconnect from all sources. The next read recomputes from scratch."""
        self._clear_sources()
        self._observers.clear()
        self._dirty = True
        self._value = _UNSET

    def __repr__(self) -> str:
        state = "dirty" if self._dirty else f"cached={self._value!r}"
        return f"Derived({getattr(self._fn, '__name__', 'fn')}, {state})"


class Effect(_Observer):
    """A side effect re-run whenever a value it read changes.

    Creating an Effect does not run it; use ``effect()`` for that, or call
    ``start()``.
    """

    __slots__ = ("_fn", "_sources", "_disposed", "__weakref__")

    def __init__(self, fn: Callable[[], Any]) -> None:
        self._fn = fn
        self._sources: Dict[_Source, None] = {}
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def start(self) -> "Effect":
        """Run once to establish dependencies. Writes it makes are batched."""
        _begin_batch()
        try:
            self._run()
        finally:
            _end_batch()
        return self

    def _mark_stale(self) -> None:
        if not self._disposed:
            _schedule(self)

    def _run(self) -> None:
        if self._disposed:
            return
        previous, self._sources = self._sources, {}
        token = _current_observer.set(self)
        try:
            self._execute()
        finally:
            _current_observer.reset(token)
            _release_sources(self, previous)

    def _execute(self) -> None:
        self._fn()

    def _clear_sources(self) -> None:
        for source in self._sources:
            source._remove_observer(self)
        self._sources.clear()

    def dispose(self) -> None:
        """Stop re-running. Safe to call more than once."""
        self._disposed = True
        self._clear_sources()
        _scheduler.pending.pop(self, None)

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else "active"
        return f"{type(self).__name__}({getattr(self._fn, '__name__', 'fn')}, {state})"


class Reaction(Effect):
    """Effect that tracks ``data_fn`` and calls ``effect_fn`` on change.

    ``effect_fn`` runs untracked, so the cells it reads or writes do not
    become dependencies of the reaction.
    """

    __slots__ = ("_effect_fn", "_equals", "_last", "_fire_next")

    def __init__(
        self,
        data_fn: Callable[[], T],
        effect_fn: Callable[[T], Any],
        equals: Optional[Callable[[Any, Any], bool]] = None,
        fire_immediately: bool = False,
    ) -> None:
        super().__init__(data_fn)
        self._effect_fn = effect_fn
        self._equals = equals or deep_equal
        self._last: Any = _UNSET
        self._fire_next = fire_immediately

    def _execute(self) -> None:
        new_value = self._fn()
        first = self._last is _UNSET
        changed = first or not self._equals(self._last, new_value)
        self._last = new_value
        if (first and self._fire_next) or (not first and changed):
            token = _current_observer.set(None)
            try:
                self._effect_fn(new_value)
            finally:
                _current_observer.reset(token)


def effect(fn: Callable[[], Any]) -> Effect:
    """Run ``fn`` now and again whenever a cell it read changes.

    Returns the Effect; call ``.dispose()`` to stop it.
    """
    e = Effect(fn)
    try:
        e.start()
    except Exception:
        e.dispose()
        raise
    return e


def reaction(
    data_fn: Callable[[], T],
    effect_fn: Callable[[T], Any],
    *,
    fire_immediately: bool = False,
    equals: Optional[Callable[[Any, Any], bool]] = None,
) -> Reaction:
    """Track ``data_fn``; call ``effect_fn`` when its result changes.

    Usage:
        first = Cell("Ada")
        seen = []
        r = reaction(lambda: first.get().upper(), seen.append)
        first.set("Grace")   # seen == ["GRACE"]
        r.dispose()
    """
    r = Reaction(data_fn, effect_fn, equals=equals, fire_immediately=fire_immediately)
    try:
        r.start()
    except Exception:
        r.dispose()
        raise
    return r


__all__ = [
    "Cell",
    "Derived",
    "Effect",
    "Reaction",
    "effect",
    "reaction",
    "batch",
    "action",
    "untracked",
    "pending_count",
    "MAX_FLUSH_RUNS",
]
