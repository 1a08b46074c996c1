"""Undo/redo history of form snapshots, with named checkpoints.

The history is two stacks around one current entry:

    past (oldest -> newest)   current   future (nearest -> farthest)

``current`` always holds the live state. ``push`` moves it onto ``past``
and clears ``future``: editing after an undo starts a new branch and the
redone states are discarded. ``undo``/``redo`` shift one entry across,
``go_to_checkpoint`` jumps across many, keeping every intermediate entry
exactly once.

Every pushed state is deep-copied, so mutating the live value afterwards
never alters a recorded entry. Returned states are copies too.

Usage:
    >>> history = FormHistory({"name": "a"})
    >>> history.push({"name": "b"})
    >>> history.undo()
    {'name': 'a'}
    >>> history.redo()
    {'name': 'b'}
    >>> history.can_redo.get()
    False
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Generic, List, Optional, Tuple, TypeVar

from signalform.reactive import Cell, Derived, batch
from signalform.utils import deep_clone

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class HistoryOptions:
    """History configuration.

    Attributes:
        max_size: Maximum number of entries kept in ``past``
        debounce_ms: Quiet period that coalesces rapid pushes (0 disables)
    """
    max_size: int = 50
    debounce_ms: int = 0

    def __post_init__(self):
        if self.max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {self.max_size}")
        if self.debounce_ms < 0:
            raise ValueError(f"debounce_ms must be >= 0, got {self.debounce_ms}")


@dataclass(frozen=True)
class HistoryEntry(Generic[T]):
    """One recorded state.

    Attributes:
        state: Snapshot of the form values
        timestamp: Seconds since the epoch when the entry was recorded
        label: Checkpoint label, if any
    """
    state: T
    timestamp: float
    label: Optional[str] = None


class FormHistory(Generic[T]):
    """Linear undo/redo history with checkpoints and optional debounced pushes."""

    def __init__(self, initial_state: T, options: Optional[HistoryOptions] = None):
        self.options = options or HistoryOptions()
        self._past: Cell[Tuple[HistoryEntry[T], ...]] = Cell(())
        self._future: Cell[Tuple[HistoryEntry[T], ...]] = Cell(())
        self._current: Cell[HistoryEntry[T]] = Cell(
            HistoryEntry(deep_clone(initial_state), time.time())
        )
        self._timer: Optional[asyncio.TimerHandle] = None
        self._pending: Optional[Tuple[T, Optional[str]]] = None

        self.can_undo: Derived[bool] = Derived(lambda: len(self._past.get()) > 0)
        self.can_redo: Derived[bool] = Derived(lambda: len(self._future.get()) > 0)
        self.past_count: Derived[int] = Derived(lambda: len(self._past.get()))
        self.future_count: Derived[int] = Derived(lambda: len(self._future.get()))
        self.current_label: Derived[Optional[str]] = Derived(lambda: self._current.get().label)

    @property
    def max_size(self) -> int:
        return self.options.max_size

    @property
    def pending(self) -> bool:
        """Whether a debounced push is waiting to be applied."""
        return self._pending is not None

    @property
    def current_entry(self) -> HistoryEntry[T]:
        return self._current.peek()

    def current(self) -> T:
        """A copy of the current state."""
        return deep_clone(self._current.peek().state)

    def push(self, state: T, label: Optional[str] = None) -> None:
        """Record ``state`` as the new current entry.

        With ``debounce_ms`` configured, pushes arriving within the quiet
        period coalesce into one push of the latest state. Outside a running
        event loop the push is applied immediately.
        """
        snapshot = deep_clone(state)
        if self.options.debounce_ms <= 0:
            self._do_push(snapshot, label)
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._do_push(snapshot, label)
            return
        if self._timer is not None:
            self._timer.cancel()
        self._pending = (snapshot, label)
        self._timer = loop.call_later(self.options.debounce_ms / 1000, self.flush)

    def flush(self) -> None:
        """Apply a pending debounced push now."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._pending is not None:
            state, label = self._pending
            self._pending = None
            self._do_push(state, label)

    def _do_push(self, state: T, label: Optional[str]) -> None:
        with batch():
            past = self._past.peek() + (self._current.peek(),)
            self._past.set(past[-self.max_size:])
            self._current.set(HistoryEntry(state, time.time(), label))
            self._future.set(())
        logger.debug("History push (label=%r), %d entries in past", label, len(self._past.peek()))

    def undo(self) -> Optional[T]:
        """Step back one entry.

        Returns:
            The restored state, or None when there is nothing to undo
        """
        self.flush()
        past = self._past.peek()
        if not past:
            return None
        entry = past[-1]
        with batch():
            self._future.set((self._current.peek(),) + self._future.peek())
            self._past.set(past[:-1])
            self._current.set(entry)
        return deep_clone(entry.state)

    def redo(self) -> Optional[T]:
        """Step forward one entry.

        Returns:
            The restored state, or None when there is nothing to redo
        """
        self.flush()
        future = self._future.peek()
        if not future:
            return None
        entry = future[0]
        with batch():
            self._past.set((self._past.peek() + (self._current.peek(),))[-self.max_size:])
            self._future.set(future[1:])
            self._current.set(entry)
        return deep_clone(entry.state)

    def checkpoint(self, label: str) -> None:
        """Label the current entry. No new entry is created."""
        self.flush()
        self._current.set(replace(self._current.peek(), label=label))

    def go_to_checkpoint(self, label: str) -> Optional[T]:
        """Jump to the entry labelled ``label``.

        ``past`` is searched first, then the current entry, then ``future``.
        Entries jumped over move to the opposite stack in order.

        Returns:
            The restored state, or None if no entry carries the label
        """
        self.flush()
        past = self._past.peek()
        current = self._current.peek()
        future = self._future.peek()

        for index, entry in enumerate(past):
            if entry.label == label:
                with batch():
                    self._future.set(past[index + 1:] + (current,) + future)
                    self._past.set(past[:index])
                    self._current.set(entry)
                return deep_clone(entry.state)

        if current.label == label:
            return deep_clone(current.state)

        for index, entry in enumerate(future):
            if entry.label == label:
                with batch():
                    self._past.set((past + (current,) + future[:index])[-self.max_size:])
                    self._future.set(future[index + 1:])
                    self._current.set(entry)
                return deep_clone(entry.state)

        return None

    def get_checkpoints(self) -> List[str]:
        """Every checkpoint label, in past, current, future order."""
        entries = self._past.peek() + (self._current.peek(),) + self._future.peek()
        return [entry.label for entry in entries if entry.label]

    def clear(self) -> None:
        """Drop both stacks and any pending push, keeping the current state."""
        self._cancel_timer()
        with batch():
            self._past.set(())
            self._future.set(())
            self._current.set(HistoryEntry(self._current.peek().state, time.time()))

    def dispose(self) -> None:
        """Cancel a pending debounced push. Safe to repeat."""
        self._cancel_timer()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending = None

    def __repr__(self) -> str:
        return (
            f"FormHistory(past={len(self._past.peek())}, future={len(self._future.peek())}, "
            f"label={self._current.peek().label!r})"
        )


__all__ = [
    "HistoryEntry",
    "HistoryOptions",
    "FormHistory",
]
