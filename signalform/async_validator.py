"""Debounced, cancellable asynchronous validation for a single field.

Some checks can only be answered by an external system: "is this username
taken?", "does this VAT number exist?". AsyncValidator wraps such a check
so that typing into a field never floods the backend and never shows a
stale answer:

- ``validate(value)`` restarts a debounce timer on the running asyncio loop.
  When the timer fires, the check runs as a task with a fresh
  CancellationToken.
- Every new ``validate`` call cancels the pending timer, marks the token of
  the in-flight check as cancelled and cancels its task. A result is only
  committed if its token is still live, so of N overlapping calls only the
  most recent one can ever set the error.
- ``validate_async(value)`` skips the debounce and returns the result; it is
  what a submit handler awaits.

Validator callables receive ``(value, token)`` and may be coroutine
functions or plain callables returning an awaitable or a value. A falsy
result means "valid"; any other result is the error message. Exceptions
other than cancellation are logged and leave the previous error in place.

Usage:
    async def username_free(value, token):
        taken = await api.exists(value)
        return "Username is taken" if taken else None

    checker = AsyncValidator(username_free, debounce_ms=300)
    checker.validate("ada")        # debounced
    message = await checker.validate_async("ada")
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from signalform.reactive import Cell, Derived, batch
from signalform.utils import is_empty

logger = logging.getLogger(__name__)


class CancellationToken:
    """Marks one validator call as superseded.

    Validators that do slow work may poll ``cancelled`` and bail out early;
    the controller checks it before committing any result.
    """

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled})"


ValidatorResult = Optional[str]
AsyncValidatorFn = Callable[
    [Any, CancellationToken], Union[Awaitable[ValidatorResult], ValidatorResult]
]


class AsyncValidator:
    """Debounced async validation controller with last-call-wins semantics.

    Attributes:
        loading: Read-only cell, True while a check is running
        error: Read-only cell holding the latest committed message or None
        debounce_ms: Quiet period before a debounced check starts
    """

    def __init__(self, validator_fn: AsyncValidatorFn, debounce_ms: int = 300, name: str = ""):
        if debounce_ms < 0:
            raise ValueError(f"debounce_ms must be >= 0, got {debounce_ms}")
        self.validator_fn = validator_fn
        self.debounce_ms = debounce_ms
        self.name = name
        self._loading: Cell[bool] = Cell(False)
        self._error: Cell[Optional[str]] = Cell(None)
        self.loading: Derived[bool] = self._loading.as_readonly()
        self.error: Derived[Optional[str]] = self._error.as_readonly()
        self._handle: Optional[asyncio.TimerHandle] = None
        self._token: Optional[CancellationToken] = None
        self._task: Optional["asyncio.Task[Optional[str]]"] = None
        self._disposed = False

    @property
    def pending(self) -> bool:
        """Whether a debounce timer or an in-flight check is outstanding."""
        return self._handle is not None or (self._task is not None and not self._task.done())

    @property
    def disposed(self) -> bool:
        return self._disposed

    def validate(self, value: Any) -> None:
        """Schedule a debounced check of ``value``, superseding any earlier one.

        Empty values (None or "") clear the error immediately. Without a
        running event loop there is nothing to schedule on, and the call is
        skipped.
        """
        if self._disposed:
            return
        self._cancel_outstanding()
        if is_empty(value):
            self.reset()
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; skipping debounced check of %r", self.name)
            return
        token = CancellationToken()
        self._token = token
        self._handle = loop.call_later(self.debounce_ms / 1000, self._start, value, token)

    async def validate_async(self, value: Any) -> Optional[str]:
        """Check ``value`` now, without debounce, and return the message.

        Supersedes any pending or in-flight check. The returned message is
        the validator's answer for ``value`` even if a later call superseded
        this one; only the error cell is protected by the token.
        """
        if self._disposed:
            return None
        self._cancel_outstanding()
        if is_empty(value):
            self.reset()
            return None
        token = CancellationToken()
        self._token = token
        self._loading.set(True)
        return await self._check(value, token)

    def reset(self) -> None:
        """Cancel outstanding work and clear loading and error."""
        self._cancel_outstanding()
        with batch():
            self._loading.set(False)
            self._error.set(None)

    def dispose(self) -> None:
        """Cancel everything and ignore further calls. Safe to repeat."""
        if self._disposed:
            return
        self.reset()
        self._disposed = True

    def _cancel_outstanding(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._token is not None:
            self._token.cancel()
            self._token = None
        if self._task is not None:
            if not self._task.done():
                self._task.cancel()
            self._task = None

    def _start(self, value: Any, token: CancellationToken) -> None:
        self._handle = None
        if token.cancelled:
            return
        self._loading.set(True)
        self._task = asyncio.get_running_loop().create_task(self._check(value, token))

    async def _check(self, value: Any, token: CancellationToken) -> Optional[str]:
        try:
            result = self.validator_fn(value, token)
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            raise
        except Exception:
            if not token.cancelled:
                logger.warning("Async validation of %r failed", self.name, exc_info=True)
                self._loading.set(False)
            return None

        message = result or None
        if not token.cancelled:
            with batch():
                self._error.set(message)
                self._loading.set(False)
        return message

    def __repr__(self) -> str:
        return (
            f"AsyncValidator({self.name!r}, debounce_ms={self.debounce_ms}, "
            f"pending={self.pending})"
        )


__all__ = [
    "AsyncValidator",
    "AsyncValidatorFn",
    "CancellationToken",
]
