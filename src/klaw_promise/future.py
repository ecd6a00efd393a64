"""Future: cancelable single-value async primitive with a producer port.

A Future settles exactly once: resolved with a value, rejected with a
reason, or cancelled. Producers drive it through a `FuturePort`; consumers
observe it, derive new Futures from it, or simply `await` it.

Example:
    ```python
    def fetch(job_id: int) -> Future[dict]:
        port, future = create_future(cancelable=True)
        process = some_api(job_id)
        process.ondata = port.resolve
        process.onerror = port.reject
        port.on_cancel(process.stop)
        process.start()
        return future

    job = fetch(124).then(render)
    loop.call_later(1.0, job.cancel)
    await job
    ```
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Generator, Iterable
from functools import partial
from typing import Any, overload

import aiologic

from klaw_promise._callbacks import invoke, invoke_all
from klaw_promise.errors import Cancelled, CancelledError, NotSettled, Rejected, throw_cancel
from klaw_promise.outcome import PENDING, Outcome, Resolved, Status

__all__ = ['Future', 'FuturePort', 'create_future', 'is_awaitable']

_CANCELLED = Cancelled()
_KIND = 'future'


def is_awaitable(value: Any) -> bool:
    """Return True for values a Future adopts instead of resolving with."""
    return isinstance(value, Future) or inspect.isawaitable(value)


class _FutureState[T]:
    """Shared mutable state for a Future and its port.

    Observer lists are created on first registration and dropped (set to
    None) when the outcome leaves Pending.
    """

    __slots__ = ('cancelable', 'on_cancel', 'on_data', 'on_end', 'on_error', 'outcome')

    def __init__(self, cancelable: bool) -> None:
        self.cancelable: bool = cancelable
        self.outcome: Outcome = PENDING
        self.on_data: list[Callable[[T], Any]] | None = None
        self.on_error: list[Callable[[Any], Any]] | None = None
        self.on_cancel: list[Callable[[], Any]] | None = None
        self.on_end: list[Callable[[], Any]] | None = None

    # --- settlement ---

    def resolve(self, value: T | Awaitable[T]) -> None:
        """Resolve with value, following awaitables until a plain value shows up.

        Already-settled awaitables are unwrapped in this loop rather than by
        recursion, so long adapter chains cost no stack depth.
        """
        while self.outcome is PENDING:
            if isinstance(value, Future):
                if value._state is self:
                    self.reject(TypeError('A Future cannot be resolved with itself'))
                    return
                inner = value._state.outcome
                if inner is PENDING:
                    value.on_data(self.resolve).on_error(self.reject).on_cancel(self._reject_cancelled)
                    return
                if isinstance(inner, Resolved):
                    value = inner.value
                    continue
                if isinstance(inner, Rejected):
                    self.reject(inner.reason)
                else:
                    self._reject_cancelled()
                return

            if asyncio.isfuture(value):
                if not value.done():
                    value.add_done_callback(self.resolve)
                    return
                if value.cancelled():
                    self._reject_cancelled()
                    return
                exc = value.exception()
                if exc is not None:
                    self.reject(exc)
                    return
                value = value.result()
                continue

            if inspect.isawaitable(value):
                try:
                    loop = asyncio.get_running_loop()
                except RuntimeError as exc:
                    if inspect.iscoroutine(value):
                        value.close()
                    self.reject(exc)
                    return
                value = asyncio.ensure_future(value, loop=loop)
                continue

            self._settle(Resolved(value), self.on_data, value)
            return

    def reject(self, reason: Any) -> None:
        """Reject with reason, kept verbatim."""
        if self.outcome is not PENDING:
            return
        self._settle(Rejected(reason), self.on_error, reason)

    def cancel(self) -> None:
        """Cancel if cancelable and still pending."""
        if not self.cancelable or self.outcome is not PENDING:
            return
        self._settle(_CANCELLED, self.on_cancel)

    def _reject_cancelled(self) -> None:
        self.reject(CancelledError())

    def _settle(self, outcome: Outcome, callbacks: list[Callable[..., Any]] | None, *args: Any) -> None:
        on_end = self.on_end
        self.outcome = outcome
        self.on_data = self.on_error = self.on_cancel = self.on_end = None
        invoke_all(_KIND, callbacks, *args)
        invoke_all(_KIND, on_end)

    # --- registration ---

    def add_data(self, callback: Callable[[T], Any]) -> None:
        outcome = self.outcome
        if outcome is PENDING:
            if self.on_data is None:
                self.on_data = []
            self.on_data.append(callback)
        elif isinstance(outcome, Resolved):
            invoke(_KIND, callback, outcome.value)

    def add_error(self, callback: Callable[[Any], Any]) -> None:
        outcome = self.outcome
        if outcome is PENDING:
            if self.on_error is None:
                self.on_error = []
            self.on_error.append(callback)
        elif isinstance(outcome, Rejected):
            invoke(_KIND, callback, outcome.reason)

    def add_cancel(self, callback: Callable[[], Any]) -> None:
        if not self.cancelable:
            return
        outcome = self.outcome
        if outcome is PENDING:
            if self.on_cancel is None:
                self.on_cancel = []
            self.on_cancel.append(callback)
        elif isinstance(outcome, Cancelled):
            invoke(_KIND, callback)

    def add_end(self, callback: Callable[[], Any]) -> None:
        if self.outcome is PENDING:
            if self.on_end is None:
                self.on_end = []
            self.on_end.append(callback)
        else:
            invoke(_KIND, callback)


def _pipe(
    handler: Callable[..., Any],
    fallback: Callable[[Any], Any] | None,
    target: _FutureState[Any],
    *args: Any,
) -> None:
    """Feed handler(*args) into target, routing failures to fallback if given."""
    try:
        result = handler(*args)
    except Exception as exc:
        if fallback is not None:
            _pipe(fallback, None, target, exc)
        else:
            target.reject(exc)
        return

    if fallback is not None and is_awaitable(result):
        bridge: Future[Any] = Future(cancelable=False)
        bridge.on_data(target.resolve).on_error(partial(_pipe, fallback, None, target))
        bridge._state.resolve(result)
    else:
        target.resolve(result)


class FuturePort[T]:
    """Producer side of a Future.

    Only settles the Future and hears about cancellation; it cannot observe
    values or derive new Futures.
    """

    __slots__ = ('_state',)

    def __init__(self, state: _FutureState[T]) -> None:
        self._state = state

    def resolve(self, value: T | Awaitable[T]) -> None:
        """Resolve the Future, adopting value first if it is awaitable.

        No-op once the Future is settled.
        """
        self._state.resolve(value)

    def reject(self, reason: Any) -> None:
        """Reject the Future with reason. No-op once settled."""
        self._state.reject(reason)

    def on_cancel(self, callback: Callable[[], Any]) -> None:
        """Run callback when a consumer cancels the Future.

        Ignored for non-cancelable Futures.
        """
        self._state.add_cancel(callback)


class Future[T]:
    """Cancelable single-value async primitive.

    Observers registered while pending fire at settlement in registration
    order; observers registered afterwards fire immediately if the outcome
    matches and are dropped otherwise. An observer that raises never
    affects the settlement or other observers.

    Attributes:
        _state: Shared state, also held by the producer's FuturePort.
    """

    __slots__ = ('_state',)

    def __init__(self, cancelable: bool = False) -> None:
        """Create a pending Future.

        Args:
            cancelable: Whether cancel() and on_cancel() have any effect.
        """
        self._state: _FutureState[T] = _FutureState(cancelable)

    # --- consumer control ---

    def cancel(self) -> None:
        """Cancel the Future.

        No-op if the Future is not cancelable or already settled.
        """
        self._state.cancel()

    # --- events ---

    def on_data(self, callback: Callable[[T], Any]) -> Future[T]:
        """Call callback with the value once resolved."""
        self._state.add_data(callback)
        return self

    def on_error(self, callback: Callable[[Any], Any]) -> Future[T]:
        """Call callback with the reason once rejected."""
        self._state.add_error(callback)
        return self

    def on_cancel(self, callback: Callable[[], Any]) -> Future[T]:
        """Call callback once cancelled. Ignored for non-cancelable Futures."""
        self._state.add_cancel(callback)
        return self

    def on_end(self, callback: Callable[[], Any]) -> Future[T]:
        """Call callback once settled, whatever the outcome."""
        self._state.add_end(callback)
        return self

    # --- values ---

    @property
    def status(self) -> Status:
        """Current status."""
        return self._state.outcome.status

    @property
    def outcome(self) -> Outcome:
        """Current outcome variant."""
        return self._state.outcome

    @property
    def cancelable(self) -> bool:
        """Whether cancel() has any effect."""
        return self._state.cancelable

    @property
    def value(self) -> T:
        """The resolved value.

        Raises:
            NotSettledError: If the Future is not resolved.
        """
        outcome = self._state.outcome
        if isinstance(outcome, Resolved):
            return outcome.value
        raise NotSettled(Status.RESOLVED, outcome.status).to_exception()

    @property
    def error(self) -> Any:
        """The rejection reason.

        Raises:
            NotSettledError: If the Future is not rejected.
        """
        outcome = self._state.outcome
        if isinstance(outcome, Rejected):
            return outcome.reason
        raise NotSettled(Status.REJECTED, outcome.status).to_exception()

    def done(self) -> bool:
        """True once resolved, rejected or cancelled."""
        return self._state.outcome.status.terminal

    def __repr__(self) -> str:
        return f'<Future {self.status.value} cancelable={self.cancelable}>'

    # --- pipe ---

    def map(
        self,
        on_fulfilled: Callable[[T], Any] | None = None,
        on_rejected: Callable[[Any], Any] | None = None,
        on_cancelled: Callable[[], Any] | None = None,
        bind_cancel: bool = False,
    ) -> Future[Any]:
        """Derive a Future from this one's outcome.

        Each outcome goes through its handler, or passes through unchanged
        when the handler is missing. A handler that raises rejects the
        derived Future, unless on_rejected is given, in which case the
        exception is handed to it. A handler that returns an awaitable makes
        the derived Future adopt it.

        Args:
            on_fulfilled: Maps the resolved value.
            on_rejected: Maps the rejection reason (and failures of the other handlers).
            on_cancelled: Produces a value when this Future is cancelled.
            bind_cancel: Cancelling the derived Future also cancels this one.

        Returns:
            A Future with the same cancelability as this one.
        """
        derived: Future[Any] = Future(self._state.cancelable)
        target = derived._state

        if on_fulfilled is not None:
            self.on_data(partial(_pipe, on_fulfilled, on_rejected, target))
        else:
            self.on_data(target.resolve)

        if on_rejected is not None:
            self.on_error(partial(_pipe, on_rejected, None, target))
        else:
            self.on_error(target.reject)

        if on_cancelled is not None:
            self.on_cancel(partial(_pipe, on_cancelled, on_rejected, target))
        else:
            self.on_cancel(target.cancel)

        if bind_cancel:
            derived.on_cancel(self.cancel)
        return derived

    def then(
        self,
        on_fulfilled: Callable[[T], Any] | None = None,
        on_rejected: Callable[[Any], Any] | None = None,
    ) -> Future[Any]:
        """Promise-style chaining: cancellation becomes a CancelledError rejection.

        Cancelling the derived Future cancels this one.
        """
        return self.map(on_fulfilled, on_rejected, throw_cancel, True)

    def catch(self, on_rejected: Callable[[Any], Any] | None = None) -> Future[Any]:
        """Promise-style error handler; see then()."""
        return self.map(None, on_rejected, throw_cancel, True)

    def catch_cancel(
        self,
        on_cancelled: Callable[[], Any] | None = None,
        bind_cancel: bool = True,
    ) -> Future[Any]:
        """Derive a Future that handles only cancellation."""
        return self.map(None, None, on_cancelled, bind_cancel)

    # --- conversion ---

    def promisified(self) -> asyncio.Future[T]:
        """Bridge to an asyncio.Future on the running loop.

        Only resolution and rejection are forwarded. Non-exception reasons
        are wrapped in RejectedError.
        """
        bridge: asyncio.Future[T] = asyncio.get_running_loop().create_future()

        def set_result(value: T) -> None:
            if not bridge.done():
                bridge.set_result(value)

        def set_exception(reason: Any) -> None:
            if not bridge.done():
                bridge.set_exception(Rejected(reason).to_exception())

        self.on_data(set_result).on_error(set_exception)
        return bridge

    async def wait(self) -> T:
        """Wait for settlement and return the value.

        Raises:
            CancelledError: If the Future was cancelled.
            Exception: The rejection reason, or RejectedError wrapping it.
        """
        if self._state.outcome is PENDING:
            # aiologic.Event supports both async and green contexts
            event = aiologic.Event()
            self.on_end(event.set)
            await event

        outcome = self._state.outcome
        if isinstance(outcome, Resolved):
            return outcome.value
        raise outcome.to_exception()  # type: ignore[union-attr]

    def __await__(self) -> Generator[Any, None, T]:
        """Support await syntax."""
        return self.wait().__await__()

    # --- statics ---

    @overload
    @staticmethod
    def resolve[V](value: V | Awaitable[V], /) -> Future[V]: ...

    @overload
    @staticmethod
    def resolve[V](future: Future[V], value: V | Awaitable[V], /) -> Future[V]: ...

    @staticmethod
    def resolve(*args: Any) -> Future[Any]:
        """Resolve a given Future, or create a non-cancelable one already resolving.

        Example:
            ```python
            Future.resolve(5).value  # 5
            Future.resolve(pending, 5)  # settles `pending`
            ```
        """
        future, value = _split_static_args('resolve', args)
        future._state.resolve(value)
        return future

    @overload
    @staticmethod
    def reject(reason: Any, /) -> Future[Any]: ...

    @overload
    @staticmethod
    def reject[V](future: Future[V], reason: Any, /) -> Future[V]: ...

    @staticmethod
    def reject(*args: Any) -> Future[Any]:
        """Reject a given Future, or create a non-cancelable rejected one."""
        future, reason = _split_static_args('reject', args)
        future._state.reject(reason)
        return future

    @staticmethod
    def from_[V](awaitable: Awaitable[V]) -> Future[V]:
        """Return awaitable itself if it is a Future, else wrap it in a non-cancelable one.

        Coroutines are scheduled on the running event loop.
        """
        if isinstance(awaitable, Future):
            return awaitable
        future: Future[V] = Future(cancelable=False)
        future._state.resolve(awaitable)
        return future

    @staticmethod
    def all(items: Iterable[Any], bind_cancel: bool = True) -> Future[list[Any]]:
        """See klaw_promise.aggregate.all_of."""
        from klaw_promise.aggregate import all_of

        return all_of(items, bind_cancel)

    @staticmethod
    def all_completed(items: Iterable[Any], bind_cancel: bool = True) -> Future[None]:
        """See klaw_promise.aggregate.all_completed."""
        from klaw_promise.aggregate import all_completed

        return all_completed(items, bind_cancel)


def _split_static_args(name: str, args: tuple[Any, ...]) -> tuple[Future[Any], Any]:
    if len(args) == 1:
        return Future(cancelable=False), args[0]
    if len(args) == 2 and isinstance(args[0], Future):
        return args[0], args[1]
    msg = f'{name}() takes a value, or a Future and a value'
    raise TypeError(msg)


def create_future[T](cancelable: bool = True) -> tuple[FuturePort[T], Future[T]]:
    """Create a port/Future pair sharing one state.

    Args:
        cancelable: Whether consumers can cancel the Future.

    Returns:
        Tuple of (FuturePort[T], Future[T]).

    Example:
        ```python
        port, future = create_future()
        port.resolve(42)
        assert future.value == 42
        ```
    """
    future: Future[T] = Future(cancelable)
    return FuturePort(future._state), future
