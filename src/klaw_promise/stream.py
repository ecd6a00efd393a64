"""Stream: cancelable multi-value async primitive with a producer port.

Items emitted before anyone listens are buffered in arrival order and handed
to the first listener in one flush; afterwards items go straight to the
current observers. Completion, rejection and cancellation are terminal and
behave like the matching Future outcomes.

Example:
    ```python
    def watch(device_id: int) -> Stream[dict]:
        port, stream = create_stream()
        process = some_api(device_id)
        process.ondata = port.emit
        process.onerror = port.throw
        process.oncompleted = port.return_
        port.on_cancel(process.stop)
        process.start()
        return stream

    readings = watch(124).map(lambda d, _i: d['prop'], on_error=log_bad_reading)
    async for reading in readings:
        ...
    ```
"""

from __future__ import annotations

import math
from collections.abc import AsyncIterator, Callable
from functools import partial
from typing import Any, overload

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from klaw_promise._callbacks import invoke, invoke_all
from klaw_promise.errors import AlreadyListening, Cancelled, NotSettled, Rejected
from klaw_promise.outcome import COMPLETED, EMITTING, PENDING, Completed, Outcome, Status

__all__ = ['Stream', 'StreamPort', 'create_stream']

_CANCELLED = Cancelled()
_KIND = 'stream'


class _StreamState[T]:
    """Shared mutable state for a Stream and its port.

    `buffer` is a list until the first flush and None afterwards; it is
    never recreated. Observer lists are dropped at the terminal transition,
    together with any unflushed buffer. `return_on_flush` marks a completion
    that waits for the buffer to reach the listener first.
    """

    __slots__ = (
        'buffer',
        'listened',
        'on_cancel',
        'on_completed',
        'on_end',
        'on_error',
        'on_next',
        'outcome',
        'return_on_flush',
    )

    def __init__(self) -> None:
        self.outcome: Outcome = PENDING
        self.buffer: list[T] | None = []
        self.listened: bool = False
        self.return_on_flush: bool = False
        self.on_next: list[Callable[[T], Any]] | None = None
        self.on_error: list[Callable[[Any], Any]] | None = None
        self.on_cancel: list[Callable[[], Any]] | None = None
        self.on_completed: list[Callable[[], Any]] | None = None
        self.on_end: list[Callable[[], Any]] | None = None

    @property
    def terminal(self) -> bool:
        return self.outcome.status.terminal

    # --- settlement ---

    def emit(self, value: T) -> None:
        """Buffer or deliver value. No-op once terminal."""
        if self.outcome is PENDING:
            self.outcome = EMITTING
        elif self.outcome is not EMITTING:
            return

        if self.buffer is not None:
            self.buffer.append(value)
        elif self.on_next is not None:
            invoke_all(_KIND, list(self.on_next), value)

    def return_(self) -> None:
        if self.terminal:
            return
        self._finish(COMPLETED, self.on_completed)

    def return_when_flushed(self) -> None:
        """Complete now, or right after the flush if items are still buffered."""
        if self.terminal:
            return
        if self.buffer:
            self.return_on_flush = True
        else:
            self.return_()

    def throw(self, reason: Any) -> None:
        if self.terminal:
            return
        self._finish(Rejected(reason), self.on_error, reason)

    def cancel(self) -> None:
        if self.terminal:
            return
        self._finish(_CANCELLED, self.on_cancel)

    def _finish(self, outcome: Outcome, callbacks: list[Callable[..., Any]] | None, *args: Any) -> None:
        on_end = self.on_end
        self.outcome = outcome
        self.buffer = None
        self.on_next = self.on_error = self.on_cancel = self.on_completed = self.on_end = None
        invoke_all(_KIND, callbacks, *args)
        invoke_all(_KIND, on_end)

    def flush(self) -> None:
        """Hand every buffered item to the current observers, then drop the buffer."""
        buffer = self.buffer
        if buffer is None:
            return
        self.buffer = None
        observers = list(self.on_next or ())
        for item in buffer:
            invoke_all(_KIND, observers, item)
        if self.return_on_flush:
            self.return_()

    # --- registration ---

    def add_next(self, callback: Callable[[T], Any]) -> None:
        if self.terminal:
            return
        if self.on_next is None:
            self.on_next = []
        self.on_next.append(callback)

    def add_error(self, callback: Callable[[Any], Any]) -> None:
        outcome = self.outcome
        if not self.terminal:
            if self.on_error is None:
                self.on_error = []
            self.on_error.append(callback)
        elif isinstance(outcome, Rejected):
            invoke(_KIND, callback, outcome.reason)

    def add_cancel(self, callback: Callable[[], Any]) -> None:
        if not self.terminal:
            if self.on_cancel is None:
                self.on_cancel = []
            self.on_cancel.append(callback)
        elif isinstance(self.outcome, Cancelled):
            invoke(_KIND, callback)

    def add_completed(self, callback: Callable[[], Any]) -> None:
        if not self.terminal:
            if self.on_completed is None:
                self.on_completed = []
            self.on_completed.append(callback)
        elif isinstance(self.outcome, Completed):
            invoke(_KIND, callback)

    def add_end(self, callback: Callable[[], Any]) -> None:
        if not self.terminal:
            if self.on_end is None:
                self.on_end = []
            self.on_end.append(callback)
        else:
            invoke(_KIND, callback)


class _Indexed[T]:
    """Listener adapter numbering the items it receives."""

    __slots__ = ('callback', 'index')

    def __init__(self, callback: Callable[[T, int], Any]) -> None:
        self.callback = callback
        self.index = 0

    def __call__(self, item: T) -> None:
        index = self.index
        self.index += 1
        self.callback(item, index)

    def __repr__(self) -> str:
        return f'<listener {self.callback!r} at item {self.index}>'


def _forward[T, U](
    transform: Callable[[T, int], U],
    on_error: Callable[[Any], Any] | None,
    target: _StreamState[U],
    item: T,
    index: int,
) -> None:
    try:
        result = transform(item, index)
    except Exception as exc:
        if on_error is None:
            raise
        invoke(_KIND, on_error, exc)
        return
    target.emit(result)


class _Raise:
    """Marker carrying a terminal exception through the iteration channel."""

    __slots__ = ('exception',)

    def __init__(self, exception: BaseException) -> None:
        self.exception = exception


def _close_with(send: MemoryObjectSendStream[Any], outcome: Rejected | Cancelled) -> None:
    send.send_nowait(_Raise(outcome.to_exception()))
    send.close()


async def _iterate[T](stream: Stream[T], receive: MemoryObjectReceiveStream[Any]) -> AsyncIterator[T]:
    async with receive:
        try:
            async for item in receive:
                if isinstance(item, _Raise):
                    raise item.exception
                yield item
        finally:
            # Runs on aclose(), i.e. when the consumer stopped early
            stream.cancel()


class StreamPort[T]:
    """Producer side of a Stream.

    Emits items and terminates the Stream; it cannot observe items or derive
    new Streams.
    """

    __slots__ = ('_state',)

    def __init__(self, state: _StreamState[T]) -> None:
        self._state = state

    def emit(self, value: T) -> None:
        """Emit an item. Dropped once the Stream is terminal."""
        self._state.emit(value)

    def return_(self) -> None:
        """Complete the Stream. No-op once terminal."""
        self._state.return_()

    def throw(self, reason: Any) -> None:
        """Reject the Stream with reason. No-op once terminal."""
        self._state.throw(reason)

    def on_cancel(self, callback: Callable[[], Any]) -> None:
        """Run callback when a consumer cancels the Stream."""
        self._state.add_cancel(callback)


class Stream[T]:
    """Cancelable multi-value async primitive.

    A Stream has exactly one listener (see listen()), which defines the
    order items are consumed in. Extra per-item observers can be added
    with on_next() and see every item delivered after they registered.
    """

    __slots__ = ('_state',)

    def __init__(self) -> None:
        self._state: _StreamState[T] = _StreamState()

    def cancel(self) -> None:
        """Cancel the Stream. No-op once terminal."""
        self._state.cancel()

    # --- events ---

    def on_next(self, callback: Callable[[T], Any]) -> Stream[T]:
        """Call callback with every item delivered from now on.

        Dropped silently once the Stream is terminal.
        """
        self._state.add_next(callback)
        return self

    def on_error(self, callback: Callable[[Any], Any]) -> Stream[T]:
        """Call callback with the reason once rejected."""
        self._state.add_error(callback)
        return self

    def on_cancel(self, callback: Callable[[], Any]) -> Stream[T]:
        """Call callback once cancelled."""
        self._state.add_cancel(callback)
        return self

    def on_completed(self, callback: Callable[[], Any]) -> Stream[T]:
        """Call callback once completed normally."""
        self._state.add_completed(callback)
        return self

    def on_end(self, callback: Callable[[], Any]) -> Stream[T]:
        """Call callback once terminal, whatever the outcome."""
        self._state.add_end(callback)
        return self

    # --- values ---

    @property
    def status(self) -> Status:
        """Current status; EMITTING after the first item until terminal."""
        return self._state.outcome.status

    @property
    def outcome(self) -> Outcome:
        """Current outcome variant."""
        return self._state.outcome

    @property
    def error(self) -> Any:
        """The rejection reason.

        Raises:
            NotSettledError: If the Stream is not rejected.
        """
        outcome = self._state.outcome
        if isinstance(outcome, Rejected):
            return outcome.reason
        raise NotSettled(Status.REJECTED, outcome.status).to_exception()

    def done(self) -> bool:
        """True once completed, rejected or cancelled."""
        return self._state.terminal

    def __repr__(self) -> str:
        return f'<Stream {self.status.value}>'

    # --- pipe ---

    def listen(self, callback: Callable[[T, int], Any]) -> Stream[T]:
        """Attach the Stream's listener and flush buffered items to it.

        callback receives each item and its index, counting from 0. Buffered
        items are delivered in arrival order, then the buffer is gone for
        good and later items are delivered as they are emitted.

        Raises:
            AlreadyListeningError: If the Stream already has a listener.
        """
        state = self._state
        if state.listened:
            raise AlreadyListening().to_exception()
        state.listened = True
        state.add_next(_Indexed(callback))
        state.flush()
        return self

    def map[U](
        self,
        transform: Callable[[T, int], U],
        on_error: Callable[[Any], Any] | None = None,
        bind_cancel: bool = True,
    ) -> Stream[U]:
        """Derive a Stream of transform(item, index) for every item.

        This Stream's listener slot is taken by the derived Stream, which
        buffers until it gets a listener of its own. Completion of this Stream
        reaches the derived one after its buffered items have been flushed.
        A transform that raises
        hands the exception to on_error, or skips the item when on_error is
        None; the Stream keeps going either way.

        Args:
            transform: Maps each item and its index.
            on_error: Receives exceptions raised by transform.
            bind_cancel: Cancelling the derived Stream also cancels this one.

        Raises:
            AlreadyListeningError: If the Stream already has a listener.
        """
        if self._state.listened:
            raise AlreadyListening().to_exception()

        derived: Stream[U] = Stream()
        target = derived._state
        self.on_cancel(target.cancel)
        self.on_completed(target.return_when_flushed)
        self.on_error(target.throw)
        if bind_cancel:
            derived.on_cancel(self.cancel)

        self.listen(partial(_forward, transform, on_error, target))
        return derived

    def __aiter__(self) -> AsyncIterator[T]:
        """Iterate items with `async for`, taking the listener slot.

        Iteration ends on completion, raises the rejection reason (or
        RejectedError) on rejection and CancelledError on cancellation.

        Leaving the loop early cancels the Stream once the iterator is closed.
        Wrap it in `contextlib.aclosing` to cancel right at `break`; a bare
        `break` leaves the cancel to the event loop's async generator
        finalizer, which runs it on a later loop iteration.

        Example:
            ```python
            async with aclosing(aiter(stream)) as items:
                async for item in items:
                    if item is None:
                        break  # stream is cancelled here
            ```
        """
        send, receive = anyio.create_memory_object_stream[Any](max_buffer_size=math.inf)
        self.on_completed(send.close)
        self.on_error(lambda reason: _close_with(send, Rejected(reason)))
        self.on_cancel(partial(_close_with, send, _CANCELLED))
        self.listen(lambda item, _index: send.send_nowait(item))
        return _iterate(self, receive)

    # --- statics ---

    @overload
    @staticmethod
    def emit[V](value: V, /) -> Stream[V]: ...

    @overload
    @staticmethod
    def emit[V](stream: Stream[V], value: V, /) -> Stream[V]: ...

    @staticmethod
    def emit(*args: Any) -> Stream[Any]:
        """Emit on a given Stream, or create a Stream of exactly one item.

        The one-item Stream completes as soon as its listener received the
        item, so nothing is lost to an early completion.

        Example:
            ```python
            assert [x async for x in Stream.emit(5)] == [5]
            Stream.emit(stream, 6)  # emits on `stream`
            ```
        """
        if len(args) == 1:
            stream: Stream[Any] = Stream()
            stream._state.emit(args[0])
            stream._state.return_when_flushed()
            return stream
        if len(args) == 2 and isinstance(args[0], Stream):
            args[0]._state.emit(args[1])
            return args[0]
        msg = 'emit() takes a value, or a Stream and a value'
        raise TypeError(msg)

    @overload
    @staticmethod
    def resolve() -> Stream[Any]: ...

    @overload
    @staticmethod
    def resolve[V](stream: Stream[V], /) -> Stream[V]: ...

    @staticmethod
    def resolve(*args: Any) -> Stream[Any]:
        """Complete a given Stream, or create an already completed one."""
        if len(args) > 1:
            msg = 'resolve() takes at most one Stream'
            raise TypeError(msg)
        stream = args[0] if args else Stream()
        stream._state.return_()
        return stream

    @overload
    @staticmethod
    def reject(reason: Any, /) -> Stream[Any]: ...

    @overload
    @staticmethod
    def reject[V](stream: Stream[V], reason: Any, /) -> Stream[V]: ...

    @staticmethod
    def reject(*args: Any) -> Stream[Any]:
        """Reject a given Stream, or create an already rejected one."""
        if len(args) == 1:
            stream, reason = Stream(), args[0]
        elif len(args) == 2 and isinstance(args[0], Stream):
            stream, reason = args
        else:
            msg = 'reject() takes a reason, or a Stream and a reason'
            raise TypeError(msg)
        stream._state.throw(reason)
        return stream


def create_stream[T]() -> tuple[StreamPort[T], Stream[T]]:
    """Create a port/Stream pair sharing one state.

    Returns:
        Tuple of (StreamPort[T], Stream[T]).

    Example:
        ```python
        port, stream = create_stream()
        port.emit(1)
        port.emit(2)
        stream.listen(print)  # prints "1 0", then "2 1"
        ```
    """
    stream: Stream[T] = Stream()
    return StreamPort(stream._state), stream
