"""Batch debouncer: many single-argument calls, one implementation call.

Example:
    ```python
    async def squares(args: list[int]) -> list[str]:
        return [f'{x} => {x**2}' for x in args]

    square = Batch(squares, delay=0.05)
    a, b = await Future.all([square(10), square(20)])  # one call to squares()
    ```
"""

from __future__ import annotations

import asyncio
from functools import partial
from typing import TYPE_CHECKING, Any

from klaw_promise._logging import get_logger
from klaw_promise.future import Future, FuturePort, create_future

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

__all__ = ['Batch']

_logger = get_logger('klaw_promise.batch')


class Batch[A, R]:
    """Collect arguments for `delay` seconds, then run them in one call.

    The timer starts with the first queued argument. Calls arriving while it
    is pending join the same batch; calls after it fired start a new one.
    """

    def __init__(
        self,
        implementation: Callable[[list[A]], Iterable[R] | Awaitable[Iterable[R]]],
        delay: float,
    ) -> None:
        """Create a batcher.

        Args:
            implementation: Maps the batched arguments to results in the same order.
            delay: Seconds to wait for more arguments before calling implementation.
        """
        self.implementation = implementation
        self.delay = delay
        self._queue: list[tuple[A, FuturePort[R]]] = []
        self._timer: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> int:
        """Number of arguments waiting for the next batch."""
        return len(self._queue)

    def run(self, arg: A) -> Future[R]:
        """Queue arg for the next batch.

        Must be called from a running asyncio event loop.

        Returns:
            A Future resolving with the result at arg's position.
        """
        loop = asyncio.get_running_loop()
        port, future = create_future(cancelable=False)
        self._queue.append((arg, port))
        if self._timer is None:
            self._timer = loop.call_later(self.delay, self._process)
        return future

    def __call__(self, arg: A) -> Future[R]:
        return self.run(arg)

    def _process(self) -> None:
        queue, self._queue = self._queue, []
        self._timer = None
        args = [arg for arg, _ in queue]
        ports = [port for _, port in queue]

        try:
            result = self.implementation(args)
        except Exception as exc:
            self._fail(ports, exc)
            return
        Future.resolve(result).on_data(partial(self._deliver, ports)).on_error(partial(self._fail, ports))

    def _deliver(self, ports: list[FuturePort[R]], results: Iterable[R]) -> None:
        try:
            results = list(results)
        except TypeError as exc:
            self._fail(ports, exc)
            return
        if len(results) != len(ports):
            self._fail(ports, ValueError(f'Batch of {len(ports)} arguments produced {len(results)} results'))
            return
        for port, result in zip(ports, results, strict=True):
            port.resolve(result)

    def _fail(self, ports: list[FuturePort[R]], reason: Any) -> None:
        _logger.warning(
            'batch_failed',
            size=len(ports),
            error=repr(reason),
            exc_info=reason if isinstance(reason, BaseException) else None,
        )
        for port in ports:
            port.reject(reason)
