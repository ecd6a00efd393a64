"""Isolated observer invocation shared by Future and Stream.

Settlement never calls observers recursively. `invoke_all` appends to one
FIFO queue and only the outermost call drains it, so an observer that
settles another primitive just queues that primitive's observers behind the
ones already waiting. Chains of any length settle in constant stack depth
and observers still run in registration order.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Any

from klaw_promise._config import get_config
from klaw_promise._logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

__all__ = ['invoke', 'invoke_all']

_logger = get_logger('klaw_promise')

_queue: deque[tuple[str, Callable[..., Any], tuple[Any, ...]]] = deque()
_draining = False


def invoke(primitive: str, callback: Callable[..., Any], *args: Any) -> None:
    """Call an observer now, containing whatever it raises.

    Observer failures must never abort a settlement, reach sibling observers
    or propagate to the producer. They are logged only when debug is on.

    Args:
        primitive: Kind of the primitive that owns the observer, for logging.
        callback: The observer.
        *args: Arguments for the observer.
    """
    try:
        callback(*args)
    except Exception as exc:
        if get_config().debug:
            _logger.warning('observer_failed', primitive=primitive, callback=repr(callback), exc_info=exc)


def invoke_all(primitive: str, callbacks: Iterable[Callable[..., Any]] | None, *args: Any) -> None:
    """Queue every observer in registration order, then drain unless a drain is running."""
    global _draining  # noqa: PLW0603

    if callbacks is None:
        return
    for callback in callbacks:
        _queue.append((primitive, callback, args))
    if _draining:
        return

    _draining = True
    try:
        while _queue:
            owner, callback, queued_args = _queue.popleft()
            invoke(owner, callback, *queued_args)
    finally:
        _draining = False
