"""Aggregation engine: settle many values, Futures or awaitables as one Future.

Example:
    ```python
    a, b, c = await all_of([
        0,
        Future.from_(fetch_one()),
        Future.resolve({'t': 3}).then(lambda x: x['t']),
    ])
    ```
"""

from __future__ import annotations

from functools import partial
from typing import TYPE_CHECKING, Any

from klaw_promise.errors import throw_cancel
from klaw_promise.future import Future, is_awaitable
from klaw_promise.outcome import PENDING

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

__all__ = ['all_completed', 'all_of']


def _aggregate(
    items: Iterable[Any],
    bind_cancel: bool,
    fail_fast: bool,
    finish: Callable[[list[Any]], Any],
) -> Future[Any]:
    """Wire every item into one cancelable aggregate Future.

    Args:
        items: Plain values, Futures or other awaitables.
        bind_cancel: Cancel element Futures when the aggregate is cancelled or fails.
        fail_fast: Reject on the first rejection, otherwise count rejections as settled.
        finish: Maps the ordered results to the aggregate's value.
    """
    aggregate: Future[Any] = Future(cancelable=True)
    target = aggregate._state
    items = list(items)
    elements = [item for item in items if isinstance(item, Future)]
    results: list[Any] = [None] * len(items)
    remaining = len(items)

    def settle_one(index: int, value: Any) -> None:
        nonlocal remaining
        if target.outcome is not PENDING:
            return
        results[index] = value
        remaining -= 1
        if remaining == 0:
            target.resolve(finish(results))

    def fail(reason: Any) -> None:
        if target.outcome is not PENDING:
            return
        target.reject(reason)
        if bind_cancel:
            for element in elements:
                element.cancel()

    if bind_cancel:
        for element in elements:
            aggregate.on_cancel(element.cancel)

    for index, item in enumerate(items):
        if isinstance(item, Future):
            tracked = item.catch_cancel(throw_cancel)
        elif is_awaitable(item):
            tracked = Future.from_(item)
        else:
            settle_one(index, item)
            continue
        tracked.on_data(partial(settle_one, index))
        tracked.on_error(fail if fail_fast else partial(settle_one, index))

    if not items:
        target.resolve(finish(results))
    return aggregate


def all_of(items: Iterable[Any], bind_cancel: bool = True) -> Future[list[Any]]:
    """Resolve with every item's value, in input order.

    The first rejection rejects the aggregate with that reason unchanged and,
    when bind_cancel is set, cancels every item that is a Future. A cancelled
    item counts as a rejection with CancelledError.

    Args:
        items: Plain values, Futures or other awaitables.
        bind_cancel: Cancel item Futures on failure or when the aggregate is cancelled.

    Returns:
        A cancelable Future of the ordered values.
    """
    return _aggregate(items, bind_cancel, fail_fast=True, finish=list)


def all_completed(items: Iterable[Any], bind_cancel: bool = True) -> Future[None]:
    """Resolve with None once every item settled, whatever the outcome.

    Individual rejections are swallowed, so the aggregate never rejects.
    Used for best-effort fan-out where every listener gets notified.

    Args:
        items: Plain values, Futures or other awaitables.
        bind_cancel: Cancel item Futures when the aggregate is cancelled.
    """
    return _aggregate(items, bind_cancel, fail_fast=False, finish=lambda _results: None)
