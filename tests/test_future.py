"""Tests for Future, FuturePort and create_future.

Covers the settlement state machine, observer replay and isolation,
derivation with map/then/catch/catch_cancel, adoption of awaitables and
awaiting from asyncio code.
"""

from __future__ import annotations

import asyncio
from typing import Any

import msgspec
import pytest
from hypothesis import given
from klaw_promise import (
    CancelledError,
    Future,
    NotSettledError,
    Rejected,
    RejectedError,
    Resolved,
    Status,
    create_future,
    set_debug,
)
from klaw_promise.errors import Cancelled

from tests.strategies import reasons, settlements, values


def settle(port: Any, future: Future[Any], settlement: tuple[str, Any]) -> None:
    kind, payload = settlement
    if kind == 'resolve':
        port.resolve(payload)
    elif kind == 'reject':
        port.reject(payload)
    else:
        future.cancel()


class TestSettlement:
    """Tests for the one-shot state machine."""

    def test_new_future_is_pending(self) -> None:
        _port, future = create_future()
        assert future.status == Status.PENDING
        assert not future.done()

    def test_resolve_sets_value(self) -> None:
        port, future = create_future()
        port.resolve(5)
        assert future.status == Status.RESOLVED
        assert future.value == 5
        assert future.done()

    def test_reject_keeps_reason_verbatim(self) -> None:
        port, future = create_future()
        reason = {'code': 42}
        port.reject(reason)
        assert future.status == Status.REJECTED
        assert future.error is reason

    def test_second_resolve_is_ignored(self) -> None:
        """resolve(5) then resolve(7) keeps 5 and fires observers once."""
        port, future = create_future()
        seen: list[int] = []
        future.on_data(seen.append)

        port.resolve(5)
        port.resolve(7)

        assert future.value == 5
        assert seen == [5]

    def test_reject_after_resolve_is_ignored(self) -> None:
        port, future = create_future()
        errors: list[Any] = []
        future.on_error(errors.append)

        port.resolve(1)
        port.reject('late')

        assert future.value == 1
        assert errors == []

    def test_cancel_without_observers(self) -> None:
        """Cancelling a cancelable Future with no observers still transitions."""
        _port, future = create_future(cancelable=True)
        future.cancel()
        assert future.status == Status.CANCELLED

    def test_cancel_non_cancelable_is_noop(self) -> None:
        port, future = create_future(cancelable=False)
        cancelled: list[bool] = []
        future.on_cancel(lambda: cancelled.append(True))
        port.on_cancel(lambda: cancelled.append(True))

        future.cancel()

        assert future.status == Status.PENDING
        assert not future.cancelable
        port.resolve(1)
        assert future.value == 1
        assert cancelled == []

    def test_cancel_after_resolve_is_noop(self) -> None:
        port, future = create_future()
        port.resolve(1)
        future.cancel()
        assert future.status == Status.RESOLVED

    def test_port_hears_cancellation(self) -> None:
        port, future = create_future()
        stopped: list[bool] = []
        port.on_cancel(lambda: stopped.append(True))

        future.cancel()
        future.cancel()

        assert stopped == [True]

    @given(settlements, settlements)
    def test_first_settlement_wins(self, first: tuple[str, Any], second: tuple[str, Any]) -> None:
        """Whatever comes second never changes the outcome."""
        port, future = create_future()
        settle(port, future, first)
        outcome = future.outcome
        settle(port, future, second)
        assert future.outcome is outcome

    @given(values)
    def test_outcome_matches_value(self, value: Any) -> None:
        port, future = create_future()
        port.resolve(value)
        assert future.outcome == Resolved(value)


class TestObservers:
    """Tests for observer registration, ordering, replay and isolation."""

    def test_observers_fire_in_registration_order(self) -> None:
        port, future = create_future()
        calls: list[str] = []
        future.on_data(lambda _v: calls.append('first'))
        future.on_data(lambda _v: calls.append('second'))
        future.on_end(lambda: calls.append('end'))

        port.resolve(None)

        assert calls == ['first', 'second', 'end']

    def test_late_on_data_replays_once(self) -> None:
        port, future = create_future()
        port.resolve('x')

        seen: list[str] = []
        future.on_data(seen.append)

        assert seen == ['x']

    def test_late_observer_for_other_outcome_is_dropped(self) -> None:
        port, future = create_future()
        port.resolve('x')

        errors: list[Any] = []
        cancelled: list[bool] = []
        future.on_error(errors.append).on_cancel(lambda: cancelled.append(True))

        assert errors == []
        assert cancelled == []

    @given(settlements)
    def test_late_on_end_fires_for_any_outcome(self, settlement: tuple[str, Any]) -> None:
        port, future = create_future()
        settle(port, future, settlement)
        ended: list[bool] = []
        future.on_end(lambda: ended.append(True))
        assert ended == [True]

    def test_late_on_error_replays_reason(self) -> None:
        reason = ValueError('boom')
        future = Future.reject(reason)
        errors: list[Any] = []
        future.on_error(errors.append)
        assert errors == [reason]

    def test_late_on_cancel_replays(self) -> None:
        _port, future = create_future()
        future.cancel()
        cancelled: list[bool] = []
        future.on_cancel(lambda: cancelled.append(True))
        assert cancelled == [True]

    def test_observer_exception_does_not_stop_siblings(self) -> None:
        port, future = create_future()
        seen: list[int] = []

        def broken(_value: int) -> None:
            raise RuntimeError('observer bug')

        future.on_data(broken).on_data(seen.append)
        port.resolve(3)

        assert seen == [3]
        assert future.value == 3

    def test_observer_exception_does_not_reach_producer(self) -> None:
        port, future = create_future()
        future.on_end(lambda: 1 / 0)
        port.resolve(1)  # must not raise
        assert future.done()

    def test_observer_failure_logged_in_debug(self, log_events: list[dict[str, Any]]) -> None:
        set_debug(True)
        future = Future.resolve(1)
        future.on_data(lambda _v: 1 / 0)

        failures = [e for e in log_events if e.get('event') == 'observer_failed']
        assert len(failures) == 1
        assert isinstance(failures[0]['exc_info'], ZeroDivisionError)
        assert failures[0]['primitive'] == 'future'

    def test_observer_failure_silent_without_debug(self, log_events: list[dict[str, Any]]) -> None:
        future = Future.resolve(1)
        future.on_data(lambda _v: 1 / 0)
        assert [e for e in log_events if e.get('event') == 'observer_failed'] == []

    def test_observer_lists_released_at_settlement(self) -> None:
        port, future = create_future()
        future.on_data(print).on_error(print).on_cancel(print).on_end(print)
        port.reject('x')
        state = future._state
        assert state.on_data is None
        assert state.on_error is None
        assert state.on_cancel is None
        assert state.on_end is None


class TestIntrospection:
    """Tests for status, outcome, value and error accessors."""

    def test_value_of_pending_raises(self) -> None:
        _port, future = create_future()
        with pytest.raises(NotSettledError, match='Expected resolved, but status is pending'):
            _ = future.value

    def test_error_of_resolved_raises(self) -> None:
        with pytest.raises(NotSettledError):
            _ = Future.resolve(1).error

    def test_outcome_encodes_as_tagged_json(self) -> None:
        assert msgspec.json.encode(Future.resolve(5).outcome) == b'{"type":"resolved","value":5}'
        assert msgspec.json.encode(Future.reject('nope').outcome) == b'{"type":"rejected","reason":"nope"}'

    def test_cancelled_outcome(self) -> None:
        _port, future = create_future()
        future.cancel()
        assert isinstance(future.outcome, Cancelled)

    def test_repr(self) -> None:
        assert repr(Future(cancelable=True)) == '<Future pending cancelable=True>'


class TestStatics:
    """Tests for Future.resolve, Future.reject and Future.from_."""

    def test_resolve_creates_non_cancelable(self) -> None:
        future = Future.resolve(5)
        assert future.value == 5
        assert not future.cancelable

    def test_resolve_existing_future(self) -> None:
        future: Future[int] = Future(cancelable=True)
        assert Future.resolve(future, 9) is future
        assert future.value == 9

    def test_reject_existing_future(self) -> None:
        future: Future[int] = Future()
        assert Future.reject(future, 'bad') is future
        assert future.error == 'bad'

    def test_wrong_arity_raises(self) -> None:
        with pytest.raises(TypeError):
            Future.resolve(Future(), 1, 2)  # type: ignore[call-overload]
        with pytest.raises(TypeError):
            Future.reject(1, 2)  # type: ignore[call-overload]

    def test_from_returns_future_unchanged(self) -> None:
        future = Future.resolve(1)
        assert Future.from_(future) is future

    async def test_from_wraps_coroutine(self) -> None:
        async def compute() -> int:
            await asyncio.sleep(0)
            return 7

        future = Future.from_(compute())
        assert not future.cancelable
        assert await future == 7

    def test_from_coroutine_without_loop_rejects(self) -> None:
        async def compute() -> int:
            return 7

        future = Future.from_(compute())
        assert future.status == Status.REJECTED
        assert isinstance(future.error, RuntimeError)


class TestAdoption:
    """Tests for resolving with Futures and other awaitables."""

    def test_adopt_resolved_future(self) -> None:
        port, future = create_future()
        port.resolve(Future.resolve('inner'))
        assert future.value == 'inner'

    def test_adopt_rejected_future(self) -> None:
        port, future = create_future()
        port.resolve(Future.reject('inner'))
        assert future.error == 'inner'

    def test_adopt_cancelled_future_rejects(self) -> None:
        _inner_port, inner = create_future()
        inner.cancel()
        port, future = create_future()
        port.resolve(inner)
        assert isinstance(future.error, CancelledError)

    def test_adopt_pending_future_follows_it(self) -> None:
        inner_port, inner = create_future()
        port, future = create_future()
        port.resolve(inner)
        assert future.status == Status.PENDING

        inner_port.resolve(3)
        assert future.value == 3

    def test_direct_settlement_beats_pending_adoption(self) -> None:
        inner_port, inner = create_future()
        port, future = create_future()
        port.resolve(inner)
        port.reject('direct')
        inner_port.resolve(3)
        assert future.error == 'direct'

    def test_self_resolution_rejects(self) -> None:
        port, future = create_future()
        port.resolve(future)
        assert isinstance(future.error, TypeError)

    async def test_adopt_pending_asyncio_future(self) -> None:
        loop = asyncio.get_running_loop()
        inner: asyncio.Future[int] = loop.create_future()
        future = Future.resolve(inner)
        assert future.status == Status.PENDING

        inner.set_result(11)
        assert await future == 11

    async def test_adopt_cancelled_asyncio_future(self) -> None:
        inner: asyncio.Future[int] = asyncio.get_running_loop().create_future()
        inner.cancel()
        future = Future.resolve(inner)
        assert isinstance(future.error, CancelledError)

    async def test_deep_settled_chain_has_no_recursion(self) -> None:
        """Thousands of nested settled awaitables unwrap without recursion."""
        loop = asyncio.get_running_loop()
        value: Any = 'bottom'
        for _ in range(5000):
            wrapper: asyncio.Future[Any] = loop.create_future()
            wrapper.set_result(value)
            value = wrapper

        future = Future.resolve(value)
        assert future.value == 'bottom'

    def test_long_chain_of_futures(self) -> None:
        future: Future[Any] = Future.resolve(0)
        for _ in range(5000):
            future = Future.resolve(future)
        assert future.value == 0


class TestPendingChains:
    """Tests for long chains that settle from their innermost link."""

    def test_pending_adoption_chain(self) -> None:
        """Each Future adopts the previous, still pending one."""
        innermost, first = create_future()
        future: Future[Any] = first
        for _ in range(2000):
            port, outer = create_future()
            port.resolve(future)
            future = outer

        assert future.status == Status.PENDING
        innermost.resolve('bottom')
        assert future.value == 'bottom'

    def test_pending_adoption_chain_rejects(self) -> None:
        innermost, first = create_future()
        future: Future[Any] = first
        for _ in range(2000):
            port, outer = create_future()
            port.resolve(future)
            future = outer

        innermost.reject('broken')
        assert future.error == 'broken'

    def test_then_chain(self) -> None:
        port, first = create_future()
        future: Future[int] = first
        for _ in range(500):
            future = future.then(lambda x: x + 1)

        port.resolve(0)
        assert future.value == 500

    def test_map_chain_cancelled_from_source(self) -> None:
        _port, first = create_future(cancelable=True)
        future: Future[int] = first
        for _ in range(1000):
            future = future.map(lambda x: x)

        first.cancel()
        assert future.status == Status.CANCELLED

    def test_nested_settlement_runs_before_return(self) -> None:
        """Observers of a Future settled by an observer run in queue order."""
        outer_port, outer = create_future()
        inner_port, inner = create_future()
        calls: list[str] = []

        outer.on_data(lambda _v: inner_port.resolve('inner'))
        outer.on_data(lambda _v: calls.append('outer'))
        inner.on_data(calls.append)

        outer_port.resolve('outer')

        assert inner.value == 'inner'
        assert calls == ['outer', 'inner']


class TestMap:
    """Tests for map() derivation."""

    def test_map_transforms_value(self) -> None:
        assert Future.resolve(2).map(lambda x: x * 10).value == 20

    def test_missing_handlers_pass_through(self) -> None:
        assert Future.resolve(2).map().value == 2
        assert Future.reject('r').map(lambda x: x).error == 'r'

    def test_handler_exception_rejects(self) -> None:
        derived = Future.resolve(0).map(lambda x: 1 / x)
        assert isinstance(derived.error, ZeroDivisionError)

    def test_handler_exception_goes_to_on_rejected(self) -> None:
        derived = Future.resolve(0).map(lambda x: 1 / x, lambda exc: type(exc).__name__)
        assert derived.value == 'ZeroDivisionError'

    def test_on_rejected_recovers(self) -> None:
        assert Future.reject('bad').map(None, lambda r: f'recovered {r}').value == 'recovered bad'

    def test_handler_returning_future_is_adopted(self) -> None:
        inner_port, inner = create_future()
        derived = Future.resolve(1).map(lambda _x: inner)
        assert derived.status == Status.PENDING
        inner_port.resolve('late')
        assert derived.value == 'late'

    def test_rejected_awaitable_goes_to_on_rejected(self) -> None:
        derived = Future.resolve(1).map(lambda _x: Future.reject('inner'), lambda r: f'handled {r}')
        assert derived.value == 'handled inner'

    async def test_handler_returning_coroutine_is_adopted(self) -> None:
        async def double(x: int) -> int:
            await asyncio.sleep(0)
            return x * 2

        assert await Future.resolve(4).map(double) == 8

    def test_derived_inherits_cancelable(self) -> None:
        assert Future(cancelable=True).map().cancelable
        assert not Future(cancelable=False).map().cancelable

    def test_source_cancel_cancels_derived(self) -> None:
        _port, source = create_future()
        derived = source.map(lambda x: x)
        source.cancel()
        assert derived.status == Status.CANCELLED

    def test_on_cancelled_produces_value(self) -> None:
        _port, source = create_future()
        derived = source.map(on_cancelled=lambda: 'fallback')
        source.cancel()
        assert derived.value == 'fallback'

    def test_map_does_not_bind_cancel_by_default(self) -> None:
        _port, source = create_future()
        derived = source.map(lambda x: x)
        derived.cancel()
        assert derived.status == Status.CANCELLED
        assert source.status == Status.PENDING

    def test_bind_cancel_cancels_source(self) -> None:
        _port, source = create_future()
        derived = source.map(lambda x: x, bind_cancel=True)
        derived.cancel()
        assert source.status == Status.CANCELLED


class TestThenCatch:
    """Tests for Promise-style then/catch/catch_cancel."""

    def test_then_chains_values(self) -> None:
        assert Future.resolve(1).then(lambda x: x + 1).then(lambda x: x * 3).value == 6

    def test_then_on_cancelled_source_rejects_with_cancelled_error(self) -> None:
        _port, source = create_future()
        derived = source.then(lambda x: x)
        source.cancel()
        assert derived.status == Status.REJECTED
        assert isinstance(derived.error, CancelledError)

    def test_cancelling_then_cancels_source(self) -> None:
        _port, source = create_future()
        derived = source.then(lambda x: x)
        derived.cancel()
        assert source.status == Status.CANCELLED
        assert derived.status == Status.CANCELLED

    def test_catch_recovers(self) -> None:
        assert Future.reject('x').catch(lambda r: r + '!').value == 'x!'

    def test_catch_sees_cancellation_as_rejection(self) -> None:
        _port, source = create_future()
        derived = source.catch(lambda r: type(r).__name__)
        source.cancel()
        assert derived.value == 'CancelledError'

    def test_catch_cancel_handles_cancellation(self) -> None:
        _port, source = create_future()
        derived = source.catch_cancel(lambda: 'fallback')
        source.cancel()
        assert derived.value == 'fallback'

    def test_catch_cancel_passes_values(self) -> None:
        port, source = create_future()
        derived = source.catch_cancel(lambda: 'fallback')
        port.resolve('real')
        assert derived.value == 'real'


class TestAwait:
    """Tests for awaiting Futures and bridging to asyncio."""

    async def test_await_resolved(self) -> None:
        assert await Future.resolve(5) == 5

    async def test_await_pending_resolved_later(self) -> None:
        port, future = create_future()
        asyncio.get_running_loop().call_soon(port.resolve, 3)
        assert await future == 3

    async def test_await_raises_exception_reason(self) -> None:
        with pytest.raises(ValueError, match='boom'):
            await Future.reject(ValueError('boom'))

    @given(reasons)
    def test_non_exception_reason_wrapped(self, reason: Any) -> None:
        """Non-exception reasons surface as RejectedError carrying the reason."""
        if isinstance(reason, BaseException):
            assert Rejected(reason).to_exception() is reason
        else:
            exc = Rejected(reason).to_exception()
            assert isinstance(exc, RejectedError)
            assert exc.reason == reason

    async def test_await_non_exception_reason(self) -> None:
        with pytest.raises(RejectedError) as exc_info:
            await Future.reject('plain')
        assert exc_info.value.reason == 'plain'

    async def test_await_cancelled_raises(self) -> None:
        port, future = create_future()
        asyncio.get_running_loop().call_soon(future.cancel)
        with pytest.raises(CancelledError, match='Operation cancelled'):
            await future
        port.resolve(1)
        assert future.status == Status.CANCELLED

    async def test_wait_method(self) -> None:
        assert await Future.resolve('w').wait() == 'w'

    async def test_promisified(self) -> None:
        port, future = create_future()
        bridge = future.promisified()
        assert isinstance(bridge, asyncio.Future)
        port.resolve(2)
        assert await bridge == 2

    async def test_promisified_rejection(self) -> None:
        bridge = Future.reject('bad').promisified()
        with pytest.raises(RejectedError):
            await bridge

    async def test_await_inside_anyio_timeout(self) -> None:
        import anyio

        _port, future = create_future()
        with anyio.move_on_after(0.01) as scope:
            await future
        assert scope.cancelled_caught
        future.cancel()
        assert future.status == Status.CANCELLED
