"""Error types: dual struct+exception for outcome inspection and raise-based code.

`Cancelled` and `Rejected` double as the terminal outcome variants of Futures
and Streams (see `klaw_promise.outcome`); the remaining structs describe
misuse of the consumer API.
"""

from __future__ import annotations

from typing import Any, ClassVar

import msgspec

from klaw_promise.outcome import Status

__all__ = [
    'AlreadyListening',
    'AlreadyListeningError',
    'Cancelled',
    'CancelledError',
    'NotSettled',
    'NotSettledError',
    'Rejected',
    'RejectedError',
    'throw_cancel',
]


# --- Outcome Errors ---


class Cancelled(msgspec.Struct, frozen=True, gc=False, tag_field='type', tag='cancelled'):
    """Operation was cancelled - struct variant, also the cancelled outcome."""

    reason: str | None = None
    status: ClassVar[Status] = Status.CANCELLED

    def to_exception(self) -> CancelledError:
        """Convert to exception for raise-based code."""
        return CancelledError(self.reason)


class CancelledError(Exception):
    """Operation was cancelled - exception variant.

    This is the sentinel `then()`/`catch()` chains reject with when their
    source gets cancelled, so awaiting such a chain fails the same way
    awaiting a cancelled Future does.
    """

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(reason or 'Operation cancelled')

    def to_struct(self) -> Cancelled:
        """Convert to struct for outcome inspection."""
        return Cancelled(self.reason)


class Rejected(msgspec.Struct, frozen=True, tag_field='type', tag='rejected'):
    """Operation failed with `reason` - struct variant, also the rejected outcome.

    The reason is opaque and kept verbatim; it need not be an exception.
    """

    reason: Any = None
    status: ClassVar[Status] = Status.REJECTED

    def to_exception(self) -> BaseException:
        """Convert to an exception, returning the reason itself when it is one."""
        if isinstance(self.reason, BaseException):
            return self.reason
        return RejectedError(self.reason)


class RejectedError(Exception):
    """Rejection reason that is not an exception - exception variant."""

    def __init__(self, reason: Any = None) -> None:
        self.reason = reason
        super().__init__(f'Rejected: {reason!r}')

    def to_struct(self) -> Rejected:
        """Convert to struct for outcome inspection."""
        return Rejected(self.reason)


# --- Misuse Errors ---


class AlreadyListening(msgspec.Struct, frozen=True, gc=False):
    """Stream already has its consumer - struct variant."""

    def to_exception(self) -> AlreadyListeningError:
        """Convert to exception for raise-based code."""
        return AlreadyListeningError()


class AlreadyListeningError(Exception):
    """Stream already has its consumer - exception variant."""

    def __init__(self) -> None:
        super().__init__('Stream already has a listener')

    def to_struct(self) -> AlreadyListening:
        """Convert to struct for outcome inspection."""
        return AlreadyListening()


class NotSettled(msgspec.Struct, frozen=True, gc=False):
    """Primitive is not in the requested outcome - struct variant."""

    expected: Status
    actual: Status

    def to_exception(self) -> NotSettledError:
        """Convert to exception for raise-based code."""
        return NotSettledError(self.expected, self.actual)


class NotSettledError(Exception):
    """Primitive is not in the requested outcome - exception variant."""

    def __init__(self, expected: Status, actual: Status) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f'Expected {expected.value}, but status is {actual.value}')

    def to_struct(self) -> NotSettled:
        """Convert to struct for outcome inspection."""
        return NotSettled(self.expected, self.actual)


def throw_cancel() -> Any:
    """Cancellation handler that turns a cancellation into a rejection."""
    raise CancelledError()
