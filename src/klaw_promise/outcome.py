"""Outcome variants: the tagged union a Future or Stream moves through.

Every primitive holds exactly one of these at a time. `Pending` is the
initial variant, `Emitting` only appears on Streams, and the terminal
variants are `Resolved` (Futures), `Completed` (Streams), `Rejected` and
`Cancelled`. The last two live in `klaw_promise.errors` because they double
as struct variants of the error types.

All variants are frozen msgspec structs tagged by kind, so an outcome can be
encoded directly:

    >>> import msgspec
    >>> msgspec.json.encode(Resolved(5))
    b'{"type":"resolved","value":5}'
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

import msgspec

if TYPE_CHECKING:
    from klaw_promise.errors import Cancelled, Rejected

__all__ = [
    'COMPLETED',
    'EMITTING',
    'PENDING',
    'Completed',
    'Emitting',
    'Outcome',
    'Pending',
    'Resolved',
    'Status',
]


class Status(Enum):
    """Coarse status of a Future or Stream."""

    PENDING = 'pending'
    EMITTING = 'emitting'
    RESOLVED = 'resolved'
    REJECTED = 'rejected'
    CANCELLED = 'cancelled'

    @property
    def terminal(self) -> bool:
        """True for states that admit no further transition."""
        return self not in (Status.PENDING, Status.EMITTING)


class Pending(msgspec.Struct, frozen=True, gc=False, tag_field='type', tag='pending'):
    """Not settled yet."""

    status: ClassVar[Status] = Status.PENDING


class Emitting(msgspec.Struct, frozen=True, gc=False, tag_field='type', tag='emitting'):
    """Stream has emitted at least one item and is not terminal."""

    status: ClassVar[Status] = Status.EMITTING


class Resolved(msgspec.Struct, frozen=True, tag_field='type', tag='resolved'):
    """Future settled successfully with `value`."""

    value: Any = None
    status: ClassVar[Status] = Status.RESOLVED


class Completed(msgspec.Struct, frozen=True, gc=False, tag_field='type', tag='completed'):
    """Stream finished normally."""

    status: ClassVar[Status] = Status.RESOLVED


PENDING = Pending()
EMITTING = Emitting()
COMPLETED = Completed()

type Outcome = Pending | Emitting | Resolved | Completed | Rejected | Cancelled
