"""klaw-promise: cancelable Futures and buffered Streams for asyncio code.

Producers drive a primitive through its port, consumers observe it, chain
it, cancel it, or await it. Cancellation is its own outcome, separate from
rejection, and flows from sources to derived primitives (and back when
bind_cancel is set).

Flat imports (preferred):
    from klaw_promise import Future, Stream, create_future, create_stream
    from klaw_promise import all_of, all_completed, PubSub, Batch

Submodule imports (for organization):
    from klaw_promise.future import Future, FuturePort
    from klaw_promise.stream import Stream, StreamPort
    from klaw_promise.errors import CancelledError, RejectedError
"""

# Configuration
from klaw_promise._config import PromiseConfig, get_config, init, set_debug

# Logging
from klaw_promise._logging import (
    add_component,
    add_log_hook,
    clear_log_hooks,
    configure_logging,
    get_logger,
    remove_log_hook,
)

# Aggregation
from klaw_promise.aggregate import all_completed, all_of

# Collaborators
from klaw_promise.batch import Batch

# Errors
from klaw_promise.errors import (
    AlreadyListening,
    AlreadyListeningError,
    Cancelled,
    CancelledError,
    NotSettled,
    NotSettledError,
    Rejected,
    RejectedError,
    throw_cancel,
)

# Primitives
from klaw_promise.future import Future, FuturePort, create_future, is_awaitable
from klaw_promise.outcome import Completed, Emitting, Outcome, Pending, Resolved, Status
from klaw_promise.pubsub import PubSub
from klaw_promise.stream import Stream, StreamPort, create_stream

__all__ = [
    'AlreadyListening',
    'AlreadyListeningError',
    'Batch',
    'Cancelled',
    'CancelledError',
    'Completed',
    'Emitting',
    'Future',
    'FuturePort',
    'NotSettled',
    'NotSettledError',
    'Outcome',
    'Pending',
    'PromiseConfig',
    'PubSub',
    'Rejected',
    'RejectedError',
    'Resolved',
    'Status',
    'Stream',
    'StreamPort',
    'add_component',
    'add_log_hook',
    'all_completed',
    'all_of',
    'clear_log_hooks',
    'configure_logging',
    'create_future',
    'create_stream',
    'get_config',
    'get_logger',
    'init',
    'is_awaitable',
    'remove_log_hook',
    'set_debug',
    'throw_cancel',
]
