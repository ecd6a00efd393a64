"""Schema-validated publish/subscribe over Futures.

Example:
    ```python
    class UserChanged(msgspec.Struct):
        user_id: int
        name: str

    on_user_change = PubSub(UserChanged)
    unsubscribe = on_user_change.subscribe(lambda event: cache.pop(event.user_id, None))

    await on_user_change.publish({'user_id': 7, 'name': 'Ada'})
    ```
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import msgspec

from klaw_promise._logging import get_logger
from klaw_promise.aggregate import all_completed
from klaw_promise.future import Future

if TYPE_CHECKING:
    from collections.abc import Callable

__all__ = ['PubSub']

_logger = get_logger('klaw_promise.pubsub')


class PubSub[E]:
    """In-process event bus for events of one schema.

    Events are validated with msgspec before any listener sees them.
    Listeners may return a plain value, a Future or any awaitable; publish()
    waits for all of them but never fails because of them.

    Attributes:
        schema: Type events are converted to, e.g. a msgspec.Struct.
    """

    def __init__(self, schema: type[E]) -> None:
        self.schema = schema
        self._listeners: list[Callable[[E], Any]] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Callable[[E], Any]) -> Callable[[], None]:
        """Register listener for future events.

        Returns:
            Callable removing the listener again; calling it twice is harmless.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: Any) -> Future[None]:
        """Validate event and hand it to every listener.

        Returns:
            A Future rejected with msgspec.ValidationError when the event does
            not match the schema, else one resolving with None once every
            listener's result settled.
        """
        try:
            validated = msgspec.convert(event, type=self.schema)
        except msgspec.ValidationError as exc:
            _logger.debug('publish_rejected', schema=repr(self.schema), error=str(exc))
            return Future.reject(exc)

        jobs = []
        for listener in list(self._listeners):
            try:
                jobs.append(listener(validated))
            except Exception as exc:
                _logger.warning('subscriber_failed', listener=repr(listener), exc_info=exc)
        return all_completed(jobs)
