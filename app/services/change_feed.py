from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    INSERT = 'INSERT'
    UPDATE = 'UPDATE'
    DELETE = 'DELETE'


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    kind: ChangeKind


ChangeHandler = Callable[[ChangeEvent], None]


class ChangeFeed:
    """In-process realtime channel: table name -> subscribers.

    Writes publish from threadpool workers, so subscription bookkeeping is
    locked and handlers must be thread safe.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[str, list[ChangeHandler]] = {}

    def subscribe(self, table: str, handler: ChangeHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers.setdefault(table, []).append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(table, [])
                if handler in handlers:
                    handlers.remove(handler)

        return _unsubscribe

    def subscriber_count(self, table: str) -> int:
        with self._lock:
            return len(self._handlers.get(table, []))

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event.table, []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception('Change handler failed for %s %s', event.kind.value, event.table)


@lru_cache(maxsize=1)
def get_change_feed() -> ChangeFeed:
    return ChangeFeed()
