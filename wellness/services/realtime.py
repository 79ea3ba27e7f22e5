"""In-process change notifications for tracker tables.

Writers publish a :class:`ChangeEvent` after every successful insert, update
or delete. Pages subscribe per ``(user_id, table)`` over server-sent events
and refetch their data whenever an event arrives.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 32


@dataclass
class ChangeEvent:
    table: str
    user_id: str
    event_type: str  # INSERT, UPDATE or DELETE
    record: Dict[str, Any] = field(default_factory=dict)

    def to_sse(self) -> str:
        return f'event: change\ndata: {json.dumps(asdict(self), default=str)}\n\n'


class Subscription:
    def __init__(self, feed: 'ChangeFeed', user_id: str, table: str, maxsize: int) -> None:
        self.feed = feed
        self.user_id = user_id
        self.table = table
        self._queue: 'queue.Queue[ChangeEvent]' = queue.Queue(maxsize=maxsize)
        self.closed = False

    def matches(self, event: ChangeEvent) -> bool:
        return event.user_id == self.user_id and event.table == self.table

    def put(self, event: ChangeEvent) -> None:
        # Keep the newest events; a slow reader only needs to know something changed.
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass

    def get(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self.feed.unsubscribe(self)


class ChangeFeed:
    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        self._maxsize = maxsize
        self._lock = threading.Lock()
        self._subscriptions: List[Subscription] = []

    @contextmanager
    def subscribe(self, user_id: str, table: str) -> Iterator[Subscription]:
        """Yield a subscription that is always released on exit."""

        subscription = Subscription(self, user_id, table, self._maxsize)
        with self._lock:
            self._subscriptions.append(subscription)
        logger.debug('realtime.subscribe', extra={'user_id': user_id, 'table': table})
        try:
            yield subscription
        finally:
            self.unsubscribe(subscription)

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
        if not subscription.closed:
            subscription.closed = True
            logger.debug(
                'realtime.unsubscribe',
                extra={'user_id': subscription.user_id, 'table': subscription.table},
            )

    def publish(self, event: ChangeEvent) -> int:
        with self._lock:
            targets = [sub for sub in self._subscriptions if sub.matches(event)]
        for subscription in targets:
            subscription.put(event)
        return len(targets)

    def subscriber_count(self, user_id: Optional[str] = None, table: Optional[str] = None) -> int:
        with self._lock:
            return sum(
                1
                for sub in self._subscriptions
                if (user_id is None or sub.user_id == user_id) and (table is None or sub.table == table)
            )
