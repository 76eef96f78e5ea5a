"""In-process change feed.

Row-level ``insert``/``update`` events are published per table and fanned out
to every subscriber whose predicate matches the row. Delivery is
at-least-once and carries no ordering guarantee between rows; consumers are
expected to re-derive their state from the newest row they have seen
instead of applying deltas. A subscriber that falls more than
``max_pending`` events behind loses its oldest events, never the newest.
"""

import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

INSERT = 'insert'
UPDATE = 'update'
# Per-subscription backlog; consumers only need the newest rows
MAX_PENDING = 256

Predicate = Callable[[Dict[str, Any]], bool]


@dataclass(frozen=True)
class ChangeEvent:
    event_type: str
    table: str
    row: Dict[str, Any] = field(default_factory=dict)


def field_equals(name: str, value: Any) -> Predicate:
    """Predicate matching rows whose ``name`` column equals ``value``."""
    def _match(row: Dict[str, Any]) -> bool:
        return row.get(name) == value
    return _match


class Subscription:
    def __init__(self, feed: 'ChangeFeed', table: str, predicate: Optional[Predicate],
                 max_pending: int = MAX_PENDING):
        self.table = table
        self._feed = feed
        self._predicate = predicate
        self._queue: 'queue.Queue[ChangeEvent]' = queue.Queue(maxsize=max_pending)
        self.dropped = 0
        self.closed = False

    def matches(self, event: ChangeEvent) -> bool:
        if self.closed or event.table != self.table:
            return False
        if self._predicate is None:
            return True
        try:
            return bool(self._predicate(event.row))
        except Exception:
            logger.exception("[feed-predicate] table=%s predicate raised", self.table)
            return False

    def deliver(self, event: ChangeEvent) -> None:
        """Queue ``event``; when full, the oldest pending event is discarded."""
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def get(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """Next pending event, or None if nothing arrives within ``timeout``."""
        try:
            if timeout is None or timeout <= 0:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[ChangeEvent]:
        events = []
        while True:
            event = self.get()
            if event is None:
                return events
            events.append(event)

    def __iter__(self) -> Iterator[ChangeEvent]:
        return iter(self.drain())

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._feed._remove(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class ChangeFeed:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: List[Subscription] = []
        self._listeners: List[tuple] = []

    def subscribe(self, table: str, predicate: Optional[Predicate] = None,
                  max_pending: int = MAX_PENDING) -> Subscription:
        sub = Subscription(self, table, predicate, max_pending)
        with self._lock:
            self._subscriptions.append(sub)
        logger.debug("[feed-subscribe] table=%s subscribers=%d", table, len(self._subscriptions))
        return sub

    def add_listener(self, table: str, callback: Callable[[ChangeEvent], None]) -> None:
        """Register a push-style consumer invoked synchronously on publish."""
        with self._lock:
            self._listeners.append((table, callback))

    def publish(self, event_type: str, table: str, row: Dict[str, Any]) -> ChangeEvent:
        event = ChangeEvent(event_type=event_type, table=table, row=dict(row))
        with self._lock:
            subscribers = [s for s in self._subscriptions if s.matches(event)]
            listeners = [cb for t, cb in self._listeners if t == table]
        for sub in subscribers:
            sub.deliver(event)
        for callback in listeners:
            try:
                callback(event)
            except Exception:
                logger.exception("[feed-listener] table=%s event=%s listener failed", table, event_type)
        return event

    def subscriber_count(self, table: Optional[str] = None) -> int:
        with self._lock:
            if table is None:
                return len(self._subscriptions)
            return sum(1 for s in self._subscriptions if s.table == table)

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            try:
                self._subscriptions.remove(sub)
            except ValueError:
                pass
