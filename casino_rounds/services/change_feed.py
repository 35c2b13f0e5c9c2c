"""
In-process change feed over table rows.

Rows touched in a flush are serialised right away, held on the session until
the transaction commits, then queued for delivery. A rollback discards them,
so subscribers only ever see committed changes, in commit order.

Delivery happens in dispatch(), which the procedure runner and the tick
runner call after each commit. Nested dispatch() calls from inside a
subscriber return immediately; the outer loop delivers whatever they queued.
"""

import logging
import threading
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Optional

from flask import current_app, has_app_context
from sqlalchemy import event

from casino_rounds.schemas import serialize_row

logger = logging.getLogger(__name__)

INSERT = 'insert'
UPDATE = 'update'
DELETE = 'delete'
EVENT_TYPES = (INSERT, UPDATE, DELETE)

_PENDING_KEY = 'change_feed_pending'
_hooks_lock = threading.Lock()
_hooked_targets = set()


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: str
    row: dict
    old: Optional[dict] = None


class Subscription:
    def __init__(self, feed, table: str, callback: Callable, filter: Optional[dict] = None):
        self.feed = feed
        self.table = table
        self.callback = callback
        self.filter = dict(filter) if filter else None
        self.active = True

    def matches(self, change: ChangeEvent) -> bool:
        if not self.filter:
            return True
        row = change.row or change.old or {}
        return all(row.get(key) == value for key, value in self.filter.items())

    def unsubscribe(self):
        if self.active:
            self.active = False
            self.feed._remove(self)


def _active_feed():
    if not has_app_context():
        return None
    return current_app.extensions.get('change_feed')


def _after_flush(session, flush_context):
    feed = _active_feed()
    if feed is None:
        return
    pending = session.info.setdefault(_PENDING_KEY, [])
    for obj in session.new:
        feed._record(pending, INSERT, obj)
    for obj in session.dirty:
        if session.is_modified(obj, include_collections=False):
            feed._record(pending, UPDATE, obj)
    for obj in session.deleted:
        feed._record(pending, DELETE, obj)

def _after_commit(session):
    pending = session.info.pop(_PENDING_KEY, None)
    feed = _active_feed()
    if pending and feed is not None:
        feed._enqueue(pending)

def _after_rollback(session):
    session.info.pop(_PENDING_KEY, None)


def install_session_hooks(session_target):
    """Registers the flush/commit/rollback listeners once per session target."""
    with _hooks_lock:
        key = id(session_target)
        if key in _hooked_targets:
            return
        event.listen(session_target, 'after_flush', _after_flush)
        event.listen(session_target, 'after_commit', _after_commit)
        event.listen(session_target, 'after_rollback', _after_rollback)
        _hooked_targets.add(key)


class ChangeFeed:
    """Publish/subscribe over table names."""

    def __init__(self, app=None, db=None):
        self._subscribers = defaultdict(list)
        self._queue = deque()
        self._subscribers_lock = threading.Lock()
        self._dispatch_lock = threading.RLock()
        self._dispatching = threading.local()
        if app is not None and db is not None:
            self.init_app(app, db)

    def init_app(self, app, db):
        app.extensions['change_feed'] = self
        install_session_hooks(db.session)

    # --- recording ---

    def _record(self, pending, event_type, obj):
        table = getattr(obj, '__tablename__', None)
        if table is None:
            return
        row = serialize_row(obj)
        if row is None:
            return
        pending.append(ChangeEvent(
            table=table,
            event_type=event_type,
            row=row if event_type != DELETE else {},
            old=row if event_type == DELETE else None,
        ))

    def _enqueue(self, changes):
        with self._subscribers_lock:
            self._queue.extend(changes)

    def publish(self, change: ChangeEvent):
        """Queues a change produced outside a database transaction."""
        if change.event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown change event type '{change.event_type}'")
        self._enqueue([change])

    # --- subscription ---

    def subscribe(self, table: str, callback: Callable, filter: Optional[dict] = None) -> Subscription:
        subscription = Subscription(self, table, callback, filter)
        with self._subscribers_lock:
            self._subscribers[table].append(subscription)
        logger.debug(f"Subscribed to '{table}' changes (filter={filter})")
        return subscription

    def _remove(self, subscription):
        with self._subscribers_lock:
            subscribers = self._subscribers.get(subscription.table, [])
            if subscription in subscribers:
                subscribers.remove(subscription)

    def subscriber_count(self, table: Optional[str] = None) -> int:
        with self._subscribers_lock:
            if table is not None:
                return len(self._subscribers.get(table, []))
            return sum(len(subs) for subs in self._subscribers.values())

    # --- delivery ---

    def dispatch(self) -> int:
        """Delivers queued changes in order. Returns the number delivered."""
        if getattr(self._dispatching, 'active', False):
            return 0
        delivered = 0
        with self._dispatch_lock:
            self._dispatching.active = True
            try:
                while True:
                    with self._subscribers_lock:
                        if not self._queue:
                            break
                        change = self._queue.popleft()
                        subscribers = list(self._subscribers.get(change.table, []))
                    for subscription in subscribers:
                        if not subscription.active or not subscription.matches(change):
                            continue
                        try:
                            subscription.callback(change)
                        except Exception as e:
                            logger.error(
                                f"Change feed subscriber failed on {change.table} {change.event_type}: {e}",
                                exc_info=True
                            )
                    delivered += 1
            finally:
                self._dispatching.active = False
        return delivered

    def pending_count(self) -> int:
        with self._subscribers_lock:
            return len(self._queue)
