from __future__ import annotations

import dataclasses
import logging
import threading
from typing import Callable, Iterable, Iterator, List, Optional, Set, Tuple, Union

from .derivation import sort_notifications
from .models import NotificationItem, NotificationType

logger = logging.getLogger(__name__)

Predicate = Callable[[NotificationItem], bool]
Listener = Callable[[int], None]

NAMED_FILTERS = ("all", "unread", "read") + tuple(t.value for t in NotificationType)


def make_filter(spec: Union[None, str, Predicate]) -> Optional[Predicate]:
    """Resolve a filter name (or pass through a predicate).

    Names: ``all``, ``unread``, ``read`` or a notification type such as
    ``overdue``. ``None`` and ``all`` mean no filtering.
    """
    if spec is None or callable(spec):
        return spec
    name = str(spec).strip().lower()
    if name == "all":
        return None
    if name == "unread":
        return lambda n: not n.read
    if name == "read":
        return lambda n: n.read
    for kind in NotificationType:
        if kind.value == name:
            return lambda n, kind=kind: n.type == kind
    raise ValueError(f"Unknown notification filter '{spec}' (expected one of {', '.join(NAMED_FILTERS)})")


class NotificationStateStore:
    """Read/dismiss state for derived notifications.

    The current feed is held as an immutable, already sorted tuple. Every
    mutation builds a new tuple and swaps it in under the lock, so readers
    iterating a previous tuple never see a half-reconciled feed.

    Dismissed ids stay hidden for as long as passes keep producing them;
    once a pass no longer yields an id, its dismissal is forgotten.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)
        self._items: Tuple[NotificationItem, ...] = ()
        self._dismissed: Set[str] = set()
        self._unavailable: Optional[NotificationItem] = None
        self._version = 0
        self._listeners: List[Listener] = []

    @property
    def version(self) -> int:
        return self._version

    @property
    def available(self) -> bool:
        return self._unavailable is None

    def _publish(self) -> int:
        # Caller holds the lock.
        self._version += 1
        self._changed.notify_all()
        return self._version

    def _notify(self, version: int) -> None:
        for listener in list(self._listeners):
            try:
                listener(version)
            except Exception as e:
                logger.error(f"Notification listener failed: {e}")

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a callback run after every change; returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(listener)

        def _remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _remove

    def snapshot(self) -> Tuple[NotificationItem, ...]:
        unavailable = self._unavailable
        if unavailable is not None:
            return (unavailable,)
        return self._items

    def get(self, notification_id: str) -> Optional[NotificationItem]:
        for item in self.snapshot():
            if item.id == notification_id:
                return item
        return None

    def reconcile(self, candidates: Iterable[NotificationItem]) -> List[NotificationItem]:
        """Merge a fresh derivation pass into the store.

        New ids are inserted unread, known ids keep their read flag and take
        every other field from the candidate, ids missing from the pass are
        dropped. Returns the items that appeared for the first time.
        """
        ordered = sort_notifications(candidates)
        candidate_ids = {c.id for c in ordered}
        inserted: List[NotificationItem] = []

        with self._lock:
            previous = {n.id: n for n in self._items}
            dismissed = self._dismissed & candidate_ids
            merged: List[NotificationItem] = []
            for candidate in ordered:
                if candidate.id in dismissed:
                    continue
                old = previous.get(candidate.id)
                if old is None:
                    item = dataclasses.replace(candidate, read=False)
                    inserted.append(item)
                else:
                    item = dataclasses.replace(candidate, read=old.read)
                merged.append(item)

            dropped = len(set(previous) - candidate_ids)
            self._items = tuple(merged)
            self._dismissed = dismissed
            self._unavailable = None
            version = self._publish()

        logger.debug(
            f"Reconciled {len(merged)} notifications ({len(inserted)} new, {dropped} resolved, "
            f"{len(dismissed)} dismissed)"
        )
        self._notify(version)
        return inserted

    def set_unavailable(self, item: NotificationItem) -> None:
        """Replace the visible feed with a single placeholder until the next reconcile.

        Stored read state is kept so a later successful pass restores it.
        """
        with self._lock:
            self._unavailable = item
            version = self._publish()
        self._notify(version)

    def _update(self, notification_id: str, **changes) -> bool:
        with self._lock:
            found = False
            updated = []
            for item in self._items:
                if item.id == notification_id:
                    found = True
                    item = dataclasses.replace(item, **changes)
                updated.append(item)
            if not found:
                logger.debug(f"Notification {notification_id} not found")
                return False
            self._items = tuple(updated)
            version = self._publish()
        self._notify(version)
        return True

    def mark_read(self, notification_id: str) -> bool:
        return self._update(notification_id, read=True)

    def mark_unread(self, notification_id: str) -> bool:
        return self._update(notification_id, read=False)

    def mark_all_read(self) -> int:
        """Mark every stored notification read; returns how many changed."""
        with self._lock:
            changed = sum(1 for n in self._items if not n.read)
            self._items = tuple(dataclasses.replace(n, read=True) for n in self._items)
            version = self._publish()
        self._notify(version)
        return changed

    def dismiss(self, notification_id: str) -> bool:
        with self._lock:
            remaining = tuple(n for n in self._items if n.id != notification_id)
            if len(remaining) == len(self._items):
                logger.debug(f"Notification {notification_id} not found")
                return False
            self._items = remaining
            self._dismissed.add(notification_id)
            version = self._publish()
        self._notify(version)
        return True

    def filter(self, predicate: Optional[Predicate] = None) -> Iterator[NotificationItem]:
        """Lazily yield notifications in feed order, optionally filtered."""
        for item in self.snapshot():
            if predicate is None or predicate(item):
                yield item

    def unread_count(self) -> int:
        """Unread stored notifications; the unavailable placeholder is not counted."""
        return sum(1 for n in self._items if not n.read)

    def wait_for_change(self, since_version: int, timeout: Optional[float] = None) -> bool:
        """Block until the store moves past `since_version`; False on timeout."""
        with self._changed:
            return self._changed.wait_for(lambda: self._version > since_version, timeout)


class NotificationFeed:
    """A restartable view over the store.

    Each iteration reads the store as it is at that moment, so iterating
    again after a refresh shows the reconciled feed.
    """

    def __init__(self, store: NotificationStateStore, spec: Union[None, str, Predicate] = None):
        self._store = store
        self._predicate = make_filter(spec)
        self._seen_version = store.version

    def __iter__(self) -> Iterator[NotificationItem]:
        self._seen_version = self._store.version
        return self._store.filter(self._predicate)

    @property
    def version(self) -> int:
        return self._store.version

    def wait_for_update(self, timeout: Optional[float] = None) -> bool:
        """Block until the store changed since this feed was last iterated."""
        return self._store.wait_for_change(self._seen_version, timeout)
