"""
Live projections over a TaskStore.

A view never patches itself incrementally: on every store change it filters
and sorts the full collection again, and tells its own listeners only when
the resulting sequence actually differs.
"""
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Iterator, List, Optional, Tuple

from .ranks import active_order_key
from .schema import Record
from .store import StoreChange, TaskStore

logger = logging.getLogger(__name__)

ViewListener = Callable[[List[Record]], None]

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def completed_order_key(record: Record) -> Tuple[float, float, str]:
    """Most recently completed first; missing stamps sort last."""
    completed = record.completed_at or _OLDEST
    return (-completed.timestamp(), -record.created_at.timestamp(), record.record_id)


class QueryView:
    """Filtered, sorted, self-refreshing sequence of records."""

    def __init__(
        self,
        store: TaskStore,
        predicate: Callable[[Record], bool],
        sort_key: Callable[[Record], tuple],
        name: str = "view",
    ):
        self.store = store
        self.name = name
        self._predicate = predicate
        self._sort_key = sort_key
        self._listeners: List[ViewListener] = []
        self._items: List[Record] = []
        self._unsubscribe: Optional[Callable[[], None]] = store.subscribe_with_snapshot(
            self._on_store_change, self._seed,
        )

    def _seed(self, records: List[Record]) -> None:
        self._items = self._derive(records)

    def _derive(self, records: Optional[List[Record]] = None) -> List[Record]:
        if records is None:
            records = self.store.records()
        items = [r for r in records if self._predicate(r)]
        items.sort(key=self._sort_key)
        return items

    def _on_store_change(self, change: StoreChange) -> None:
        items = self._derive()
        if items == self._items:
            return
        self._items = items
        logger.debug("%s view refreshed after %s (%d items)", self.name, change.kind, len(items))
        for listener in list(self._listeners):
            try:
                listener([replace(r) for r in items])
            except Exception:
                logger.exception("%s view listener failed", self.name)

    def current_items(self) -> List[Record]:
        return [replace(r) for r in self._items]

    def on_change(self, listener: ViewListener) -> Callable[[], None]:
        """Call listener(items) whenever content or order changes."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return remove

    def close(self) -> None:
        """Stop following the store."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Record]:
        return iter(self.current_items())


def active_view(store: TaskStore) -> QueryView:
    return QueryView(store, lambda r: not r.is_completed, active_order_key, name="active")


def completed_view(store: TaskStore) -> QueryView:
    return QueryView(store, lambda r: r.is_completed, completed_order_key, name="completed")


def all_view(store: TaskStore) -> QueryView:
    return QueryView(store, lambda r: True, active_order_key, name="all")
