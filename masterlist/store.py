"""
Task store: sole owner of the record collection.

Every mutation is built on a copy, committed through the backend in one
transaction, and only then swapped into memory and announced to subscribers.
A failed commit leaves memory, disk and every view untouched.
"""
import logging
import threading
import uuid
from datetime import datetime
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .backend import Backend, Change
from .ranks import RankAssigner, active_order_key
from .schema import (
    Category,
    Record,
    NotFoundError,
    ValidationError,
    utc_now,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreChange:
    """Payload handed to store subscribers after a committed mutation."""
    kind: str
    record_ids: Tuple[str, ...] = ()

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    REORDERED = "reordered"


Listener = Callable[[StoreChange], None]
Mutator = Callable[[Record], None]


def _clean_title(title) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("title must not be empty")
    return title.strip()


def _coerce_category(category) -> Category:
    try:
        return Category.parse(category)
    except ValueError as e:
        raise ValidationError(str(e)) from e


class TaskStore:
    """
    Transactional record store with change notification.

    Example:
        >>> store = TaskStore(SqliteBackend("/tmp/masterlist.db"))
        >>> item = store.create("Buy milk", Category.PERSONAL)
        >>> store.toggle_completion(item.record_id)
    """

    def __init__(
        self,
        backend: Backend,
        clock: Optional[Callable[[], datetime]] = None,
        ranks: Optional[RankAssigner] = None,
    ):
        self.backend = backend
        self._clock = clock or utc_now
        self._ranks = ranks or RankAssigner()
        self._lock = threading.RLock()
        self._items: Dict[str, Record] = {}
        self._listeners: List[Listener] = []

        for record in backend.load_all():
            if not record.is_completed and record.completed_at is not None:
                # Stale stamp from an item that was never completed
                record.completed_at = None
            self._items[record.record_id] = record
        logger.info("TaskStore ready backend=%s total=%d", type(backend).__name__, len(self._items))

    def close(self) -> None:
        self.backend.close()

    # ──────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────

    def get(self, record_id: str) -> Record:
        with self._lock:
            return replace(self._require(record_id))

    def records(self) -> List[Record]:
        """Copies of every record, in no particular order."""
        with self._lock:
            return [replace(r) for r in self._items.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, record_id) -> bool:
        with self._lock:
            return record_id in self._items

    # ──────────────────────────────────────────
    # Subscriptions
    # ──────────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def subscribe_with_snapshot(
        self,
        listener: Listener,
        seed: Callable[[List[Record]], None],
    ) -> Callable[[], None]:
        """
        Hand seed() a copy of every record, then register listener.

        Both happen under the store lock, so no change can land between the
        snapshot and the first notification.
        """
        with self._lock:
            seed(self.records())
            return self.subscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        """Remove a listener. Unknown or already removed listeners are ignored."""
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _notify(self, change: StoreChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Store listener failed on %s", change.kind)

    # ──────────────────────────────────────────
    # Mutations
    # ──────────────────────────────────────────

    def create(self, title: str, category=Category.PERSONAL) -> Record:
        """Create an active record ranked after every existing record."""
        title = _clean_title(title)
        category = _coerce_category(category)
        with self._lock:
            record = Record(
                record_id=uuid.uuid4().hex,
                title=title,
                is_completed=False,
                category=category,
                created_at=self._clock(),
                completed_at=None,
                rank=self._ranks.next_rank(self._items.values()),
            )
            self.backend.apply_transaction([Change.upsert(record)])
            self._items[record.record_id] = record
            logger.debug("Created %s rank=%d category=%s", record.record_id, record.rank, category.value)
            self._notify(StoreChange(StoreChange.CREATED, (record.record_id,)))
            return replace(record)

    def update(self, record_id: str, mutator: Mutator) -> Record:
        """
        Apply mutator to a copy of the record, validate, persist, swap in.

        completed_at is owned by the store: it is stamped when is_completed
        flips to True and cleared when it flips back.
        """
        with self._lock:
            current = self._require(record_id)
            draft = replace(current)
            mutator(draft)
            draft = self._validated(current, draft)
            self.backend.apply_transaction([Change.upsert(draft)])
            self._items[record_id] = draft
            logger.debug("Updated %s completed=%s", record_id, draft.is_completed)
            self._notify(StoreChange(StoreChange.UPDATED, (record_id,)))
            return replace(draft)

    def toggle_completion(self, record_id: str) -> Record:
        def flip(record: Record) -> None:
            record.is_completed = not record.is_completed
        return self.update(record_id, flip)

    def rename(self, record_id: str, title: str) -> Record:
        def set_title(record: Record) -> None:
            record.title = title
        return self.update(record_id, set_title)

    def set_category(self, record_id: str, category) -> Record:
        def set_cat(record: Record) -> None:
            record.category = category
        return self.update(record_id, set_cat)

    def delete(self, record_id: str) -> None:
        self.delete_many([record_id])

    def delete_many(self, record_ids: Iterable[str]) -> None:
        """Delete several records in one transaction; all ids must exist."""
        ids = list(dict.fromkeys(record_ids))
        if not ids:
            return
        with self._lock:
            for rid in ids:
                self._require(rid)
            self.backend.apply_transaction([Change.delete(rid) for rid in ids])
            for rid in ids:
                del self._items[rid]
            logger.debug("Deleted %s", ", ".join(ids))
            self._notify(StoreChange(StoreChange.DELETED, tuple(ids)))

    def reorder(self, ordered_ids: Iterable[str]) -> List[Record]:
        """
        Give a subset of active records the relative order in ordered_ids.

        Only the subset's ranks change. Returns the active records in their
        new display order.
        """
        ordered_ids = list(ordered_ids)
        with self._lock:
            if not ordered_ids:
                return [replace(r) for r in self._active_sorted()]
            if len(set(ordered_ids)) != len(ordered_ids):
                raise ValidationError("reorder ids must be unique")
            for rid in ordered_ids:
                record = self._items.get(rid)
                if record is None:
                    raise ValidationError(f"reorder: unknown id {rid}")
                if record.is_completed:
                    raise ValidationError(f"reorder: {rid} is not active")

            subset = [self._items[rid] for rid in ordered_ids]
            new_ranks = self._ranks.reassign(subset, ordered_ids)
            self._apply_ranks(new_ranks)
            return [replace(r) for r in self._active_sorted()]

    def move(self, record_id: str, to_index: int) -> List[Record]:
        """Move one active record to a position in the active order."""
        with self._lock:
            record = self._require(record_id)
            if record.is_completed:
                raise ValidationError(f"move: {record_id} is not active")
            current = [r.record_id for r in self._active_sorted()]
            return self.reorder(self._ranks.move(current, record_id, int(to_index)))

    def renormalize_ranks(self) -> None:
        """Rewrite ranks as 1..n without changing any visible order."""
        with self._lock:
            actives = self._active_sorted()
            rest = sorted(
                (r for r in self._items.values() if r.is_completed),
                key=active_order_key,
            )
            order = [r.record_id for r in actives + rest]
            self._apply_ranks(self._ranks.renormalized(order))

    # ──────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────

    def _require(self, record_id: str) -> Record:
        record = self._items.get(record_id)
        if record is None:
            raise NotFoundError(f"No record with id {record_id}")
        return record

    def _active_sorted(self) -> List[Record]:
        return sorted(
            (r for r in self._items.values() if not r.is_completed),
            key=active_order_key,
        )

    def _apply_ranks(self, new_ranks: Dict[str, int]) -> None:
        drafts = [
            replace(self._items[rid], rank=rank)
            for rid, rank in new_ranks.items()
            if self._items[rid].rank != rank
        ]
        if not drafts:
            return
        self.backend.apply_transaction([Change.upsert(d) for d in drafts])
        for draft in drafts:
            self._items[draft.record_id] = draft
        logger.debug("Re-ranked %d record(s)", len(drafts))
        self._notify(StoreChange(StoreChange.REORDERED, tuple(d.record_id for d in drafts)))

    def _validated(self, current: Record, draft: Record) -> Record:
        if draft.record_id != current.record_id:
            raise ValidationError("record_id is immutable")
        if draft.created_at != current.created_at:
            raise ValidationError("created_at is immutable")
        if draft.rank != current.rank:
            raise ValidationError("rank changes go through reorder()")

        draft.title = _clean_title(draft.title)
        draft.category = _coerce_category(draft.category)
        draft.is_completed = bool(draft.is_completed)

        if draft.is_completed and not current.is_completed:
            draft.completed_at = self._clock()
        elif not draft.is_completed:
            draft.completed_at = None
        else:
            draft.completed_at = current.completed_at
        return draft
