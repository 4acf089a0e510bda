"""
Rank assignment for manual ordering.

Ranks are integers. The active list sorts by rank ascending, so a new item
gets max(rank) + 1 and lands last. Reordering a subset shuffles the ranks the
subset already holds ("slots") and leaves every other record alone.
"""
from typing import Dict, Iterable, List, Sequence, Tuple

from .schema import Record


def active_order_key(record: Record) -> Tuple[int, float, str]:
    """Rank ascending, then newest first, then id for a stable total order."""
    return (record.rank, -record.created_at.timestamp(), record.record_id)


class RankAssigner:
    """Computes rank values; never touches records itself."""

    FIRST_RANK = 1

    def next_rank(self, records: Iterable[Record]) -> int:
        """Rank for a new record: one past the highest live rank."""
        ranks = [r.rank for r in records]
        if not ranks:
            return self.FIRST_RANK
        return max(ranks) + 1

    def reassign(self, subset: Iterable[Record], ordered_ids: Sequence[str]) -> Dict[str, int]:
        """
        Map each id in ordered_ids to a new rank.

        The subset's existing ranks are sorted and dealt out in the submitted
        order, so the subset keeps the positions it occupied. Duplicate slots
        (only possible in hand-edited data) are bumped to keep the sequence
        strictly increasing.
        """
        slots = sorted(r.rank for r in subset)
        if len(slots) != len(ordered_ids):
            raise ValueError("subset and ordered_ids differ in size")

        strict: List[int] = []
        for slot in slots:
            if strict and slot <= strict[-1]:
                slot = strict[-1] + 1
            strict.append(slot)

        return dict(zip(ordered_ids, strict))

    @staticmethod
    def move(ordered_ids: Sequence[str], record_id: str, to_index: int) -> List[str]:
        """Return ordered_ids with record_id moved to to_index (clamped)."""
        ids = [i for i in ordered_ids if i != record_id]
        to_index = max(0, min(to_index, len(ids)))
        ids.insert(to_index, record_id)
        return ids

    def renormalized(self, ordered_ids: Sequence[str]) -> Dict[str, int]:
        """Contiguous ranks for the given order."""
        return {rid: i for i, rid in enumerate(ordered_ids, start=self.FIRST_RANK)}
