"""Dense position assignment for ordered containers.

Every mutation rewrites the touched container to positions 0..n-1, so
sorting by position always reproduces the visible order and there are no
gaps to exhaust.
"""

from collections import Counter
from typing import Iterable, Sequence

from labkanban.errors import StaleOrderError
from labkanban.model.ids import id_sort_key
from labkanban.model.items import OrderedItem, Patch


def dense_positions(ids: Sequence[str]) -> Patch:
    """Assign positions 0..n-1 to ids in the given order."""
    return [(item_id, index) for index, item_id in enumerate(ids)]


def ordered_ids(items: Iterable[OrderedItem]) -> list[str]:
    """Return item ids sorted by position; ids break ties in legacy data."""
    return [item.id for item in sorted(items, key=lambda item: (item.position, id_sort_key(item.id)))]


def next_position(items: Iterable[OrderedItem]) -> int:
    """Position one past the current maximum, or 0 for an empty container."""
    positions = [item.position for item in items]
    return max(positions) + 1 if positions else 0


def is_dense(items: Iterable[OrderedItem]) -> bool:
    """True if positions are exactly 0..n-1."""
    positions = sorted(item.position for item in items)
    return positions == list(range(len(positions)))


def is_strictly_increasing(patch: Patch) -> bool:
    """True if sorting the patch by position keeps it in list order."""
    positions = [position for _, position in patch]
    return all(a < b for a, b in zip(positions, positions[1:]))


def check_membership(container_id: str, current_ids: Iterable[str], submitted_ids: Sequence[str]) -> None:
    """Raise StaleOrderError unless submitted_ids is exactly current_ids, reordered."""
    current = set(current_ids)
    counts = Counter(submitted_ids)
    duplicates = sorted(item_id for item_id, n in counts.items() if n > 1)
    missing = sorted(current - counts.keys())
    extra = sorted(counts.keys() - current)
    if duplicates or missing or extra:
        raise StaleOrderError(container_id, missing=missing, extra=extra, duplicates=duplicates)
