"""In-process storage backend."""

import threading

from labkanban.errors import PersistenceConflict
from labkanban.model.items import Container, OrderedItem
from labkanban.storage.base import BoardState, Repository, Transaction


class MemoryRepository(Repository):
    """Keeps the board in memory behind a lock.

    Commits are serialized; a commit is rejected when any container or
    item the transaction read has changed since it began.
    """

    def __init__(self, labs: list[Container] | None = None, items: list[OrderedItem] | None = None) -> None:
        self._lock = threading.Lock()
        self._state = BoardState(
            labs={lab.id: lab for lab in labs or []},
            items={item.id: item for item in items or []},
        )
        self.commits = 0

    def _begin(self) -> tuple[int, BoardState]:
        with self._lock:
            return self.commits, self._state.copy()

    def _commit(self, base: int, txn: Transaction) -> None:
        with self._lock:
            if base != self.commits:
                changed = txn.conflicts(self._state)
                if changed:
                    raise PersistenceConflict(changed)
            current = self._state.copy()
            txn.apply_to(current)
            self._state = current
            self.commits += 1
