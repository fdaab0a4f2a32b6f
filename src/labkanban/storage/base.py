"""Transactional persistence interface shared by the storage backends.

A transaction works on a private copy of the board. Reads are recorded
so that, at commit, the backend can tell whether a concurrent writer
touched anything this transaction based its decisions on. Writes are
buffered and only reach the backend when the transaction body exits
cleanly.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Iterator

from labkanban.errors import ValidationError
from labkanban.model.ids import id_sort_key
from labkanban.model.items import Container, OrderedItem, Patch
from labkanban.model.position import is_strictly_increasing

logger = logging.getLogger(__name__)


@dataclass
class BoardState:
    """Every lab and item on a board, keyed by id."""

    labs: dict[str, Container] = field(default_factory=dict)
    items: dict[str, OrderedItem] = field(default_factory=dict)

    def copy(self) -> BoardState:
        return BoardState(labs=dict(self.labs), items=dict(self.items))

    def container(self, container_id: str) -> Container | None:
        lab = self.labs.get(container_id)
        if lab is not None:
            return lab
        item = self.items.get(container_id)
        return item.as_container() if item is not None else None

    def children(self, container_id: str, include_archived: bool = False) -> list[OrderedItem]:
        """Active children of a container in position order."""
        found = [
            item
            for item in self.items.values()
            if item.container_id == container_id and (include_archived or not item.archived)
        ]
        return sorted(found, key=lambda item: (item.position, id_sort_key(item.id)))

    def signature(self, key: str) -> Any:
        """Comparable fingerprint of one read key ("node:<id>" or "children:<id>")."""
        kind, _, ident = key.partition(":")
        if kind == "node":
            container = self.container(ident)
            if container is None:
                return None
            return container.kind, container.owner_id, container.archived
        if kind == "children":
            return tuple((item.id, item.position) for item in self.children(ident))
        raise ValueError(f"unknown read key {key!r}")


class Transaction:
    """One atomic unit of reads and writes against a BoardState copy."""

    def __init__(self, state: BoardState, message: str = "Update board") -> None:
        self.state = state
        self.message = message
        self.reads: dict[str, Any] = {}
        self.dirty: set[str] = set()
        self.removed: set[str] = set()
        self.added: set[str] = set()
        self._written: dict[str, list[str]] = {}

    def _record(self, key: str) -> None:
        if key not in self.reads:
            self.reads[key] = self.state.signature(key)

    # --- reads ---

    def get_item(self, item_id: str) -> OrderedItem | None:
        self._record(f"node:{item_id}")
        return self.state.items.get(item_id)

    def get_container(self, container_id: str) -> Container | None:
        self._record(f"node:{container_id}")
        return self.state.container(container_id)

    def read_container_children(self, container_id: str, include_archived: bool = False) -> list[OrderedItem]:
        self._record(f"node:{container_id}")
        self._record(f"children:{container_id}")
        return self.state.children(container_id, include_archived=include_archived)

    def item_ids(self) -> list[str]:
        return list(self.state.labs) + list(self.state.items)

    # --- writes ---

    def write_positions(self, container_id: str, positions: Patch) -> None:
        """Place each listed item in container_id at the given position.

        The list is the container's complete active membership once the
        transaction's writes are done; an empty list records an empty
        container.
        """
        if not is_strictly_increasing(positions):
            raise ValidationError(f"Positions written for '{container_id}' are not in list order: {positions}")
        for item_id, position in positions:
            item = self.state.items.get(item_id)
            if item is None:
                raise ValidationError(f"Cannot position unknown item '{item_id}'")
            if item.container_id != container_id or item.position != position:
                self.state.items[item_id] = replace(item, container_id=container_id, position=position)
                self.dirty.add(item_id)
        self._written[container_id] = [item_id for item_id, _ in positions]

    def add_item(self, item: OrderedItem) -> None:
        if item.id in self.state.items or item.id in self.state.labs:
            raise ValidationError(f"Item '{item.id}' already exists")
        self.state.items[item.id] = item
        self.dirty.add(item.id)
        self.added.add(item.id)

    def add_lab(self, lab: Container) -> None:
        if lab.id in self.state.items or lab.id in self.state.labs:
            raise ValidationError(f"Lab '{lab.id}' already exists")
        self.state.labs[lab.id] = lab
        self.dirty.add(lab.id)
        self.added.add(lab.id)

    def set_archived(self, item_id: str, archived: bool = True) -> None:
        item = self.state.items[item_id]
        if item.archived != archived:
            self.state.items[item_id] = replace(item, archived=archived)
            self.dirty.add(item_id)

    def remove_item(self, item_id: str) -> None:
        self.state.items.pop(item_id)
        self.dirty.add(item_id)
        self.removed.add(item_id)

    # --- commit support ---

    def verify(self) -> None:
        """Check every written container ended up with exactly the ids written."""
        for container_id, ids in self._written.items():
            actual = [item.id for item in self.state.children(container_id)]
            if sorted(actual) != sorted(ids):
                raise ValidationError(
                    f"Positions written for '{container_id}' do not cover its children: {ids} vs {actual}"
                )

    def conflicts(self, current: BoardState) -> list[str]:
        """Ids whose state changed in current since this transaction read them."""
        changed = {key.partition(":")[2] for key, seen in self.reads.items() if current.signature(key) != seen}
        changed.update(
            ident for ident in self.added if ident in current.items or ident in current.labs
        )
        return sorted(changed)

    def apply_to(self, current: BoardState) -> None:
        """Copy this transaction's writes onto another board state."""
        for ident in self.dirty:
            if ident in self.removed:
                current.items.pop(ident, None)
            elif ident in self.state.labs:
                current.labs[ident] = self.state.labs[ident]
            else:
                current.items[ident] = self.state.items[ident]


class Repository:
    """Base class for storage backends.

    Subclasses implement _begin(), returning an opaque base token plus a
    private BoardState copy, and _commit(), which must apply the
    transaction atomically or raise PersistenceConflict.
    """

    @contextmanager
    def transaction(self, message: str = "Update board") -> Iterator[Transaction]:
        base, state = self._begin()
        txn = Transaction(state, message=message)
        yield txn
        if txn.dirty:
            txn.verify()
            self._commit(base, txn)
            logger.debug("committed %d change(s): %s", len(txn.dirty), txn.message)

    def snapshot(self) -> BoardState:
        """Latest committed state, for read-only use."""
        return self._begin()[1]

    def _begin(self) -> tuple[Any, BoardState]:
        raise NotImplementedError

    def _commit(self, base: Any, txn: Transaction) -> None:
        raise NotImplementedError
