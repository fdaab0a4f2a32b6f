"""Client-side optimistic cache of board ordering.

The store keeps a reactive tree of the containers and items a view has
loaded:

    board.containers[<id>]  kind, archived, owner, title, children (ordered ids)
    board.items[<id>]       kind, container, position, title

A move is applied to the tree immediately, then committed through the
CommitService. The store also keeps the last server-confirmed order of
each cached container. When a move commits its patches become confirmed;
when it fails the error is re-raised. Either way the containers it touched
are reset to their confirmed order and the moves still in flight there are
applied again, so a failed move never leaves behind an order the server
did not commit. Moves of the same item run one after another in the order
they were requested; moves of different items run concurrently. A bulk
reorder waits for every pending move inside its container.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Iterable, Sequence

from labkanban.errors import ContainerNotFound, ItemNotFound, LabKanbanError, ValidationError
from labkanban.model.items import (
    BucketMove,
    Container,
    MoveIntent,
    MoveOutcome,
    OrderedItem,
    Patch,
    Patches,
    ProjectMove,
    TaskMove,
    intent_for,
)
from labkanban.model.node import ListNode, Node
from labkanban.model.position import check_membership, dense_positions, ordered_ids
from labkanban.model.reorder import compute_reorder
from labkanban.service import CommitService

logger = logging.getLogger(__name__)


class MoveState(str, Enum):
    IDLE = "idle"
    APPLYING = "applying"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


_TRANSITIONS = {
    MoveState.IDLE: {MoveState.APPLYING},
    MoveState.APPLYING: {MoveState.COMMITTED, MoveState.ROLLED_BACK},
    MoveState.COMMITTED: set(),
    MoveState.ROLLED_BACK: set(),
}


@dataclass
class Snapshot:
    """Ordering of some containers and the placement of the items inside them."""

    children: dict[str, tuple[str, ...]] = field(default_factory=dict)
    placements: dict[str, tuple[str, int]] = field(default_factory=dict)


@dataclass
class PendingMove:
    """One optimistic change on its way to the server.

    Either intent (a single-item move) or ordered_ids (a whole-container
    reorder of container_ids[0]) is set.
    """

    container_ids: tuple[str, ...]
    intent: MoveIntent | None = None
    ordered_ids: list[str] | None = None
    state: MoveState = MoveState.IDLE
    error: Exception | None = None

    def advance(self, state: MoveState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Cannot go from {self.state.value} to {state.value}")
        self.state = state


@dataclass(frozen=True)
class MoveApplied:
    move: PendingMove


@dataclass(frozen=True)
class MoveCommitted:
    move: PendingMove
    patches: Patches


@dataclass(frozen=True)
class MoveRolledBack:
    move: PendingMove
    error: Exception


Event = MoveApplied | MoveCommitted | MoveRolledBack


class OptimisticStore:
    """Reactive board cache that applies moves before the server confirms them."""

    def __init__(self, service: CommitService) -> None:
        self.service = service
        self.board = Node(containers=ListNode(), items=ListNode())
        self.pending: list[PendingMove] = []
        # Last server-confirmed ordering of each cached container
        self._confirmed = Snapshot()
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._subscribers: list[Callable[[Event], Any]] = []

    # --- cache ---

    def hydrate(self, containers: Iterable[Container], items: Iterable[OrderedItem]) -> None:
        """Replace the cached state of the given containers and items.

        What is hydrated counts as confirmed; moves still in flight are
        applied again on top of it.
        """
        containers = list(containers)
        items = list(items)
        with self.board.hold():
            for item in items:
                self._put(
                    self.board.items,
                    item.id,
                    kind=item.kind,
                    container=item.container_id,
                    position=item.position,
                    title=item.title,
                )
                self._confirmed.placements[item.id] = (item.container_id, item.position)
            for container in containers:
                members = [item for item in items if item.container_id == container.id and not item.archived]
                self._put(
                    self.board.containers,
                    container.id,
                    kind=container.kind,
                    archived=container.archived,
                    owner=container.owner_id,
                    title=container.title,
                    children=tuple(ordered_ids(members)),
                )
                self._confirmed.children[container.id] = tuple(ordered_ids(members))
            self._rebuild(container.id for container in containers)

    @staticmethod
    def _put(nodes: ListNode, key: str, **fields: Any) -> None:
        # Update in place so watchers on an existing node stay attached
        existing = nodes[key]
        if existing is None:
            nodes[key] = Node(**fields)
        else:
            existing.assign(**fields)

    async def load(self, container_ids: Iterable[str]) -> None:
        """Fetch containers and their children from the server into the cache."""
        containers, items = await self.service.load(list(container_ids))
        self.hydrate(containers, items)

    def children(self, container_id: str) -> list[str]:
        container = self.board.containers[container_id]
        if container is None:
            raise ContainerNotFound(container_id)
        return list(container.children)

    def count(self, container_id: str) -> int:
        return len(self.children(container_id))

    # --- events ---

    def subscribe(self, callback: Callable[[Event], Any]) -> Callable[[], None]:
        """Call callback with every MoveApplied/MoveCommitted/MoveRolledBack. Returns an unsubscribe callable."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, event: Event) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("store subscriber failed on %s", type(event).__name__)

    # --- moves ---

    @asynccontextmanager
    async def _holding(self, keys: Iterable[str]) -> AsyncIterator[None]:
        """Hold the lock of every key, taken in sorted order.

        A lock is dropped once nobody holds or waits for it.
        """
        keys = sorted(set(keys))
        for key in keys:
            self._lock_users[key] = self._lock_users.get(key, 0) + 1
        acquired: list[asyncio.Lock] = []
        try:
            for key in keys:
                lock = self._locks.setdefault(key, asyncio.Lock())
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in keys:
                self._lock_users[key] -= 1
                if not self._lock_users[key]:
                    del self._lock_users[key]
                    self._locks.pop(key, None)

    async def move(self, item_id: str, to_container_id: str | None, to_index: int) -> MoveOutcome:
        """Move any cached item; the intent variant follows the item's kind."""
        node = self.board.items[item_id]
        if node is None:
            raise ItemNotFound(item_id)
        return await self.apply_move(intent_for(node.kind, item_id, to_container_id, to_index))

    async def move_bucket(self, bucket_id: str, new_index: int) -> MoveOutcome:
        return await self.apply_move(BucketMove(bucket_id, None, new_index))

    async def move_project(self, project_id: str, to_bucket_id: str, new_index: int) -> MoveOutcome:
        return await self.apply_move(ProjectMove(project_id, to_bucket_id, new_index))

    async def move_task(self, task_id: str, to_container_id: str, new_index: int) -> MoveOutcome:
        return await self.apply_move(TaskMove(task_id, to_container_id, new_index))

    async def apply_move(self, intent: MoveIntent) -> MoveOutcome:
        """Optimistically apply intent, then commit it.

        Raises whatever the commit raised after rolling the cache back.
        """
        async with self._holding([intent.item_id]):
            # Resolve against the cache as it stands once earlier moves of this item have settled
            node = self.board.items[intent.item_id]
            if node is None:
                raise ItemNotFound(intent.item_id)
            if node.kind is not intent.item_kind:
                raise ValidationError(f"'{intent.item_id}' is a {node.kind.value}, not a {intent.item_kind.value}")
            intent = intent.resolve(node.container)
            containers = tuple(dict.fromkeys([intent.from_container_id, intent.to_container_id]))
            pending = PendingMove(container_ids=containers, intent=intent)
            local = self._local(pending)
            return await self._commit(pending, local, lambda: self.service.apply_move(intent))

    async def bulk_reorder(self, container_id: str, ordered: Sequence[str]) -> Patch:
        """Optimistically replace a container's order, then commit it.

        Waits for pending moves of the container's members, and of items
        moving in or out of it, before anything is sent.
        """
        ordered = list(ordered)
        keys = {container_id, *self.children(container_id), *ordered}
        keys.update(
            move.intent.item_id
            for move in self.pending
            if move.intent is not None and container_id in move.container_ids
        )
        async with self._holding(keys):
            pending = PendingMove(container_ids=(container_id,), ordered_ids=ordered)
            local = self._local(pending)
            await self._commit(pending, local, lambda: self.service.bulk_reorder(container_id, ordered))
            return local[container_id]

    def _local(self, pending: PendingMove) -> Patches:
        """Patches that carry out pending against the cache as it stands."""
        if pending.intent is not None:
            return compute_reorder({cid: self.children(cid) for cid in pending.container_ids}, pending.intent)
        container_id = pending.container_ids[0]
        check_membership(container_id, self.children(container_id), pending.ordered_ids)
        return {container_id: dense_positions(pending.ordered_ids)}

    async def _commit(self, pending: PendingMove, local: Patches, send: Callable[[], Any]) -> Any:
        pending.advance(MoveState.APPLYING)
        self.pending.append(pending)
        self._apply(local)
        self._publish(MoveApplied(pending))
        try:
            result = await send()
        except Exception as exc:
            pending.error = exc
            pending.advance(MoveState.ROLLED_BACK)
            self.pending.remove(pending)
            self._rebuild(pending.container_ids)
            logger.info("rolled back %s: %s", pending.intent or pending.container_ids, exc)
            self._publish(MoveRolledBack(pending, exc))
            raise

        patches = result.patches if isinstance(result, MoveOutcome) else {pending.container_ids[0]: result}
        self._confirm(patches)
        pending.advance(MoveState.COMMITTED)
        self.pending.remove(pending)
        self._rebuild([*pending.container_ids, *patches])
        self._publish(MoveCommitted(pending, patches))
        return result

    # --- tree updates ---

    def _confirm(self, patches: Patches) -> None:
        """Record committed patches in the confirmed ordering of cached containers."""
        for container_id, patch in patches.items():
            for item_id, position in patch:
                self._confirmed.placements[item_id] = (container_id, position)
            if self.board.containers[container_id] is not None:
                self._confirmed.children[container_id] = tuple(
                    item_id for item_id, _ in sorted(patch, key=lambda entry: entry[1])
                )

    def _rebuild(self, container_ids: Iterable[str]) -> None:
        """Reset containers to their confirmed order, then re-apply the moves still in flight.

        Any pending move sharing a container with the reset set joins it, so
        a rollback never keeps the effect of a move that was itself rolled
        back.
        """
        touched = set(container_ids)
        replay: list[PendingMove] = []
        grew = True
        while grew:
            grew = False
            for move in self.pending:
                if move not in replay and touched.intersection(move.container_ids):
                    replay.append(move)
                    touched.update(move.container_ids)
                    grew = True
        replay.sort(key=self.pending.index)

        with self.board.hold():
            self._restore(touched)
            for move in replay:
                try:
                    self._apply(self._local(move))
                except LabKanbanError as exc:
                    # Left at confirmed order until the server settles it
                    logger.debug("not replaying %s: %s", move.intent or move.container_ids, exc)

    def _restore(self, container_ids: Iterable[str]) -> None:
        with self.board.hold():
            for container_id in container_ids:
                children = self._confirmed.children.get(container_id)
                container = self.board.containers[container_id]
                if children is None or container is None:
                    continue
                for item_id in children:
                    node = self.board.items[item_id]
                    placement = self._confirmed.placements.get(item_id)
                    if node is not None and placement is not None:
                        node.assign(container=placement[0], position=placement[1])
                container.children = children

    def _apply(self, patches: Patches) -> None:
        """Write patches into the tree. Items or containers not cached are skipped."""
        with self.board.hold():
            for container_id, patch in patches.items():
                for item_id, position in patch:
                    node = self.board.items[item_id]
                    if node is not None:
                        node.assign(container=container_id, position=position)
                container = self.board.containers[container_id]
                if container is not None:
                    container.children = tuple(item_id for item_id, _ in sorted(patch, key=lambda entry: entry[1]))
