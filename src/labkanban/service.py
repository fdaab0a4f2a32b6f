"""Commit service: validated, atomic moves and reorders.

Every operation runs its storage work in a worker thread via
asyncio.to_thread. A PersistenceConflict re-runs the whole operation
once against a fresh snapshot, validation included; a second conflict is
raised to the caller. Structural errors are never retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Sequence, TypeVar

from labkanban.config import Settings
from labkanban.errors import (
    ContainerArchived,
    ContainerNotFound,
    CyclicMoveRejected,
    ItemNotFound,
    PersistenceConflict,
    ValidationError,
)
from labkanban.model.ids import next_id
from labkanban.model.items import (
    ActivityEvent,
    BucketMove,
    Container,
    Kind,
    MoveIntent,
    MoveOutcome,
    OrderedItem,
    Patch,
    ProjectMove,
    TaskMove,
    intent_for,
)
from labkanban.model.position import check_membership, dense_positions, next_position
from labkanban.model.reorder import compute_reorder
from labkanban.storage.base import Repository, Transaction

logger = logging.getLogger(__name__)

T = TypeVar("T")

ActivitySink = Callable[[ActivityEvent], Awaitable[None]]
Revalidator = Callable[[list[str]], None]


def _ids(items: Iterable[OrderedItem]) -> list[str]:
    return [item.id for item in items]


def _check_cycle(txn: Transaction, item_id: str, target: Container) -> None:
    """Reject placing a task inside itself or any of its subtasks."""
    seen: set[str] = set()
    current: Container | None = target
    while current is not None and current.kind is Kind.TASK and current.id not in seen:
        if current.id == item_id:
            raise CyclicMoveRejected(item_id, target.id)
        seen.add(current.id)
        current = txn.get_container(current.owner_id) if current.owner_id else None


def _check_target(txn: Transaction, intent: MoveIntent, target: Container | None) -> None:
    if target is None:
        raise ContainerNotFound(intent.to_container_id)
    if target.kind not in intent.target_kinds:
        raise ValidationError(
            f"A {intent.item_kind.value} cannot be placed in {target.kind.value} '{target.id}'"
        )
    if intent.crosses_containers and target.archived:
        raise ContainerArchived(target.id)
    if isinstance(intent, TaskMove):
        _check_cycle(txn, intent.item_id, target)


class CommitService:
    """Authoritative writer of item positions."""

    def __init__(
        self,
        repository: Repository,
        activity: ActivitySink | None = None,
        revalidator: Revalidator | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.repository = repository
        self.activity = activity
        self.revalidator = revalidator
        self.settings = settings or Settings()
        self._background: set[asyncio.Task] = set()

    async def _run(self, label: str, fn: Callable[..., T], *args) -> T:
        """Run fn in a worker thread, retrying once on PersistenceConflict."""
        try:
            return await asyncio.to_thread(fn, *args)
        except PersistenceConflict as exc:
            logger.warning("%s: %s; retrying with a fresh snapshot", label, exc)
        return await asyncio.to_thread(fn, *args)

    # --- moves ---

    async def move_item(self, item_id: str, to_container_id: str, to_index: int) -> MoveOutcome:
        """Move any item; the intent variant is chosen from the stored item's kind."""
        if isinstance(to_index, int) and not isinstance(to_index, bool) and to_index < 0:
            raise ValidationError(f"Index must not be negative, got {to_index}")
        return await self._move(
            item_id,
            lambda item: intent_for(item.kind, item_id, to_container_id, to_index),
        )

    async def apply_move(self, intent: MoveIntent) -> MoveOutcome:
        return await self._move(intent.item_id, lambda item: intent)

    async def move_bucket(self, bucket_id: str, new_index: int) -> MoveOutcome:
        """Reorder a bucket within its lab."""
        return await self.apply_move(BucketMove(bucket_id, None, new_index))

    async def move_project(self, project_id: str, to_bucket_id: str, new_index: int) -> MoveOutcome:
        return await self.apply_move(ProjectMove(project_id, to_bucket_id, new_index))

    async def move_task(self, task_id: str, to_container_id: str, new_index: int) -> MoveOutcome:
        """Move a task into a project or under another task."""
        return await self.apply_move(TaskMove(task_id, to_container_id, new_index))

    async def _move(self, item_id: str, build: Callable[[OrderedItem], MoveIntent]) -> MoveOutcome:
        outcome = await self._run(f"move {item_id}", self._move_sync, item_id, build)
        if outcome.noop:
            logger.debug("move of %s left it in place", item_id)
            return outcome
        logger.info(
            "moved %s from %s to %s at %d",
            item_id,
            outcome.from_container_id,
            outcome.to_container_id,
            outcome.item.position,
        )
        self._after_commit(
            ActivityEvent(item_id, outcome.from_container_id, outcome.to_container_id),
            outcome.patches.keys(),
        )
        return outcome

    def _move_sync(self, item_id: str, build: Callable[[OrderedItem], MoveIntent]) -> MoveOutcome:
        with self.repository.transaction() as txn:
            item = txn.get_item(item_id)
            if item is None or item.archived:
                raise ItemNotFound(item_id)
            intent = build(item)
            if item.kind is not intent.item_kind:
                raise ValidationError(f"'{item_id}' is a {item.kind.value}, not a {intent.item_kind.value}")
            if intent.from_container_id is not None and intent.from_container_id != item.container_id:
                raise ItemNotFound(item_id, intent.from_container_id)
            intent = intent.resolve(item.container_id)

            _check_target(txn, intent, txn.get_container(intent.to_container_id))

            snapshot = {intent.from_container_id: _ids(txn.read_container_children(intent.from_container_id))}
            if intent.crosses_containers:
                snapshot[intent.to_container_id] = _ids(txn.read_container_children(intent.to_container_id))
            patches = compute_reorder(snapshot, intent)
            for container_id, patch in patches.items():
                txn.write_positions(container_id, patch)
            txn.message = f"Move {item_id} to {intent.to_container_id} at {intent.to_index}"
            moved = txn.get_item(item_id)

        return MoveOutcome(
            item=moved,
            from_container_id=intent.from_container_id,
            to_container_id=intent.to_container_id,
            patches=patches,
        )

    # --- bulk reorder ---

    async def bulk_reorder(self, container_id: str, ordered_ids: Sequence[str]) -> Patch:
        """Replace a container's whole ordering in one transaction.

        ordered_ids must be exactly the container's current active children;
        anything else raises StaleOrderError and the caller must refetch.
        """
        ordered_ids = list(ordered_ids)
        patch = await self._run(f"reorder {container_id}", self._bulk_sync, container_id, ordered_ids)
        logger.info("reordered %s (%d items)", container_id, len(patch))
        self._after_commit(ActivityEvent(None, container_id, container_id, action="reordered"), [container_id])
        return patch

    def _bulk_sync(self, container_id: str, ordered_ids: list[str]) -> Patch:
        with self.repository.transaction(message=f"Reorder {container_id}") as txn:
            if txn.get_container(container_id) is None:
                raise ContainerNotFound(container_id)
            current = _ids(txn.read_container_children(container_id))
            check_membership(container_id, current, ordered_ids)
            patch = dense_positions(ordered_ids)
            txn.write_positions(container_id, patch)
        return patch

    # --- lifecycle ---

    async def create_lab(self, title: str, lab_id: str | None = None) -> Container:
        lab = await self._run("create lab", self._create_lab_sync, title, lab_id)
        logger.info("created lab %s", lab.id)
        return lab

    def _create_lab_sync(self, title: str, lab_id: str | None) -> Container:
        with self.repository.transaction(message=f"Add lab: {title}") as txn:
            lab = Container(id=lab_id or next_id(Kind.LAB, txn.item_ids()), kind=Kind.LAB, title=title)
            txn.add_lab(lab)
        return lab

    async def create_item(
        self,
        kind: Kind | str,
        container_id: str,
        title: str,
        index: int | None = None,
    ) -> OrderedItem:
        """Create an item at the end of a container, or at index."""
        try:
            kind = Kind(kind)
        except ValueError:
            raise ValidationError(f"Unknown item kind '{kind}'") from None
        if kind is Kind.LAB:
            raise ValidationError("Labs are created with create_lab")
        if index is not None and index < 0:
            raise ValidationError(f"Index must not be negative, got {index}")
        item = await self._run(f"create {kind.value}", self._create_sync, kind, container_id, title, index)
        logger.info("created %s %s in %s at %d", kind.value, item.id, container_id, item.position)
        self._after_commit(ActivityEvent(item.id, None, container_id, action="created"), [container_id])
        return item

    def _create_sync(self, kind: Kind, container_id: str, title: str, index: int | None) -> OrderedItem:
        with self.repository.transaction(message=f"Add {kind.value}: {title}") as txn:
            container = txn.get_container(container_id)
            if container is None:
                raise ContainerNotFound(container_id)
            if not container.accepts(kind):
                raise ValidationError(f"A {kind.value} cannot be placed in {container.kind.value} '{container_id}'")
            if container.archived:
                raise ContainerArchived(container_id)
            siblings = txn.read_container_children(container_id)
            item_id = next_id(kind, txn.item_ids())
            if index is None:
                txn.add_item(OrderedItem(item_id, kind, container_id, next_position(siblings), title))
            else:
                ids = _ids(siblings)
                ids.insert(min(index, len(ids)), item_id)
                txn.add_item(OrderedItem(item_id, kind, container_id, 0, title))
                txn.write_positions(container_id, dense_positions(ids))
            return txn.get_item(item_id)

    async def archive_item(self, item_id: str) -> OrderedItem:
        """Take an item off its container's ordering; siblings keep their positions."""
        item = await self._run(f"archive {item_id}", self._archive_sync, item_id)
        logger.info("archived %s", item_id)
        self._after_commit(ActivityEvent(item_id, item.container_id, item.container_id, action="archived"), [item.container_id])
        return item

    def _archive_sync(self, item_id: str) -> OrderedItem:
        with self.repository.transaction(message=f"Archive {item_id}") as txn:
            item = txn.get_item(item_id)
            if item is None:
                raise ItemNotFound(item_id)
            txn.set_archived(item_id, True)
            return txn.get_item(item_id)

    async def restore_item(self, item_id: str) -> OrderedItem:
        """Bring an archived item back at the end of its container, renumbering it densely."""
        item = await self._run(f"restore {item_id}", self._restore_sync, item_id)
        logger.info("restored %s to %s at %d", item_id, item.container_id, item.position)
        self._after_commit(ActivityEvent(item_id, None, item.container_id, action="restored"), [item.container_id])
        return item

    def _restore_sync(self, item_id: str) -> OrderedItem:
        with self.repository.transaction(message=f"Restore {item_id}") as txn:
            item = txn.get_item(item_id)
            if item is None:
                raise ItemNotFound(item_id)
            if not item.archived:
                return item
            container = txn.get_container(item.container_id)
            if container is None:
                raise ContainerNotFound(item.container_id)
            if container.archived:
                raise ContainerArchived(container.id)
            siblings = txn.read_container_children(item.container_id)
            txn.set_archived(item_id, False)
            txn.write_positions(item.container_id, dense_positions(_ids(siblings) + [item_id]))
            return txn.get_item(item_id)

    async def delete_item(self, item_id: str) -> None:
        """Delete an item that holds no children. Siblings are not renumbered."""
        item = await self._run(f"delete {item_id}", self._delete_sync, item_id)
        logger.info("deleted %s from %s", item_id, item.container_id)
        self._after_commit(ActivityEvent(item_id, item.container_id, item.container_id, action="deleted"), [item.container_id])

    def _delete_sync(self, item_id: str) -> OrderedItem:
        with self.repository.transaction(message=f"Delete {item_id}") as txn:
            item = txn.get_item(item_id)
            if item is None:
                raise ItemNotFound(item_id)
            held = txn.read_container_children(item_id, include_archived=True)
            if held:
                raise ValidationError(f"Cannot delete '{item_id}' while it holds {len(held)} item(s)")
            txn.remove_item(item_id)
        return item

    # --- reads ---

    async def children(self, container_id: str) -> list[OrderedItem]:
        """Committed active children of a container in position order."""
        state = await asyncio.to_thread(self.repository.snapshot)
        if state.container(container_id) is None:
            raise ContainerNotFound(container_id)
        return state.children(container_id)

    async def load(self, container_ids: Iterable[str]) -> tuple[list[Container], list[OrderedItem]]:
        """Fetch containers and their active children for a client cache."""
        state = await asyncio.to_thread(self.repository.snapshot)
        containers: list[Container] = []
        items: list[OrderedItem] = []
        for container_id in container_ids:
            container = state.container(container_id)
            if container is None:
                raise ContainerNotFound(container_id)
            containers.append(container)
            items.extend(state.children(container_id))
        return containers, items

    async def counts(self, container_ids: Iterable[str]) -> dict[str, int]:
        """Active child counts recomputed from committed state."""
        state = await asyncio.to_thread(self.repository.snapshot)
        return {container_id: len(state.children(container_id)) for container_id in container_ids}

    # --- collaborators ---

    def _after_commit(self, event: ActivityEvent, container_ids: Iterable[str]) -> None:
        if self.settings.revalidate and self.revalidator is not None:
            try:
                self.revalidator(sorted(container_ids))
            except Exception:
                logger.exception("revalidation failed after %s of %s", event.action, event.moved_item_id)
        if self.settings.activity and self.activity is not None:
            task = asyncio.create_task(self._notify(event))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def _notify(self, event: ActivityEvent) -> None:
        try:
            await self.activity(event)
        except Exception as exc:
            logger.warning("activity notification for %s failed: %s", event.moved_item_id, exc)

    async def drain(self) -> None:
        """Wait for outstanding activity notifications."""
        if self._background:
            await asyncio.gather(*list(self._background))
