"""Drag-and-drop session handling.

The orchestrator turns a drag gesture into a typed move intent and hands
it to the OptimisticStore. A view calls start() when the pointer picks an
item up, hover() as the drop target changes, and finish() or cancel()
when the pointer is released.
"""

from __future__ import annotations

import logging
from typing import Sequence

from labkanban.errors import ItemNotFound, LabKanbanError
from labkanban.model.items import MoveIntent, MoveOutcome, Patch, intent_for
from labkanban.store import OptimisticStore

logger = logging.getLogger(__name__)


class DragOrchestrator:
    """Manages drag state and converts drops into store moves."""

    def __init__(self, store: OptimisticStore):
        self.store = store
        self.dragging: str | None = None
        self.target_container: str | None = None
        self.insert_before: str | None = None

    @property
    def active(self) -> bool:
        return self.dragging is not None

    def start(self, item_id: str) -> None:
        if self._node(item_id) is None:
            raise ItemNotFound(item_id)
        if self.active:
            logger.debug("drag of %s replaced by %s", self.dragging, item_id)
        self.dragging = item_id
        self.target_container = None
        self.insert_before = None

    def _node(self, item_id: str):
        return self.store.board.items[item_id]

    def hover(self, container_id: str, insert_before: str | None = None) -> None:
        """Track the drop target. insert_before None means the end of the container."""
        if not self.active:
            return
        self.target_container = container_id
        self.insert_before = insert_before

    def drop_index(self) -> int:
        """Index in the target's final order, counting siblings before insert_before."""
        siblings = [item_id for item_id in self.store.children(self.target_container) if item_id != self.dragging]
        if self.insert_before is None or self.insert_before not in siblings:
            return len(siblings)
        return siblings.index(self.insert_before)

    def intent(self) -> MoveIntent | None:
        """The move the current drag would make, or None if there is no target."""
        if not self.active or self.target_container is None:
            return None
        node = self._node(self.dragging)
        return intent_for(node.kind, self.dragging, self.target_container, self.drop_index())

    async def finish(self) -> MoveOutcome | None:
        """Drop the dragged item. Returns None when the drag had no target."""
        try:
            intent = self.intent()
        finally:
            self._cleanup()
        if intent is None:
            logger.debug("drop without a target, nothing moved")
            return None
        try:
            return await self.store.apply_move(intent)
        except LabKanbanError as exc:
            logger.info("drop of %s into %s failed: %s", intent.item_id, intent.to_container_id, exc)
            raise

    def cancel(self) -> None:
        if self.active:
            logger.debug("drag of %s cancelled", self.dragging)
        self._cleanup()

    def _cleanup(self) -> None:
        self.dragging = None
        self.target_container = None
        self.insert_before = None

    async def reorder(self, container_id: str, ordered_ids: Sequence[str]) -> Patch:
        """Apply a whole-container rearrangement, e.g. from a sort action."""
        return await self.store.bulk_reorder(container_id, ordered_ids)

    async def move_bucket(self, bucket_id: str, new_index: int) -> MoveOutcome:
        return await self.store.move_bucket(bucket_id, new_index)

    async def move_project(self, project_id: str, to_bucket_id: str, new_index: int) -> MoveOutcome:
        return await self.store.move_project(project_id, to_bucket_id, new_index)

    async def move_task(self, task_id: str, to_container_id: str, new_index: int) -> MoveOutcome:
        return await self.store.move_task(task_id, to_container_id, new_index)
