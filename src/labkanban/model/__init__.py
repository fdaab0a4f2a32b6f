"""Ordering model: items, positions, move intents and the reactive tree."""

from labkanban.model.items import (
    CHILD_KIND,
    ActivityEvent,
    BucketMove,
    Container,
    Kind,
    MoveIntent,
    MoveOutcome,
    OrderedItem,
    ProjectMove,
    TaskMove,
    intent_for,
)
from labkanban.model.ids import id_sort_key, next_id
from labkanban.model.position import check_membership, dense_positions, next_position, ordered_ids
from labkanban.model.reorder import apply_patches, compute_reorder
from labkanban.model.node import ListNode, Node

__all__ = [
    "CHILD_KIND",
    "ActivityEvent",
    "BucketMove",
    "Container",
    "Kind",
    "ListNode",
    "MoveIntent",
    "MoveOutcome",
    "Node",
    "OrderedItem",
    "ProjectMove",
    "TaskMove",
    "apply_patches",
    "check_membership",
    "compute_reorder",
    "dense_positions",
    "id_sort_key",
    "intent_for",
    "next_id",
    "next_position",
    "ordered_ids",
]
