"""Containers, ordered items and the tagged move intents that relocate them."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import ClassVar

from labkanban.errors import ValidationError


class Kind(str, Enum):
    LAB = "lab"
    BUCKET = "bucket"
    PROJECT = "project"
    TASK = "task"


# Which kind of child each container kind holds.
CHILD_KIND = {
    Kind.LAB: Kind.BUCKET,
    Kind.BUCKET: Kind.PROJECT,
    Kind.PROJECT: Kind.TASK,
    Kind.TASK: Kind.TASK,
}

Patch = list[tuple[str, int]]
Patches = dict[str, Patch]


@dataclass(frozen=True)
class OrderedItem:
    """A bucket, project or task placed at `position` inside `container_id`."""

    id: str
    kind: Kind
    container_id: str
    position: int
    title: str = ""
    archived: bool = False

    def as_container(self) -> Container:
        return Container(
            id=self.id,
            kind=self.kind,
            owner_id=self.container_id,
            archived=self.archived,
            title=self.title,
        )


@dataclass(frozen=True)
class Container:
    """Anything that owns an ordered list of children.

    Labs are roots and have no owner. Buckets, projects and tasks are
    containers as well as items, in which case owner_id is the container
    they sit in.
    """

    id: str
    kind: Kind
    owner_id: str | None = None
    archived: bool = False
    title: str = ""

    @property
    def child_kind(self) -> Kind:
        return CHILD_KIND[self.kind]

    def accepts(self, kind: Kind) -> bool:
        return self.child_kind is kind


@dataclass(frozen=True)
class MoveIntent:
    """Relocate item_id to to_index within to_container_id.

    to_index is the zero-based index in the destination's final order.
    to_container_id of None means "stay in the current container".
    from_container_id is normally filled in from the stored item; when a
    caller supplies it, it must match where the item actually lives.
    """

    item_id: str
    to_container_id: str | None
    to_index: int
    from_container_id: str | None = None

    item_kind: ClassVar[Kind]
    target_kinds: ClassVar[tuple[Kind, ...]]

    def __post_init__(self) -> None:
        if not self.item_id:
            raise ValidationError("Move requires an item id")
        if isinstance(self.to_index, bool) or not isinstance(self.to_index, int):
            raise ValidationError(f"Index must be an integer, got {self.to_index!r}")
        if self.to_index < 0:
            raise ValidationError(f"Index must not be negative, got {self.to_index}")

    @property
    def resolved(self) -> bool:
        return self.from_container_id is not None and self.to_container_id is not None

    @property
    def crosses_containers(self) -> bool:
        return self.from_container_id != self.to_container_id

    def resolve(self, from_container_id: str) -> MoveIntent:
        """Return a copy with both container ids filled in."""
        return replace(
            self,
            from_container_id=from_container_id,
            to_container_id=self.to_container_id or from_container_id,
        )


class BucketMove(MoveIntent):
    item_kind = Kind.BUCKET
    target_kinds = (Kind.LAB,)


class ProjectMove(MoveIntent):
    item_kind = Kind.PROJECT
    target_kinds = (Kind.BUCKET,)


class TaskMove(MoveIntent):
    item_kind = Kind.TASK
    target_kinds = (Kind.PROJECT, Kind.TASK)


INTENT_TYPES: dict[Kind, type[MoveIntent]] = {
    Kind.BUCKET: BucketMove,
    Kind.PROJECT: ProjectMove,
    Kind.TASK: TaskMove,
}


def intent_for(
    kind: Kind,
    item_id: str,
    to_container_id: str | None,
    to_index: int,
    from_container_id: str | None = None,
) -> MoveIntent:
    """Build the intent variant matching an item kind."""
    try:
        cls = INTENT_TYPES[Kind(kind)]
    except (KeyError, ValueError):
        raise ValidationError(f"Items of kind '{kind}' cannot be moved") from None
    return cls(item_id, to_container_id, to_index, from_container_id)


@dataclass
class MoveOutcome:
    """Authoritative result of a committed move."""

    item: OrderedItem
    from_container_id: str
    to_container_id: str
    patches: Patches = field(default_factory=dict)

    @property
    def noop(self) -> bool:
        return not self.patches

    @property
    def siblings(self) -> Patch:
        """Renumbered neighbours, excluding the moved item itself."""
        return [
            (item_id, position)
            for patch in self.patches.values()
            for item_id, position in patch
            if item_id != self.item.id
        ]


@dataclass(frozen=True)
class ActivityEvent:
    """Sent to the activity collaborator after a successful commit."""

    moved_item_id: str | None
    from_container_id: str | None
    to_container_id: str
    action: str = "moved"
