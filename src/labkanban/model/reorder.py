"""Pure move computation: ordered snapshots in, dense position patches out."""

from typing import Mapping, Sequence

from labkanban.errors import ContainerNotFound, ItemNotFound, ValidationError
from labkanban.model.items import MoveIntent, Patches
from labkanban.model.position import dense_positions

Snapshot = Mapping[str, Sequence[str]]


def compute_reorder(snapshot: Snapshot, intent: MoveIntent) -> Patches:
    """Compute the position patches that carry out intent on snapshot.

    snapshot maps container ids to their ordered child ids and must
    include both the source and destination containers. Returns a fully
    reindexed (item_id, position) list for each container whose order or
    membership changed. A move onto the item's current slot returns {}.
    A container emptied by the move maps to [].
    """
    if not intent.resolved:
        raise ValidationError(f"Move of '{intent.item_id}' has no source container")
    source_id = intent.from_container_id
    target_id = intent.to_container_id
    if source_id not in snapshot:
        raise ContainerNotFound(source_id)
    if target_id not in snapshot:
        raise ContainerNotFound(target_id)

    source = list(snapshot[source_id])
    if intent.item_id not in source:
        raise ItemNotFound(intent.item_id, source_id)
    old_index = source.index(intent.item_id)
    source.remove(intent.item_id)

    # Same-container reorder is a single list rewrite
    if source_id == target_id:
        insert_at = min(max(intent.to_index, 0), len(source))
        if insert_at == old_index:
            return {}
        source.insert(insert_at, intent.item_id)
        return {source_id: dense_positions(source)}

    target = [item_id for item_id in snapshot[target_id] if item_id != intent.item_id]
    insert_at = min(max(intent.to_index, 0), len(target))
    target.insert(insert_at, intent.item_id)
    return {
        source_id: dense_positions(source),
        target_id: dense_positions(target),
    }


def apply_patches(snapshot: Snapshot, patches: Patches) -> dict[str, list[str]]:
    """Return a copy of snapshot with each patched container's order replaced."""
    result = {container_id: list(ids) for container_id, ids in snapshot.items()}
    for container_id, patch in patches.items():
        result[container_id] = [item_id for item_id, _ in sorted(patch, key=lambda entry: entry[1])]
    return result
