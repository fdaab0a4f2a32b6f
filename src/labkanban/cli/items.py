"""Handlers for item commands: add, list, move, reorder, archive, restore, delete."""

from labkanban.cli._common import (
    error,
    item_to_dict,
    open_service_or_die,
    output_json,
    output_result,
    run_or_die,
)
from labkanban.model.items import Kind


def item_add(args) -> int:
    """Create a lab, or a bucket, project or task inside a container."""
    service = open_service_or_die(args.repo, args.json)

    if args.kind == Kind.LAB.value:
        lab = run_or_die(service.create_lab(args.title), args.json)
        output_result(
            {"id": lab.id, "kind": lab.kind.value, "title": lab.title},
            f"Created lab {lab.id}",
            args.json,
        )
        return 0

    if not args.container:
        error(f"A {args.kind} needs a container (--in)", args.json)

    index = args.position - 1 if args.position is not None else None
    item = run_or_die(service.create_item(args.kind, args.container, args.title, index=index), args.json)
    output_result(
        item_to_dict(item),
        f"Created {item.kind.value} {item.id} in {item.container_id} at {item.position + 1}",
        args.json,
    )
    return 0


def item_list(args) -> int:
    """List a container's children in order."""
    service = open_service_or_die(args.repo, args.json)
    children = run_or_die(service.children(args.container), args.json)

    if args.json:
        output_json([item_to_dict(item) for item in children])
    else:
        for number, item in enumerate(children, start=1):
            print(f"{number:>3}. {item.id}  {item.title}")

    return 0


def item_move(args) -> int:
    """Move an item to a container at a 1-indexed position (default: end)."""
    service = open_service_or_die(args.repo, args.json)

    if args.position is not None:
        index = args.position - 1
    else:
        counts = run_or_die(service.counts([args.to]), args.json)
        index = counts[args.to]

    outcome = run_or_die(service.move_item(args.id, args.to, index), args.json)

    data = {
        "id": args.id,
        "from": outcome.from_container_id,
        "to": outcome.to_container_id,
        "position": outcome.item.position,
        "changed": not outcome.noop,
        "patches": {cid: [list(entry) for entry in patch] for cid, patch in outcome.patches.items()},
    }
    if outcome.noop:
        text = f"{args.id} is already at position {outcome.item.position + 1} in {outcome.to_container_id}"
    else:
        text = f"Moved {args.id} to {outcome.to_container_id} at {outcome.item.position + 1}"
    output_result(data, text, args.json)
    return 0


def item_reorder(args) -> int:
    """Replace a container's order with the given ids."""
    service = open_service_or_die(args.repo, args.json)
    patch = run_or_die(service.bulk_reorder(args.container, args.ids), args.json)
    output_result(
        {"container": args.container, "positions": [list(entry) for entry in patch]},
        f"Reordered {args.container}: {' '.join(item_id for item_id, _ in patch)}",
        args.json,
    )
    return 0


def item_archive(args) -> int:
    """Archive an item."""
    service = open_service_or_die(args.repo, args.json)
    item = run_or_die(service.archive_item(args.id), args.json)
    output_result(item_to_dict(item), f"Archived {item.id}", args.json)
    return 0


def item_restore(args) -> int:
    """Restore an archived item to the end of its container."""
    service = open_service_or_die(args.repo, args.json)
    item = run_or_die(service.restore_item(args.id), args.json)
    output_result(item_to_dict(item), f"Restored {item.id} at {item.position + 1}", args.json)
    return 0


def item_delete(args) -> int:
    """Delete an item that holds no children."""
    service = open_service_or_die(args.repo, args.json)
    run_or_die(service.delete_item(args.id), args.json)
    output_result({"id": args.id, "deleted": True}, f"Deleted {args.id}", args.json)
    return 0
