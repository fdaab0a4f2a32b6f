"""CLI argument parser and dispatch for labkanban."""

import argparse

from labkanban.cli.board import board_summary
from labkanban.cli.init import init_board
from labkanban.cli.items import (
    item_add,
    item_archive,
    item_delete,
    item_list,
    item_move,
    item_reorder,
    item_restore,
)
from labkanban.model.items import Kind


def build_parser() -> argparse.ArgumentParser:
    """Build the full CLI argument parser."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--repo", default=".", help="Path to git repository (default: .)")
    common.add_argument("--json", action="store_true", help="Machine-readable JSON output")
    common.add_argument("-v", "--verbose", action="store_true", help="Log to stderr")

    parser = argparse.ArgumentParser(
        prog="labkanban",
        description="Ordered lab kanban stored in git",
        parents=[common],
    )

    verbs = parser.add_subparsers(dest="verb")

    init_p = verbs.add_parser("init", help="Initialize a board", parents=[common])
    init_p.add_argument("--lab", help="Title of a first lab to create")
    init_p.add_argument("--branch", help="Branch to keep the board on (saved in git config)")
    init_p.set_defaults(func=init_board)

    add_p = verbs.add_parser("add", help="Create a lab, bucket, project or task", parents=[common])
    add_p.add_argument("kind", choices=[k.value for k in Kind], help="Item kind")
    add_p.add_argument("title", help="Item title")
    add_p.add_argument("--in", dest="container", help="Container ID")
    add_p.add_argument("--position", type=int, help="Position in container (1-indexed, default: end)")
    add_p.set_defaults(func=item_add)

    list_p = verbs.add_parser("list", help="List a container's items in order", parents=[common])
    list_p.add_argument("container", help="Container ID")
    list_p.set_defaults(func=item_list)

    move_p = verbs.add_parser("move", help="Move an item", parents=[common])
    move_p.add_argument("id", help="Item ID")
    move_p.add_argument("--to", required=True, help="Target container ID")
    move_p.add_argument("--position", type=int, help="Position in target (1-indexed, default: end)")
    move_p.set_defaults(func=item_move)

    reorder_p = verbs.add_parser("reorder", help="Set a container's full order", parents=[common])
    reorder_p.add_argument("container", help="Container ID")
    reorder_p.add_argument("ids", nargs="+", help="Every item ID in the new order")
    reorder_p.set_defaults(func=item_reorder)

    archive_p = verbs.add_parser("archive", help="Archive an item", parents=[common])
    archive_p.add_argument("id", help="Item ID")
    archive_p.set_defaults(func=item_archive)

    restore_p = verbs.add_parser("restore", help="Restore an archived item", parents=[common])
    restore_p.add_argument("id", help="Item ID")
    restore_p.set_defaults(func=item_restore)

    delete_p = verbs.add_parser("delete", help="Delete an empty item", parents=[common])
    delete_p.add_argument("id", help="Item ID")
    delete_p.set_defaults(func=item_delete)

    summary_p = verbs.add_parser("summary", help="Show labs and bucket counts", parents=[common])
    summary_p.add_argument("--lab", help="Only this lab")
    summary_p.set_defaults(func=board_summary)

    return parser
