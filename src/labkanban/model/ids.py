"""Item ID generation and natural ordering.

IDs are a kind prefix followed by a decimal counter: "B1", "P12", "T007".
Leading zeros are insignificant when comparing.
"""

import re

from labkanban.model.items import Kind

PREFIXES = {
    Kind.LAB: "L",
    Kind.BUCKET: "B",
    Kind.PROJECT: "P",
    Kind.TASK: "T",
}

_ID_RE = re.compile(r"^(\D*)(\d+)$")


def split_id(s: str) -> tuple[str, int | None]:
    """Split an ID into (prefix, number).

    "T12" → ("T", 12), "007" → ("", 7), "inbox" → ("inbox", None)
    """
    match = _ID_RE.match(s)
    if not match:
        return s, None
    return match.group(1), int(match.group(2))


def id_sort_key(s: str) -> tuple[str, int, str]:
    """Sort key that orders "T2" before "T10"."""
    prefix, number = split_id(s)
    return prefix, -1 if number is None else number, s


def next_id(kind: Kind, existing: list[str]) -> str:
    """Generate the next unused ID for kind.

    Numbers are shared by every ID with the same prefix, so "T3" follows
    "T1" and "T2" regardless of which container they live in.
    """
    prefix = PREFIXES[Kind(kind)]
    highest = 0
    for item_id in existing:
        p, number = split_id(item_id)
        if p == prefix and number is not None:
            highest = max(highest, number)
    return f"{prefix}{highest + 1}"
