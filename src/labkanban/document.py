"""Board documents: markdown files with YAML front-matter.

    ---
    kind: task
    container: P1
    position: 2
    ---

    # Run the gel

    Load 10 ul per lane.

The front-matter carries the ordering fields and the first level-one
heading is the title. Notes in the body and front-matter keys this package
does not use survive a rewrite.
"""

import re
from dataclasses import dataclass, field

import yaml

from labkanban.model.items import Container, Kind, OrderedItem

_FENCE = "```"
_FRONT_MATTER = re.compile(r"\A---\n(.*?)\n---(?:\n|\Z)", re.DOTALL)
_TITLE_LEVEL = re.compile(r"^#{1,2} ")


def _lines(text: str):
    """Yield (line, inside_code_fence) for each line of text."""
    fenced = False
    for line in text.split("\n"):
        if line.startswith(_FENCE):
            fenced = not fenced
        yield line, fenced


def _demote(body: str) -> str:
    """Rewrite # and ## headings outside code fences as ### so a body never supplies a title."""
    return "\n".join(line if fenced else _TITLE_LEVEL.sub("### ", line) for line, fenced in _lines(body))


def _split_front_matter(text: str) -> tuple[dict, str]:
    match = _FRONT_MATTER.match(text)
    if match is None:
        return {}, text
    try:
        meta = yaml.safe_load(match.group(1))
    except yaml.YAMLError:
        meta = None
    return (meta if isinstance(meta, dict) else {}), text[match.end() :]


@dataclass
class Document:
    title: str = ""
    body: str = ""
    meta: dict = field(default_factory=dict)

    @classmethod
    def parse(cls, text: str) -> "Document":
        """Read a document. Text before the title heading is kept in the body."""
        meta, text = _split_front_matter(text)
        title = ""
        kept: list[str] = []
        for line, fenced in _lines(text):
            if not title and not fenced and line.startswith("# "):
                title = line[2:].strip()
            else:
                kept.append(line)
        return cls(title, "\n".join(kept).strip(), meta)

    def render(self) -> str:
        chunks: list[str] = []
        if self.meta:
            dumped = yaml.safe_dump(self.meta, default_flow_style=False, sort_keys=False)
            chunks.append(f"---\n{dumped}---")
        if self.title:
            chunks.append(f"# {self.title}")
        if self.body:
            chunks.append(_demote(self.body))
        return "\n\n".join(chunks).rstrip() + "\n"


# --- board items ---


def read_item(item_id: str, text: str) -> OrderedItem:
    doc = Document.parse(text)
    return OrderedItem(
        id=item_id,
        kind=Kind(doc.meta.get("kind", Kind.TASK.value)),
        container_id=str(doc.meta.get("container", "")),
        position=int(doc.meta.get("position", 0)),
        title=doc.title,
        archived=bool(doc.meta.get("archived", False)),
    )


def read_lab(lab_id: str, text: str) -> Container:
    doc = Document.parse(text)
    return Container(id=lab_id, kind=Kind.LAB, title=doc.title, archived=bool(doc.meta.get("archived", False)))


def write_item(item: OrderedItem, previous: str | None = None) -> str:
    """Render an item, keeping the body and extra meta of its previous text."""
    doc = Document.parse(previous) if previous is not None else Document()
    doc.title = item.title
    doc.meta.update(kind=item.kind.value, container=item.container_id, position=item.position)
    if item.archived:
        doc.meta["archived"] = True
    else:
        doc.meta.pop("archived", None)
    return doc.render()


def write_lab(lab: Container, previous: str | None = None) -> str:
    doc = Document.parse(previous) if previous is not None else Document()
    doc.title = lab.title
    doc.meta["kind"] = Kind.LAB.value
    if lab.archived:
        doc.meta["archived"] = True
    else:
        doc.meta.pop("archived", None)
    return doc.render()
