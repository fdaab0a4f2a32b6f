"""Handler for 'labkanban summary'."""

from labkanban.cli._common import error, open_service_or_die, output_json
from labkanban.storage.base import BoardState


def _summarize(state: BoardState, lab_ids: list[str]) -> list[dict]:
    labs = []
    for lab_id in lab_ids:
        buckets = state.children(lab_id)
        labs.append(
            {
                "id": lab_id,
                "title": state.labs[lab_id].title,
                "buckets": [
                    {"id": b.id, "title": b.title, "projects": len(state.children(b.id))} for b in buckets
                ],
            }
        )
    return labs


def board_summary(args) -> int:
    """Show labs, their buckets in order and project counts."""
    service = open_service_or_die(args.repo, args.json)
    state = service.repository.snapshot()

    if args.lab is not None and args.lab not in state.labs:
        error(f"Lab '{args.lab}' not found. Available: {', '.join(sorted(state.labs)) or 'none'}", args.json)
    labs = _summarize(state, [args.lab] if args.lab is not None else sorted(state.labs))

    if args.json:
        output_json({"labs": labs})
    else:
        for lab in labs:
            print(f"{lab['id']}  {lab['title']}")
            for b in lab["buckets"]:
                projects = "project" if b["projects"] == 1 else "projects"
                print(f"  {b['id']}  {b['title']:<16} {b['projects']} {projects}")

    return 0
