"""Opening the board, running service calls and printing results for CLI handlers."""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Coroutine

from labkanban.config import is_git_repo, read_settings
from labkanban.errors import LabKanbanError, MoveError
from labkanban.model.items import OrderedItem
from labkanban.service import CommitService
from labkanban.storage.git import GitRepository


def open_service_or_die(repo: str, json_mode: bool) -> CommitService:
    """Open the board in repo. Exit 1 with message if there is none."""
    repo_path = Path(repo).resolve()
    if not is_git_repo(repo_path):
        error(f"{repo_path} is not a git repository", json_mode)
    settings = read_settings(repo_path)
    repository = GitRepository(repo_path, branch=settings.branch)
    if not repository.exists():
        error(f"No board on branch '{settings.branch}'. Run 'labkanban init' first.", json_mode)
    return CommitService(repository, settings=settings)


def run_or_die(coro: Coroutine, json_mode: bool) -> Any:
    """Run a service coroutine, turning labkanban errors into exit 1."""
    try:
        return asyncio.run(coro)
    except MoveError as e:
        fail(e.to_dict(), json_mode)
    except LabKanbanError as e:
        error(str(e), json_mode)


def item_to_dict(item: OrderedItem) -> dict:
    data = {
        "id": item.id,
        "kind": item.kind.value,
        "title": item.title,
        "container": item.container_id,
        "position": item.position,
    }
    if item.archived:
        data["archived"] = True
    return data


def output_json(data: dict | list) -> None:
    """Pretty-print data as JSON on stdout."""
    print(json.dumps(data, indent=2))


def output_result(data: dict, text: str, json_mode: bool) -> None:
    """Print a command result, as JSON when json_mode is set."""
    if json_mode:
        output_json(data)
    else:
        print(text)


def fail(data: dict, json_mode: bool) -> None:
    """Print a structured error to stderr and exit 1."""
    if json_mode:
        print(json.dumps(data), file=sys.stderr)
    else:
        print(f"error: {data['error']}", file=sys.stderr)
    sys.exit(1)


def error(message: str, json_mode: bool) -> None:
    """Exit 1 with a plain error message."""
    fail({"error": message}, json_mode)
