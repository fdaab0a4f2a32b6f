"""Shared fixtures: a sample board in memory and empty git repositories."""

import pytest
from git import Repo

from labkanban.model.items import Container, Kind, OrderedItem
from labkanban.storage.memory import MemoryRepository


def _item(item_id, kind, container_id, position, archived=False):
    return OrderedItem(item_id, kind, container_id, position, title=f"{kind.value} {item_id}", archived=archived)


def make_board_items():
    """A lab with three buckets, a few projects and a small task tree.

    L1: B1 B2 B3 (B9 archived)
      B1: P1 P2
      B2: P3 (P9 archived)
      P1: T1 T2 T3
      T1: T4
      T4: T5
      P2 and P3 are empty.
    """
    return [
        _item("B1", Kind.BUCKET, "L1", 0),
        _item("B2", Kind.BUCKET, "L1", 1),
        _item("B3", Kind.BUCKET, "L1", 2),
        _item("B9", Kind.BUCKET, "L1", 3, archived=True),
        _item("P1", Kind.PROJECT, "B1", 0),
        _item("P2", Kind.PROJECT, "B1", 1),
        _item("P3", Kind.PROJECT, "B2", 0),
        _item("P9", Kind.PROJECT, "B2", 1, archived=True),
        _item("T1", Kind.TASK, "P1", 0),
        _item("T2", Kind.TASK, "P1", 1),
        _item("T3", Kind.TASK, "P1", 2),
        _item("T4", Kind.TASK, "T1", 0),
        _item("T5", Kind.TASK, "T4", 0),
    ]


def make_lab():
    return Container("L1", Kind.LAB, title="Protein lab")


@pytest.fixture(autouse=True)
def git_identity(monkeypatch):
    """Give plumbing commands an author and committer."""
    for prefix in ("GIT_AUTHOR", "GIT_COMMITTER"):
        monkeypatch.setenv(f"{prefix}_NAME", "Test User")
        monkeypatch.setenv(f"{prefix}_EMAIL", "test@example.com")


@pytest.fixture
def memory_repo():
    return MemoryRepository(labs=[make_lab()], items=make_board_items())


@pytest.fixture
def empty_repo(tmp_path):
    """Create an empty git repo."""
    repo = Repo.init(tmp_path)
    (tmp_path / ".gitkeep").write_text("")
    repo.index.add([".gitkeep"])
    repo.index.commit("Initial commit")
    return tmp_path


@pytest.fixture
def board_items():
    return make_board_items()


@pytest.fixture
def lab():
    return make_lab()
