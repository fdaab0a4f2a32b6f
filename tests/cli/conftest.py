"""Shared fixtures for CLI tests."""

import pytest

from labkanban.storage.git import GitRepository


@pytest.fixture
def initialized_repo(empty_repo, lab, board_items):
    """Create a repo whose board holds the sample lab."""
    repository = GitRepository(empty_repo)
    repository.initialize()
    with repository.transaction("Initialize test board") as txn:
        txn.add_lab(lab)
        for item in board_items:
            txn.add_item(item)
    return empty_repo
