"""Persistence backends for board positions."""

from labkanban.storage.base import BoardState, Repository, Transaction
from labkanban.storage.git import GitRepository
from labkanban.storage.memory import MemoryRepository

__all__ = [
    "BoardState",
    "GitRepository",
    "MemoryRepository",
    "Repository",
    "Transaction",
]
