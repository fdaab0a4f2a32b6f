"""Typed failures raised by the ordering engine and its collaborators."""

from __future__ import annotations


class LabKanbanError(Exception):
    """Base class for every labkanban error."""


class MoveError(LabKanbanError):
    """A move, reorder or create request that could not be committed.

    Only PersistenceConflict is retryable; everything else is deterministic
    and is surfaced to the caller straight away.
    """

    retryable = False

    def to_dict(self) -> dict:
        return {"error": str(self), "type": type(self).__name__}


class ItemNotFound(MoveError):
    def __init__(self, item_id: str, container_id: str | None = None) -> None:
        self.item_id = item_id
        self.container_id = container_id
        if container_id is None:
            super().__init__(f"Item '{item_id}' not found")
        else:
            super().__init__(f"Item '{item_id}' not found in container '{container_id}'")


class ContainerNotFound(MoveError):
    def __init__(self, container_id: str) -> None:
        self.container_id = container_id
        super().__init__(f"Container '{container_id}' not found")


class ContainerArchived(MoveError):
    def __init__(self, container_id: str) -> None:
        self.container_id = container_id
        super().__init__(f"Container '{container_id}' is archived and cannot receive items")


class CyclicMoveRejected(MoveError):
    def __init__(self, item_id: str, container_id: str) -> None:
        self.item_id = item_id
        self.container_id = container_id
        super().__init__(f"Cannot move '{item_id}' into its own descendant '{container_id}'")


class StaleOrderError(MoveError):
    """Submitted ordering no longer matches the container's membership."""

    def __init__(
        self,
        container_id: str,
        missing: list[str] | None = None,
        extra: list[str] | None = None,
        duplicates: list[str] | None = None,
    ) -> None:
        self.container_id = container_id
        self.missing = missing or []
        self.extra = extra or []
        self.duplicates = duplicates or []
        details = []
        if self.missing:
            details.append(f"missing {', '.join(self.missing)}")
        if self.extra:
            details.append(f"unexpected {', '.join(self.extra)}")
        if self.duplicates:
            details.append(f"duplicated {', '.join(self.duplicates)}")
        super().__init__(f"Stale ordering for '{container_id}': {'; '.join(details)}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(missing=self.missing, extra=self.extra, duplicates=self.duplicates)
        return data


class PersistenceConflict(MoveError):
    """A concurrent writer changed a container between read and commit."""

    retryable = True

    def __init__(self, container_ids: list[str] | None = None) -> None:
        self.container_ids = sorted(container_ids or [])
        if self.container_ids:
            super().__init__(f"Concurrent update to {', '.join(self.container_ids)}")
        else:
            super().__init__("Concurrent update to the board")


class ValidationError(MoveError):
    """Malformed request, e.g. a negative index or a wrong target kind."""
