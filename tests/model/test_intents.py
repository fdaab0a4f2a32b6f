"""Tests for containers, items and move intents."""

import pytest

from labkanban.errors import ValidationError
from labkanban.model.items import (
    BucketMove,
    Container,
    Kind,
    MoveOutcome,
    OrderedItem,
    ProjectMove,
    TaskMove,
    intent_for,
)


def test_container_accepts_child_kind():
    assert Container("L1", Kind.LAB).accepts(Kind.BUCKET)
    assert Container("B1", Kind.BUCKET).accepts(Kind.PROJECT)
    assert Container("P1", Kind.PROJECT).accepts(Kind.TASK)
    assert Container("T1", Kind.TASK).accepts(Kind.TASK)
    assert not Container("B1", Kind.BUCKET).accepts(Kind.TASK)


def test_item_as_container_keeps_owner():
    item = OrderedItem("P1", Kind.PROJECT, "B1", 0, archived=True)
    container = item.as_container()
    assert container.owner_id == "B1"
    assert container.kind is Kind.PROJECT
    assert container.archived


def test_intent_variants_declare_targets():
    assert BucketMove.target_kinds == (Kind.LAB,)
    assert ProjectMove.target_kinds == (Kind.BUCKET,)
    assert TaskMove.target_kinds == (Kind.PROJECT, Kind.TASK)


def test_intent_for_picks_variant():
    assert isinstance(intent_for(Kind.BUCKET, "B1", None, 0), BucketMove)
    assert isinstance(intent_for("project", "P1", "B2", 0), ProjectMove)
    assert isinstance(intent_for(Kind.TASK, "T1", "T2", 3), TaskMove)


def test_intent_for_rejects_labs():
    with pytest.raises(ValidationError):
        intent_for(Kind.LAB, "L1", None, 0)


@pytest.mark.parametrize("index", [-1, 1.5, "2", True])
def test_bad_index_rejected(index):
    with pytest.raises(ValidationError):
        TaskMove("T1", "P1", index)


def test_empty_item_id_rejected():
    with pytest.raises(ValidationError):
        TaskMove("", "P1", 0)


def test_resolve_fills_both_containers():
    intent = BucketMove("B1", None, 2)
    assert not intent.resolved
    resolved = intent.resolve("L1")
    assert resolved.from_container_id == "L1"
    assert resolved.to_container_id == "L1"
    assert not resolved.crosses_containers
    assert isinstance(resolved, BucketMove)


def test_resolve_keeps_explicit_target():
    resolved = TaskMove("T1", "P2", 0).resolve("P1")
    assert resolved.crosses_containers


def test_outcome_siblings_exclude_moved_item():
    item = OrderedItem("T3", Kind.TASK, "P1", 0)
    outcome = MoveOutcome(item, "P1", "P1", {"P1": [("T3", 0), ("T1", 1), ("T2", 2)]})
    assert not outcome.noop
    assert outcome.siblings == [("T1", 1), ("T2", 2)]
    assert MoveOutcome(item, "P1", "P1").noop
