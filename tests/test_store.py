"""Tests for the optimistic client store."""

import asyncio
import logging

import pytest
import pytest_asyncio

from labkanban.errors import ContainerArchived, ContainerNotFound, ItemNotFound, StaleOrderError, ValidationError
from labkanban.service import CommitService
from labkanban.store import (
    MoveApplied,
    MoveCommitted,
    MoveRolledBack,
    MoveState,
    OptimisticStore,
    PendingMove,
)


class GatedService(CommitService):
    """Holds every move at a gate so tests can look at the in-between state."""

    def __init__(self, repository):
        super().__init__(repository)
        self.gate = asyncio.Event()
        self.calls = []

    async def apply_move(self, intent):
        self.calls.append((intent.item_id, intent.to_container_id, intent.to_index))
        await self.gate.wait()
        return await super().apply_move(intent)

    async def bulk_reorder(self, container_id, ordered_ids):
        self.calls.append((container_id, list(ordered_ids)))
        await self.gate.wait()
        return await super().bulk_reorder(container_id, ordered_ids)


class DecidedService(CommitService):
    """Holds each move until the test settles it, failing it when handed an error."""

    def __init__(self, repository):
        super().__init__(repository)
        self.decisions = {}

    async def apply_move(self, intent):
        decision = asyncio.get_running_loop().create_future()
        self.decisions[intent.item_id] = decision
        error = await decision
        if error is not None:
            raise error
        return await super().apply_move(intent)


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


def _snapshot(store, container_ids):
    """Plain copy of the cached fields a rollback must restore."""
    containers = {cid: store.board.containers[cid].to_dict() for cid in container_ids}
    items = {
        item_id: store.board.items[item_id].to_dict()
        for cid in container_ids
        for item_id in store.children(cid)
    }
    return containers, items


@pytest.fixture
def service(memory_repo):
    return CommitService(memory_repo)


@pytest_asyncio.fixture
async def store(service):
    store = OptimisticStore(service)
    await store.load(["L1", "B1", "B2", "B9", "P1", "P2", "T1"])
    return store


@pytest_asyncio.fixture
async def gated(memory_repo):
    service = GatedService(memory_repo)
    store = OptimisticStore(service)
    await store.load(["P1", "P2", "P3"])
    return store


@pytest_asyncio.fixture
async def decided(memory_repo):
    store = OptimisticStore(DecidedService(memory_repo))
    await store.load(["P1", "P2"])
    return store


def _record(store):
    events = []
    store.subscribe(events.append)
    return events


# --- loading ---


@pytest.mark.asyncio
async def test_load_hydrates_tree(store):
    assert store.children("P1") == ["T1", "T2", "T3"]
    assert store.children("B2") == ["P3"]
    assert store.count("L1") == 3
    node = store.board.items["T2"]
    assert (node.container, node.position) == ("P1", 1)
    assert store.board.containers["B9"].archived


@pytest.mark.asyncio
async def test_children_of_uncached_container(store):
    with pytest.raises(ContainerNotFound):
        store.children("P3")


# --- successful moves ---


@pytest.mark.asyncio
async def test_move_applies_before_commit(gated):
    events = _record(gated)
    task = asyncio.create_task(gated.move_task("T3", "P1", 0))
    await _settle()

    assert gated.children("P1") == ["T3", "T1", "T2"]
    assert [move.state for move in gated.pending] == [MoveState.APPLYING]
    assert [type(e) for e in events] == [MoveApplied]

    gated.service.gate.set()
    outcome = await task

    assert outcome.patches == {"P1": [("T3", 0), ("T1", 1), ("T2", 2)]}
    assert gated.pending == []
    assert [type(e) for e in events] == [MoveApplied, MoveCommitted]
    assert events[1].move.state is MoveState.COMMITTED


@pytest.mark.asyncio
async def test_cross_container_move(store, memory_repo):
    await store.move_task("T2", "P2", 0)
    assert store.children("P1") == ["T1", "T3"]
    assert store.children("P2") == ["T2"]
    node = store.board.items["T2"]
    assert (node.container, node.position) == ("P2", 0)
    assert store.board.items["T3"].position == 1
    assert [item.id for item in memory_repo.snapshot().children("P2")] == ["T2"]


@pytest.mark.asyncio
async def test_move_bucket_and_project(store):
    await store.move_bucket("B2", 0)
    assert store.children("L1") == ["B2", "B1", "B3"]
    await store.move_project("P1", "B2", 0)
    assert store.children("B2") == ["P1", "P3"]
    assert store.children("B1") == ["P2"]


@pytest.mark.asyncio
async def test_move_picks_variant_from_cached_kind(store):
    await store.move("T4", "P2", 0)
    assert store.children("P2") == ["T4"]
    assert store.children("T1") == []


@pytest.mark.asyncio
async def test_reconcile_with_server_order(store, service):
    # Another client moves T2 away; this store has not seen it
    await service.move_task("T2", "P2", 0)
    await store.move_task("T3", "P1", 0)
    assert store.children("P1") == ["T3", "T1"]
    assert store.children("P2") == []  # untouched by this move; still the cached view


@pytest.mark.asyncio
async def test_watchers_hear_moves(store):
    changes = []
    store.board.containers.watch("P1", lambda node, key, old, new: changes.append((key, new)))
    await store.move_task("T3", "P1", 0)
    assert ("children", ("T3", "T1", "T2")) in changes


@pytest.mark.asyncio
async def test_move_notifies_once_per_field(store):
    changes = []
    store.board.watch("items", lambda node, key, old, new: changes.append((node.path, key)))
    await store.move_task("T3", "P1", 0)
    assert sorted(changes) == [("items.T1", "position"), ("items.T2", "position"), ("items.T3", "position")]


# --- rollback ---


@pytest.mark.asyncio
async def test_rollback_restores_exact_snapshot(store, service):
    before = _snapshot(store, ["P1", "P2"])
    events = _record(store)
    await service.archive_item("P2")  # behind the store's back

    with pytest.raises(ContainerArchived):
        await store.move_task("T1", "P2", 0)

    assert _snapshot(store, ["P1", "P2"]) == before
    assert [type(e) for e in events] == [MoveApplied, MoveRolledBack]
    rolled_back = events[-1]
    assert isinstance(rolled_back.error, ContainerArchived)
    assert rolled_back.move.state is MoveState.ROLLED_BACK
    assert store.pending == []


@pytest.mark.asyncio
async def test_rollback_on_stale_source(store, service):
    await service.move_task("T1", "P2", 0)
    with pytest.raises(ItemNotFound):
        await store.move_task("T1", "P1", 2)
    assert store.children("P1") == ["T1", "T2", "T3"]


@pytest.mark.asyncio
async def test_local_errors_change_nothing(store):
    events = _record(store)
    with pytest.raises(ItemNotFound):
        await store.move_task("T99", "P1", 0)
    with pytest.raises(ValidationError):
        await store.move_task("P1", "P2", 0)
    with pytest.raises(ContainerNotFound):
        await store.move_task("T1", "P3", 0)
    assert events == []
    assert store.children("P1") == ["T1", "T2", "T3"]


def _positions(store, container_id):
    return [store.board.items[item_id].position for item_id in store.children(container_id)]


def _server_order(repo, container_id):
    return [item.id for item in repo.snapshot().children(container_id)]


@pytest.mark.asyncio
async def test_failed_moves_in_one_container_return_to_committed_order(decided, memory_repo):
    first = asyncio.create_task(decided.move_task("T1", "P1", 2))
    await _settle()
    second = asyncio.create_task(decided.move_task("T2", "P1", 2))
    await _settle()
    assert decided.children("P1") == ["T3", "T1", "T2"]

    decided.service.decisions["T1"].set_result(ValidationError("rejected"))
    with pytest.raises(ValidationError):
        await first
    # T2's move is still in flight and stays applied on the committed order
    assert decided.children("P1") == ["T1", "T3", "T2"]

    decided.service.decisions["T2"].set_result(ValidationError("rejected"))
    with pytest.raises(ValidationError):
        await second
    assert decided.children("P1") == _server_order(memory_repo, "P1") == ["T1", "T2", "T3"]
    assert _positions(decided, "P1") == [0, 1, 2]
    assert decided.pending == []


@pytest.mark.asyncio
async def test_failed_move_after_committed_neighbour(decided, memory_repo):
    first = asyncio.create_task(decided.move_task("T1", "P1", 2))
    await _settle()
    second = asyncio.create_task(decided.move_task("T2", "P1", 2))
    await _settle()

    decided.service.decisions["T1"].set_result(None)
    await first
    assert decided.children("P1") == ["T3", "T1", "T2"]

    decided.service.decisions["T2"].set_result(ValidationError("rejected"))
    with pytest.raises(ValidationError):
        await second
    assert decided.children("P1") == _server_order(memory_repo, "P1") == ["T2", "T3", "T1"]
    assert _positions(decided, "P1") == [0, 1, 2]


@pytest.mark.asyncio
async def test_failed_cross_container_move_keeps_other_pending_move(decided, memory_repo):
    first = asyncio.create_task(decided.move_task("T1", "P2", 0))
    await _settle()
    second = asyncio.create_task(decided.move_task("T3", "P1", 0))
    await _settle()
    assert decided.children("P1") == ["T3", "T2"]
    assert decided.children("P2") == ["T1"]

    decided.service.decisions["T1"].set_result(ValidationError("rejected"))
    with pytest.raises(ValidationError):
        await first
    assert decided.children("P1") == ["T3", "T1", "T2"]
    assert decided.children("P2") == []
    assert decided.board.items["T1"].container == "P1"

    decided.service.decisions["T3"].set_result(None)
    await second
    assert decided.children("P1") == _server_order(memory_repo, "P1") == ["T3", "T1", "T2"]


# --- ordering of moves ---


@pytest.mark.asyncio
async def test_moves_of_same_item_run_in_order(gated, memory_repo):
    first = asyncio.create_task(gated.move_task("T1", "P2", 0))
    second = asyncio.create_task(gated.move_task("T1", "P3", 1))
    await _settle()

    assert gated.service.calls == [("T1", "P2", 0)]

    gated.service.gate.set()
    await asyncio.gather(first, second)

    assert gated.service.calls == [("T1", "P2", 0), ("T1", "P3", 1)]
    assert gated.children("P3") == ["T1"]
    state = memory_repo.snapshot()
    assert [item.id for item in state.children("P3")] == ["T1"]
    assert [item.id for item in state.children("P2")] == []


@pytest.mark.asyncio
async def test_moves_of_different_items_run_concurrently(gated):
    first = asyncio.create_task(gated.move_task("T1", "P2", 0))
    second = asyncio.create_task(gated.move_task("T3", "P2", 0))
    await _settle()

    assert len(gated.service.calls) == 2
    assert gated.children("P2") == ["T3", "T1"]

    gated.service.gate.set()
    await asyncio.gather(first, second)
    await gated.load(["P1", "P2"])
    assert sorted(gated.children("P2")) == ["T1", "T3"]
    assert gated.children("P1") == ["T2"]


@pytest.mark.asyncio
async def test_bulk_reorder_waits_for_pending_member_move(gated, memory_repo):
    move = asyncio.create_task(gated.move_task("T1", "P1", 2))
    await _settle()
    reorder = asyncio.create_task(gated.bulk_reorder("P1", ["T3", "T2", "T1"]))
    await _settle()

    assert gated.service.calls == [("T1", "P1", 2)]
    assert len(gated.pending) == 1

    gated.service.gate.set()
    await asyncio.gather(move, reorder)

    assert gated.service.calls == [("T1", "P1", 2), ("P1", ["T3", "T2", "T1"])]
    assert gated.children("P1") == ["T3", "T2", "T1"]
    assert [item.id for item in memory_repo.snapshot().children("P1")] == ["T3", "T2", "T1"]


@pytest.mark.asyncio
async def test_move_waits_for_pending_bulk_reorder(gated):
    reorder = asyncio.create_task(gated.bulk_reorder("P1", ["T3", "T2", "T1"]))
    await _settle()
    move = asyncio.create_task(gated.move_task("T2", "P2", 0))
    await _settle()

    assert gated.service.calls == [("P1", ["T3", "T2", "T1"])]

    gated.service.gate.set()
    await asyncio.gather(reorder, move)
    assert gated.children("P1") == ["T3", "T1"]
    assert gated.children("P2") == ["T2"]


@pytest.mark.asyncio
async def test_locks_are_dropped_once_released(gated):
    first = asyncio.create_task(gated.move_task("T1", "P2", 0))
    second = asyncio.create_task(gated.move_task("T1", "P3", 0))
    await _settle()
    assert list(gated._locks) == ["T1"]

    gated.service.gate.set()
    await asyncio.gather(first, second)
    await gated.bulk_reorder("P1", ["T3", "T2"])
    with pytest.raises(ItemNotFound):
        await gated.move_task("T99", "P1", 0)

    assert gated._locks == {}


# --- bulk reorder ---


@pytest.mark.asyncio
async def test_bulk_reorder(store, memory_repo):
    events = _record(store)
    patch = await store.bulk_reorder("P1", ["T3", "T1", "T2"])
    assert patch == [("T3", 0), ("T1", 1), ("T2", 2)]
    assert store.children("P1") == ["T3", "T1", "T2"]
    assert [item.id for item in memory_repo.snapshot().children("P1")] == ["T3", "T1", "T2"]
    assert [type(e) for e in events] == [MoveApplied, MoveCommitted]


@pytest.mark.asyncio
async def test_bulk_reorder_checked_against_cache(store):
    events = _record(store)
    with pytest.raises(StaleOrderError):
        await store.bulk_reorder("P1", ["T3", "T1"])
    assert events == []


@pytest.mark.asyncio
async def test_bulk_reorder_rolls_back_when_server_is_ahead(store, service):
    await service.create_item("task", "P1", "Added elsewhere")
    with pytest.raises(StaleOrderError):
        await store.bulk_reorder("P1", ["T3", "T2", "T1"])
    assert store.children("P1") == ["T1", "T2", "T3"]
    assert [store.board.items[i].position for i in ("T1", "T2", "T3")] == [0, 1, 2]


# --- events ---


@pytest.mark.asyncio
async def test_broken_subscriber_is_logged(store, caplog):
    def broken(event):
        raise RuntimeError("view crashed")

    store.subscribe(broken)
    with caplog.at_level(logging.ERROR, logger="labkanban.store"):
        await store.move_task("T3", "P1", 0)
    assert "store subscriber failed" in caplog.text
    assert store.children("P1") == ["T3", "T1", "T2"]


@pytest.mark.asyncio
async def test_unsubscribe(store):
    events = []
    unsubscribe = store.subscribe(events.append)
    unsubscribe()
    await store.move_task("T3", "P1", 0)
    assert events == []


def test_pending_move_state_machine():
    move = PendingMove(container_ids=("P1",))
    move.advance(MoveState.APPLYING)
    move.advance(MoveState.COMMITTED)
    with pytest.raises(RuntimeError):
        move.advance(MoveState.ROLLED_BACK)
