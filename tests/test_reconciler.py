"""Tests for materialize() and the LabBoard observer."""

from __future__ import annotations

import asyncio

import pytest

from fakes import FakeControlPlane, make_catalog, settle
from grounds.engine.controller import LifecycleController
from grounds.engine.models import (
    BoardSummary,
    LabSession,
    LabView,
    SessionStatus,
)
from grounds.engine.reconciler import LabBoard, materialize, summarize
from grounds.shared.services.session_store import (
    FileSessionStore,
    MemorySessionStore,
)


def _running(env_id: int = 1) -> LabSession:
    return LabSession(
        env_id,
        SessionStatus.RUNNING,
        container_identity=f"c-{env_id}",
        leased_address="10.0.0.5",
        time_remaining="4h 0m",
        owner="0xabc",
    )


# ── materialize ──


class TestMaterialize:
    def test_empty_snapshot_means_all_stopped(self):
        views = materialize(make_catalog(), {})
        assert [v.id for v in views] == [1, 2, 3]
        assert all(v.status == SessionStatus.STOPPED for v in views)
        assert all(v.leased_address is None for v in views)

    def test_session_fields_are_copied(self):
        views = materialize(make_catalog(), {1: _running()})
        view = views[0]
        assert view.status == SessionStatus.RUNNING
        assert view.container_identity == "c-1"
        assert view.leased_address == "10.0.0.5"
        assert view.time_remaining == "4h 0m"
        assert view.owner == "0xabc"
        assert view.name == "Box A"

    def test_catalog_order_is_kept(self):
        catalog = list(reversed(make_catalog()))
        snapshot = {2: LabSession(2, SessionStatus.STARTING)}
        views = materialize(catalog, snapshot)
        assert [v.id for v in views] == [3, 2, 1]
        assert views[1].status == SessionStatus.STARTING

    def test_orphan_sessions_are_ignored(self):
        views = materialize(make_catalog(), {99: _running(99)})
        assert len(views) == 3
        assert all(v.status == SessionStatus.STOPPED for v in views)

    def test_is_deterministic(self):
        catalog = make_catalog()
        snapshot = {1: _running(), 3: LabSession(3, SessionStatus.STARTING)}
        assert materialize(catalog, snapshot) == materialize(catalog, snapshot)

    def test_does_not_mutate_inputs(self):
        catalog = make_catalog()
        snapshot = {1: _running()}
        before = (list(catalog), dict(snapshot))
        materialize(catalog, snapshot)
        assert (catalog, snapshot) == before

    def test_summary_counts(self):
        snapshot = {
            1: _running(1),
            2: LabSession(2, SessionStatus.STARTING),
        }
        summary = summarize(materialize(make_catalog(), snapshot))
        assert summary == BoardSummary(active=1, starting=1, available=1)

    def test_stopping_is_neither_active_nor_available(self):
        snapshot = {1: LabSession(1, SessionStatus.STOPPING, container_identity="c-1")}
        summary = summarize(materialize(make_catalog(), snapshot))
        assert summary == BoardSummary(active=0, starting=0, available=2)


# ── LabBoard ──


class TestLabBoard:
    def test_initial_views_reflect_store(self):
        store = MemorySessionStore()
        store.put(_running(2))
        board = LabBoard(make_catalog(), store)
        assert board.find(2).status == SessionStatus.RUNNING
        assert board.find(1).status == SessionStatus.STOPPED
        assert board.find(42) is None

    def test_updates_on_store_change(self):
        store = MemorySessionStore()
        rendered: list[list[LabView]] = []
        board = LabBoard(make_catalog(), store, on_change=rendered.append)
        rendered.clear()

        store.put(LabSession(1, SessionStatus.STARTING))
        store.put(_running(1))
        store.remove(1)

        assert [views[0].status for views in rendered] == [
            SessionStatus.STARTING,
            SessionStatus.RUNNING,
            SessionStatus.STOPPED,
        ]
        assert board.summary.available == 3

    def test_duplicate_notifications_are_harmless(self):
        store = MemorySessionStore()
        rendered: list[list[LabView]] = []
        board = LabBoard(make_catalog(), store, on_change=rendered.append)
        store.put(_running(1))
        rendered.clear()

        board.refresh()
        board.refresh()

        assert rendered == []
        assert board.find(1).status == SessionStatus.RUNNING

    def test_close_stops_updates(self):
        store = MemorySessionStore()
        board = LabBoard(make_catalog(), store)
        board.close()
        board.close()
        store.put(_running(1))
        assert board.find(1).status == SessionStatus.STOPPED

    def test_views_are_copies(self):
        board = LabBoard(make_catalog(), MemorySessionStore())
        board.views.clear()
        assert len(board.views) == 3


# ── Multiple observers ──


class TestMultipleObservers:
    @pytest.mark.asyncio
    async def test_second_board_follows_first_observers_start(self):
        store = MemorySessionStore()
        board_a = LabBoard(make_catalog(), store)
        board_b = LabBoard(make_catalog(), store)
        gate = asyncio.Event()
        controller = LifecycleController(store, FakeControlPlane(gate=gate))

        task = asyncio.create_task(controller.start(1))
        await settle()
        assert board_a.find(1).status == SessionStatus.STARTING
        assert board_b.find(1).status == SessionStatus.STARTING

        gate.set()
        await task
        for board in (board_a, board_b):
            view = board.find(1)
            assert view.status == SessionStatus.RUNNING
            assert view.leased_address == "10.0.0.5"
            assert view.time_remaining == "4h 0m"
        assert board_a.views == board_b.views

    @pytest.mark.asyncio
    async def test_boards_agree_after_stop(self):
        store = MemorySessionStore()
        store.put(_running(1))
        board_a = LabBoard(make_catalog(), store)
        board_b = LabBoard(make_catalog(), store)

        await LifecycleController(store, FakeControlPlane()).stop(1)

        assert board_a.find(1).status == SessionStatus.STOPPED
        assert board_a.views == board_b.views

    @pytest.mark.asyncio
    async def test_file_store_board_catches_up_on_poll(self, tmp_path):
        path = tmp_path / "sessions.json"
        writer_store = FileSessionStore(path)
        reader_store = FileSessionStore(path)
        board = LabBoard(make_catalog(), reader_store)

        await LifecycleController(writer_store, FakeControlPlane()).start(1)
        assert board.find(1).status == SessionStatus.STOPPED

        assert reader_store.poll()
        assert board.find(1).status == SessionStatus.RUNNING
        assert board.find(1).container_identity == "c-1"
