"""Tests for the lifecycle controller: optimistic writes, rollback, guards."""

from __future__ import annotations

import asyncio

import pytest

from fakes import (
    BrokenStore,
    ChangeRecorder,
    FakeControlPlane,
    PerIdControlPlane,
    settle,
)
from grounds.engine.config import GroundsConfig
from grounds.engine.controller import LifecycleController
from grounds.engine.errors import ControlPlaneTransportError, PersistenceError
from grounds.engine.models import (
    DeprovisionResult,
    LabSession,
    Outcome,
    ProvisionResult,
    SessionStatus,
)
from grounds.shared.services.session_store import MemorySessionStore


def _running(env_id: int = 1, owner: str | None = None) -> LabSession:
    return LabSession(
        env_id,
        SessionStatus.RUNNING,
        container_identity=f"c-{env_id}",
        leased_address=f"10.0.0.{env_id}",
        time_remaining="4h 0m",
        owner=owner,
    )


@pytest.fixture
def store():
    return MemorySessionStore()


# ── start ──


class TestStart:
    @pytest.mark.asyncio
    async def test_start_shows_starting_then_running(self, store):
        gate = asyncio.Event()
        client = FakeControlPlane(gate=gate)
        controller = LifecycleController(store, client)

        task = asyncio.create_task(controller.start(1, owner="0xabc"))
        await settle()

        pending = store.get(1)
        assert pending.status == SessionStatus.STARTING
        assert pending.container_identity is None
        assert pending.owner == "0xabc"
        assert controller.in_flight(1)

        gate.set()
        result = await task

        assert result.outcome == Outcome.STARTED
        assert result.ok
        session = store.get(1)
        assert session.status == SessionStatus.RUNNING
        assert session.container_identity == "c-1"
        assert session.leased_address == "10.0.0.5"
        assert session.time_remaining == "4h 0m"
        assert session.owner == "0xabc"
        assert result.session == session
        assert not controller.in_flight(1)
        assert client.provision_calls == [1]

    @pytest.mark.asyncio
    async def test_rental_window_comes_from_config(self, store):
        controller = LifecycleController(
            store, FakeControlPlane(), GroundsConfig(rental_window_minutes=90)
        )
        await controller.start(1)
        assert store.get(1).time_remaining == "1h 30m"

    @pytest.mark.asyncio
    async def test_provision_failure_removes_record(self, store):
        recorder = ChangeRecorder(store)
        store.subscribe(recorder)
        client = FakeControlPlane(
            provision_result=ProvisionResult(success=False, error="no capacity")
        )
        controller = LifecycleController(store, client)

        result = await controller.start(1)

        assert result.outcome == Outcome.PROVISION_FAILED
        assert result.error == "no capacity"
        assert not result.ok
        assert store.get(1) is None
        assert recorder.statuses(1) == ["starting", None]

    @pytest.mark.asyncio
    async def test_provision_failure_without_message(self, store):
        client = FakeControlPlane(provision_result=ProvisionResult(success=False))
        result = await LifecycleController(store, client).start(1)
        assert result.outcome == Outcome.PROVISION_FAILED
        assert result.error == "provisioning failed"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "reply",
        [
            ProvisionResult(success=True),
            ProvisionResult(success=True, container_identity="c-1"),
            ProvisionResult(success=True, leased_address="10.0.0.5"),
        ],
    )
    async def test_incomplete_success_is_rolled_back(self, store, reply):
        recorder = ChangeRecorder(store)
        store.subscribe(recorder)
        controller = LifecycleController(store, FakeControlPlane(provision_result=reply))

        result = await controller.start(1)

        assert result.outcome == Outcome.PROVISION_FAILED
        assert "without a container or address" in result.error
        assert store.get_all() == {}
        assert recorder.statuses(1) == ["starting", None]
        assert not controller.in_flight(1)

    @pytest.mark.asyncio
    async def test_provision_timeout_rolls_back(self, store):
        client = FakeControlPlane(gate=asyncio.Event())  # never released
        controller = LifecycleController(
            store, client, GroundsConfig(request_timeout_seconds=0.05)
        )

        result = await controller.start(1)

        assert result.outcome == Outcome.PROVISION_FAILED
        assert "timed out" in result.error
        assert store.get(1) is None
        assert not controller.in_flight(1)

    @pytest.mark.asyncio
    async def test_transport_error_rolls_back(self, store):
        client = FakeControlPlane()
        client.provision_error = ControlPlaneTransportError("provision", "connection refused")
        result = await LifecycleController(store, client).start(1)

        assert result.outcome == Outcome.PROVISION_FAILED
        assert "connection refused" in result.error
        assert store.get(1) is None

    @pytest.mark.asyncio
    async def test_client_crash_is_a_failure(self, store, caplog):
        client = FakeControlPlane()
        client.provision_error = RuntimeError("kaboom")
        result = await LifecycleController(store, client).start(1)

        assert result.outcome == Outcome.PROVISION_FAILED
        assert "kaboom" in result.error
        assert store.get(1) is None
        assert "crashed" in caplog.text

    @pytest.mark.asyncio
    async def test_cancel_rolls_back_and_propagates(self, store):
        client = FakeControlPlane(gate=asyncio.Event())
        controller = LifecycleController(store, client)

        task = asyncio.create_task(controller.start(1))
        await settle()
        assert store.get(1).status == SessionStatus.STARTING

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert store.get(1) is None
        assert not controller.in_flight(1)

    @pytest.mark.asyncio
    async def test_already_running_is_refused(self, store):
        store.put(_running())
        client = FakeControlPlane()
        result = await LifecycleController(store, client).start(1)

        assert result.outcome == Outcome.ALREADY_ACTIVE
        assert result.session == store.get(1)
        assert client.provision_calls == []

    @pytest.mark.asyncio
    async def test_stopping_is_refused_as_active(self, store):
        store.put(LabSession(1, SessionStatus.STOPPING, container_identity="c-1"))
        result = await LifecycleController(store, FakeControlPlane()).start(1)
        assert result.outcome == Outcome.ALREADY_ACTIVE

    @pytest.mark.asyncio
    async def test_foreign_starting_record_is_in_progress(self, store):
        store.put(LabSession(1, SessionStatus.STARTING))
        client = FakeControlPlane()
        result = await LifecycleController(store, client).start(1)

        assert result.outcome == Outcome.OPERATION_IN_PROGRESS
        assert store.get(1).status == SessionStatus.STARTING
        assert client.provision_calls == []

    @pytest.mark.asyncio
    async def test_second_start_while_in_flight(self, store):
        gate = asyncio.Event()
        client = FakeControlPlane(gate=gate)
        controller = LifecycleController(store, client)

        first = asyncio.create_task(controller.start(1))
        await settle()
        second = await controller.start(1)

        assert second.outcome == Outcome.OPERATION_IN_PROGRESS
        assert client.provision_calls == [1]

        gate.set()
        assert (await first).outcome == Outcome.STARTED

    @pytest.mark.asyncio
    async def test_store_failure_before_provision(self):
        store = BrokenStore()
        store.broken = True
        client = FakeControlPlane()
        controller = LifecycleController(store, client)

        with pytest.raises(PersistenceError):
            await controller.start(1)
        assert client.provision_calls == []
        assert not controller.in_flight(1)

    @pytest.mark.asyncio
    async def test_store_failure_after_provision_is_logged(self, caplog):
        store = BrokenStore()
        gate = asyncio.Event()
        controller = LifecycleController(store, FakeControlPlane(gate=gate))

        task = asyncio.create_task(controller.start(1))
        await settle()
        store.broken = True
        gate.set()

        with pytest.raises(PersistenceError):
            await task
        assert "could not be recorded" in caplog.text
        assert "c-1" in caplog.text


# ── stop ──


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_shows_stopping_then_removes(self, store):
        store.put(_running(owner="0xabc"))
        gate = asyncio.Event()
        client = FakeControlPlane(gate=gate)
        controller = LifecycleController(store, client)

        task = asyncio.create_task(controller.stop(1))
        await settle()

        pending = store.get(1)
        assert pending.status == SessionStatus.STOPPING
        assert pending.container_identity == "c-1"
        assert pending.leased_address is None
        assert pending.owner == "0xabc"

        gate.set()
        result = await task

        assert result.outcome == Outcome.STOPPED
        assert store.get(1) is None
        assert client.deprovision_calls == ["c-1"]

    @pytest.mark.asyncio
    async def test_deprovision_failure_restores_previous_record(self, store):
        previous = _running()
        store.put(previous)
        recorder = ChangeRecorder(store)
        store.subscribe(recorder)
        client = FakeControlPlane(
            deprovision_result=DeprovisionResult(success=False, error="busy")
        )

        result = await LifecycleController(store, client).stop(1)

        assert result.outcome == Outcome.DEPROVISION_FAILED
        assert result.error == "busy"
        assert store.get(1) == previous
        assert result.session == previous
        assert recorder.statuses(1) == ["stopping", "running"]

    @pytest.mark.asyncio
    async def test_deprovision_timeout_restores(self, store):
        previous = _running()
        store.put(previous)
        controller = LifecycleController(
            store,
            FakeControlPlane(gate=asyncio.Event()),
            GroundsConfig(request_timeout_seconds=0.05),
        )

        result = await controller.stop(1)

        assert result.outcome == Outcome.DEPROVISION_FAILED
        assert store.get(1) == previous

    @pytest.mark.asyncio
    async def test_cancel_restores_and_propagates(self, store):
        previous = _running()
        store.put(previous)
        controller = LifecycleController(store, FakeControlPlane(gate=asyncio.Event()))

        task = asyncio.create_task(controller.stop(1))
        await settle()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert store.get(1) == previous

    @pytest.mark.asyncio
    async def test_stop_without_record(self, store):
        client = FakeControlPlane()
        result = await LifecycleController(store, client).stop(1)

        assert result.outcome == Outcome.NOT_ACTIVE
        assert client.deprovision_calls == []

    @pytest.mark.asyncio
    async def test_stop_while_starting_is_not_active(self, store):
        store.put(LabSession(1, SessionStatus.STARTING))
        client = FakeControlPlane()
        result = await LifecycleController(store, client).stop(1)

        assert result.outcome == Outcome.NOT_ACTIVE
        assert store.get(1).status == SessionStatus.STARTING
        assert client.deprovision_calls == []

    @pytest.mark.asyncio
    async def test_stop_while_stopping_is_in_progress(self, store):
        store.put(LabSession(1, SessionStatus.STOPPING, container_identity="c-1"))
        result = await LifecycleController(store, FakeControlPlane()).stop(1)
        assert result.outcome == Outcome.OPERATION_IN_PROGRESS

    @pytest.mark.asyncio
    async def test_stop_during_local_start(self, store):
        gate = asyncio.Event()
        controller = LifecycleController(store, FakeControlPlane(gate=gate))

        start = asyncio.create_task(controller.start(1))
        await settle()
        result = await controller.stop(1)

        assert result.outcome == Outcome.OPERATION_IN_PROGRESS
        gate.set()
        await start
        assert store.get(1).status == SessionStatus.RUNNING


# ── Across environments and observers ──


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_different_ids_run_concurrently(self, store):
        gate = asyncio.Event()
        client = PerIdControlPlane(gate=gate)
        controller = LifecycleController(store, client)

        tasks = [asyncio.create_task(controller.start(i)) for i in (1, 2, 3)]
        await settle()
        assert sorted(client.provision_calls) == [1, 2, 3]
        assert all(s.status == SessionStatus.STARTING for s in store.get_all().values())

        gate.set()
        results = await asyncio.gather(*tasks)

        assert [r.outcome for r in results] == [Outcome.STARTED] * 3
        assert {s.container_identity for s in store.get_all().values()} == {
            "c-1", "c-2", "c-3",
        }

    @pytest.mark.asyncio
    async def test_full_cycle_restarts(self, store):
        controller = LifecycleController(store, FakeControlPlane())
        assert (await controller.start(1)).outcome == Outcome.STARTED
        assert (await controller.stop(1)).outcome == Outcome.STOPPED
        assert (await controller.start(1)).outcome == Outcome.STARTED

    @pytest.mark.asyncio
    async def test_second_controller_sees_first_controllers_record(self, store):
        gate = asyncio.Event()
        first = LifecycleController(store, FakeControlPlane(gate=gate))
        second_client = FakeControlPlane()
        second = LifecycleController(store, second_client)

        task = asyncio.create_task(first.start(1))
        await settle()

        assert (await second.start(1)).outcome == Outcome.OPERATION_IN_PROGRESS
        assert (await second.stop(1)).outcome == Outcome.NOT_ACTIVE

        gate.set()
        await task
        assert (await second.stop(1)).outcome == Outcome.STOPPED
        assert second_client.deprovision_calls == ["c-1"]
        assert store.get(1) is None

    @pytest.mark.asyncio
    async def test_every_persisted_state_is_consistent(self, store):
        snapshots: list[dict[int, LabSession]] = []
        store.subscribe(lambda change: snapshots.append(store.get_all()))
        controller = LifecycleController(store, PerIdControlPlane())
        failing = LifecycleController(
            store,
            FakeControlPlane(
                provision_result=ProvisionResult(success=False, error="nope"),
            ),
        )

        await controller.start(1)
        await failing.start(2)
        await controller.start(3)
        await controller.stop(1)

        assert snapshots
        for snapshot in snapshots:
            for session in snapshot.values():
                session.validate()
        assert list(store.get_all()) == [3]
