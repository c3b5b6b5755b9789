"""Lifecycle controller — turns start/stop intents into session transitions.

Every request follows the same shape:

1. Read the current record from the store (never from a view).
2. Refuse with a policy outcome if the request makes no sense now.
3. Write the optimistic transitional state (Starting / Stopping).
4. Await the control plane, bounded by ``request_timeout_seconds``.
5. Write the confirmed state, or roll the optimistic write back.

Only one control-plane call per environment id may be in flight in a
controller.  A second request for the same id is refused with
OPERATION_IN_PROGRESS; requests are never queued.  Different ids are
independent and can be awaited concurrently.

The in-flight guard is advisory across processes: two controllers on
different hosts reading the same store can both pass step 1, and the
last writer wins.
"""
from __future__ import annotations

import asyncio
import logging

from grounds.shared.services.session_store import SessionStore

from .config import GroundsConfig
from .control_plane import ControlPlaneClient
from .errors import ControlPlaneTransportError, PersistenceError
from .lifecycle import validate_transition
from .models import (
    DeprovisionResult,
    LabSession,
    OperationResult,
    Outcome,
    ProvisionResult,
    SessionStatus,
    format_window,
)

logger = logging.getLogger(__name__)


class LifecycleController:
    """Owns the lab session state machine for one observer."""

    def __init__(
        self,
        store: SessionStore,
        client: ControlPlaneClient,
        config: GroundsConfig | None = None,
    ) -> None:
        config = config or GroundsConfig()
        self._store = store
        self._client = client
        self._timeout = config.request_timeout_seconds
        self._time_remaining = format_window(config.rental_window_minutes)
        self._in_flight: set[int] = set()

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def client(self) -> ControlPlaneClient:
        return self._client

    def in_flight(self, environment_id: int) -> bool:
        """True while this controller awaits the control plane for the id."""
        return environment_id in self._in_flight

    # ── start ───────────────────────────────────────────────

    async def start(
        self, environment_id: int, owner: str | None = None
    ) -> OperationResult:
        """Provision *environment_id*.

        Returns STARTED, ALREADY_ACTIVE, OPERATION_IN_PROGRESS or
        PROVISION_FAILED.  Raises PersistenceError if the store cannot
        record a transition.
        """
        if environment_id in self._in_flight:
            return self._refuse(
                Outcome.OPERATION_IN_PROGRESS, environment_id,
                "a request for this environment is already running",
            )

        current = self._store.get(environment_id)
        if current is not None:
            if current.status in (SessionStatus.RUNNING, SessionStatus.STOPPING):
                return self._refuse(
                    Outcome.ALREADY_ACTIVE, environment_id,
                    f"environment is {current.status.value}", current,
                )
            # Starting without a local call: another observer owns it.
            return self._refuse(
                Outcome.OPERATION_IN_PROGRESS, environment_id,
                "environment is starting", current,
            )

        validate_transition(SessionStatus.STOPPED, SessionStatus.STARTING)
        self._in_flight.add(environment_id)
        try:
            return await self._provision(environment_id, owner)
        finally:
            self._in_flight.discard(environment_id)

    async def _provision(self, environment_id: int, owner: str | None) -> OperationResult:
        self._store.put(
            LabSession(environment_id, SessionStatus.STARTING, owner=owner)
        )
        logger.info("start env=%s owner=%s: provisioning", environment_id, owner)

        try:
            reply = await asyncio.wait_for(
                self._client.provision(environment_id), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            reply = ProvisionResult(
                success=False,
                error=f"provisioning timed out after {self._timeout}s",
            )
        except ControlPlaneTransportError as exc:
            reply = ProvisionResult(success=False, error=str(exc))
        except asyncio.CancelledError:
            self._rollback_start(environment_id)
            raise
        except Exception as exc:
            logger.exception("start env=%s: control plane client crashed", environment_id)
            reply = ProvisionResult(success=False, error=f"{type(exc).__name__}: {exc}")

        if reply.success and (
            reply.container_identity is None or reply.leased_address is None
        ):
            reply = ProvisionResult(
                success=False,
                error="control plane reported success without a container or address",
            )

        if not reply.success:
            self._rollback_start(environment_id)
            logger.warning("start env=%s failed: %s", environment_id, reply.error)
            return OperationResult(
                Outcome.PROVISION_FAILED, environment_id,
                error=reply.error or "provisioning failed",
            )

        validate_transition(SessionStatus.STARTING, SessionStatus.RUNNING)
        running = LabSession(
            environment_id,
            SessionStatus.RUNNING,
            container_identity=reply.container_identity,
            leased_address=reply.leased_address,
            time_remaining=self._time_remaining,
            owner=owner,
        )
        try:
            self._store.put(running)
        except PersistenceError:
            logger.error(
                "start env=%s: container %s at %s is up but could not be recorded",
                environment_id, reply.container_identity, reply.leased_address,
            )
            raise
        logger.info(
            "start env=%s: running as %s at %s",
            environment_id, running.container_identity, running.leased_address,
        )
        return OperationResult(Outcome.STARTED, environment_id, running)

    def _rollback_start(self, environment_id: int) -> None:
        validate_transition(SessionStatus.STARTING, SessionStatus.STOPPED)
        self._store.remove(environment_id)

    # ── stop ────────────────────────────────────────────────

    async def stop(self, environment_id: int) -> OperationResult:
        """Deprovision *environment_id*.

        Returns STOPPED, NOT_ACTIVE, OPERATION_IN_PROGRESS or
        DEPROVISION_FAILED.  Raises PersistenceError if the store cannot
        record a transition.
        """
        if environment_id in self._in_flight:
            return self._refuse(
                Outcome.OPERATION_IN_PROGRESS, environment_id,
                "a request for this environment is already running",
            )

        current = self._store.get(environment_id)
        if current is None or current.container_identity is None:
            return self._refuse(
                Outcome.NOT_ACTIVE, environment_id,
                "environment is not running", current,
            )
        if current.status == SessionStatus.STOPPING:
            return self._refuse(
                Outcome.OPERATION_IN_PROGRESS, environment_id,
                "environment is stopping", current,
            )

        validate_transition(current.status, SessionStatus.STOPPING)
        self._in_flight.add(environment_id)
        try:
            return await self._deprovision(current)
        finally:
            self._in_flight.discard(environment_id)

    async def _deprovision(self, previous: LabSession) -> OperationResult:
        environment_id = previous.environment_id
        container = previous.container_identity
        assert container is not None
        self._store.put(
            LabSession(
                environment_id,
                SessionStatus.STOPPING,
                container_identity=container,
                owner=previous.owner,
            )
        )
        logger.info("stop env=%s: deprovisioning %s", environment_id, container)

        try:
            reply = await asyncio.wait_for(
                self._client.deprovision(container), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            reply = DeprovisionResult(
                success=False,
                error=f"deprovisioning timed out after {self._timeout}s",
            )
        except ControlPlaneTransportError as exc:
            reply = DeprovisionResult(success=False, error=str(exc))
        except asyncio.CancelledError:
            self._rollback_stop(previous)
            raise
        except Exception as exc:
            logger.exception("stop env=%s: control plane client crashed", environment_id)
            reply = DeprovisionResult(success=False, error=f"{type(exc).__name__}: {exc}")

        if not reply.success:
            self._rollback_stop(previous)
            logger.warning("stop env=%s failed: %s", environment_id, reply.error)
            return OperationResult(
                Outcome.DEPROVISION_FAILED, environment_id, previous,
                error=reply.error or "deprovisioning failed",
            )

        validate_transition(SessionStatus.STOPPING, SessionStatus.STOPPED)
        self._store.remove(environment_id)
        logger.info("stop env=%s: stopped", environment_id)
        return OperationResult(Outcome.STOPPED, environment_id)

    def _rollback_stop(self, previous: LabSession) -> None:
        validate_transition(SessionStatus.STOPPING, SessionStatus.RUNNING)
        self._store.put(previous)

    # ── helpers ─────────────────────────────────────────────

    @staticmethod
    def _refuse(
        outcome: Outcome,
        environment_id: int,
        reason: str,
        session: LabSession | None = None,
    ) -> OperationResult:
        logger.info("%s env=%s: %s", outcome.value, environment_id, reason)
        return OperationResult(outcome, environment_id, session, error=reason)
