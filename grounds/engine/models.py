"""Core data models for the lab lifecycle manager.

All dataclasses, enums, and type aliases. Single source of truth
to avoid circular imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Difficulty(str, Enum):
    """Closed difficulty scale used by the catalog."""
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


class SessionStatus(str, Enum):
    """Session lifecycle states. See lifecycle.py for transition rules."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class Outcome(str, Enum):
    """What a start/stop request ended up doing."""
    STARTED = "started"
    STOPPED = "stopped"
    ALREADY_ACTIVE = "already_active"
    NOT_ACTIVE = "not_active"
    OPERATION_IN_PROGRESS = "operation_in_progress"
    PROVISION_FAILED = "provision_failed"
    DEPROVISION_FAILED = "deprovision_failed"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def format_window(minutes: int) -> str:
    """Render a rental window as the display string shown next to a box."""
    h, m = divmod(max(0, int(minutes)), 60)
    return f"{h}h {m}m"


@dataclass(frozen=True)
class EnvironmentDefinition:
    """A selectable practice target from the catalog."""
    id: int
    name: str
    difficulty: Difficulty
    os: str
    category: str
    description: str


@dataclass
class LabSession:
    """Persisted state of one provisioned (or provisioning) environment.

    A Stopped environment has no record at all; ``SessionStatus.STOPPED``
    only appears in materialized views.
    """
    environment_id: int
    status: SessionStatus
    container_identity: str | None = None
    leased_address: str | None = None
    time_remaining: str | None = None
    owner: str | None = None
    updated_at: str = field(default_factory=_utcnow_iso)

    def validate(self) -> None:
        """Raise ValueError if the fields do not match the status."""
        if self.status == SessionStatus.STOPPED:
            raise ValueError(
                f"Stopped sessions are not persisted (environment {self.environment_id})"
            )
        has_container = self.container_identity is not None
        needs_container = self.status in (SessionStatus.RUNNING, SessionStatus.STOPPING)
        if has_container != needs_container:
            raise ValueError(
                f"Session {self.environment_id} in state {self.status.value} "
                f"{'must' if needs_container else 'must not'} carry a container identity"
            )
        running = self.status == SessionStatus.RUNNING
        for name in ("leased_address", "time_remaining"):
            if (getattr(self, name) is not None) != running:
                raise ValueError(
                    f"Session {self.environment_id} in state {self.status.value} "
                    f"{'requires' if running else 'cannot have'} {name}"
                )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "environment_id": self.environment_id,
            "status": self.status.value,
        }
        for key in ("container_identity", "leased_address", "time_remaining", "owner"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        data["updated_at"] = self.updated_at
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LabSession:
        session = cls(
            environment_id=int(data["environment_id"]),
            status=SessionStatus(data["status"]),
            container_identity=data.get("container_identity"),
            leased_address=data.get("leased_address"),
            time_remaining=data.get("time_remaining"),
            owner=data.get("owner"),
            updated_at=data.get("updated_at") or _utcnow_iso(),
        )
        session.validate()
        return session


@dataclass(frozen=True)
class ProvisionResult:
    """Reply from the control plane to a provision call."""
    success: bool
    container_identity: str | None = None
    leased_address: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class DeprovisionResult:
    """Reply from the control plane to a deprovision call."""
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class ChainAccount:
    """A funded account exposed by a running box."""
    account: str
    private_key: str


@dataclass(frozen=True)
class ContractDeployment:
    """A contract creation found on a box's chain."""
    transaction_hash: str
    block_number: int
    sender: str
    contract_address: str
    gas: int | None = None
    gas_used: int | None = None


@dataclass
class OperationResult:
    """Returned by LifecycleController.start/stop."""
    outcome: Outcome
    environment_id: int
    session: LabSession | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome in (Outcome.STARTED, Outcome.STOPPED)


@dataclass(frozen=True)
class LabView:
    """A catalog entry decorated with its live session fields."""
    id: int
    name: str
    difficulty: Difficulty
    os: str
    category: str
    description: str
    status: SessionStatus = SessionStatus.STOPPED
    container_identity: str | None = None
    leased_address: str | None = None
    time_remaining: str | None = None
    owner: str | None = None


@dataclass(frozen=True)
class BoardSummary:
    """Header counts for a board of views."""
    active: int
    starting: int
    available: int
