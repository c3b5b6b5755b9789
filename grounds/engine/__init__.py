"""Proving Grounds — lab session lifecycle engine."""
from .models import (
    BoardSummary,
    ChainAccount,
    ContractDeployment,
    DeprovisionResult,
    Difficulty,
    EnvironmentDefinition,
    LabSession,
    LabView,
    OperationResult,
    Outcome,
    ProvisionResult,
    SessionStatus,
)
from .config import GroundsConfig
from .errors import (
    ArtifactUnavailable,
    CatalogUnavailable,
    ChainRpcError,
    ControlPlaneError,
    ControlPlaneTransportError,
    GroundsError,
    PersistenceError,
)

__all__ = [
    # Controller (lazy import to avoid circular deps with the store)
    "LifecycleController",
    # Models
    "BoardSummary",
    "ChainAccount",
    "ContractDeployment",
    "DeprovisionResult",
    "Difficulty",
    "EnvironmentDefinition",
    "LabSession",
    "LabView",
    "OperationResult",
    "Outcome",
    "ProvisionResult",
    "SessionStatus",
    # Config
    "GroundsConfig",
    "load_yaml_config",
    # Catalog / control plane (lazy import)
    "CatalogLoader",
    "ControlPlaneClient",
    "HttpControlPlaneClient",
    "SimulatedControlPlaneClient",
    # Reconciliation (lazy import)
    "LabBoard",
    "materialize",
    "summarize",
    # Errors
    "ArtifactUnavailable",
    "CatalogUnavailable",
    "ChainRpcError",
    "ControlPlaneError",
    "ControlPlaneTransportError",
    "GroundsError",
    "PersistenceError",
]


def __getattr__(name: str):
    if name == "LifecycleController":
        from .controller import LifecycleController
        return LifecycleController
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    if name == "CatalogLoader":
        from .catalog import CatalogLoader
        return CatalogLoader
    if name in ("ControlPlaneClient", "HttpControlPlaneClient", "SimulatedControlPlaneClient"):
        from . import control_plane
        return getattr(control_plane, name)
    if name in ("LabBoard", "materialize", "summarize"):
        from . import reconciler
        return getattr(reconciler, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
