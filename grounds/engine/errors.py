"""Exception hierarchy for the lab lifecycle manager.

Only genuinely exceptional conditions live here. Policy no-ops and
rolled-back provisioning failures are reported through
``OperationResult`` instead of being raised.
"""
from __future__ import annotations


class GroundsError(Exception):
    """Base exception for all lab manager errors."""


class CatalogUnavailable(GroundsError):
    """The environment catalog could not be read or parsed."""
    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Catalog {source} is unavailable: {reason}")


class PersistenceError(GroundsError):
    """The session store medium rejected a read or write."""
    def __init__(self, location: str, reason: str):
        self.location = location
        self.reason = reason
        super().__init__(f"Session store {location}: {reason}")


class ControlPlaneError(GroundsError):
    """The control plane refused a request that has no result type."""
    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Control plane {operation} failed: {reason}")


class ControlPlaneTransportError(ControlPlaneError):
    """The control plane could not be reached or did not answer in time."""


class ArtifactUnavailable(GroundsError):
    """The artifact service refused to issue a file for a subject."""
    def __init__(self, subject: str, reason: str):
        self.subject = subject
        self.reason = reason
        super().__init__(f"No artifact for {subject}: {reason}")


class ChainRpcError(GroundsError):
    """A box's JSON-RPC endpoint failed or returned an error object."""
    def __init__(self, method: str, reason: str):
        self.method = method
        self.reason = reason
        super().__init__(f"RPC {method} failed: {reason}")
