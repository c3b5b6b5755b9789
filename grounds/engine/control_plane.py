"""Control-plane clients.

The control plane creates and destroys the container behind a lab.
The lifecycle controller only talks to the ControlPlaneClient
interface:

- HttpControlPlaneClient: JSON over HTTP (aiohttp).
- SimulatedControlPlaneClient: in-process demo backend, used when no
  control-plane URL is configured.

Backend-reported failures come back as results with ``success=False``.
Transport problems (unreachable host, bad JSON, timeout) raise
ControlPlaneTransportError so callers can tell the two apart.
"""
from __future__ import annotations

import asyncio
import logging
import random
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

import aiohttp

from .errors import ControlPlaneError, ControlPlaneTransportError
from .models import ChainAccount, DeprovisionResult, ProvisionResult

logger = logging.getLogger(__name__)


class ControlPlaneClient(ABC):
    """Boundary to the backend that owns the containers."""

    @abstractmethod
    async def provision(self, environment_id: int) -> ProvisionResult:
        """Create a container for *environment_id*."""

    @abstractmethod
    async def deprovision(self, container_identity: str) -> DeprovisionResult:
        """Destroy the container named *container_identity*."""

    @abstractmethod
    async def list_accounts(self, container_identity: str) -> list[ChainAccount]:
        """List the funded accounts exposed by a running container."""

    async def close(self) -> None:
        """Release network resources."""


class HttpControlPlaneClient(ControlPlaneClient):
    """JSON/HTTP control plane.

    Endpoints (relative to *base_url*):
        POST /provision     {"box_id": 3}             -> {success, container_name, ip, error?}
        POST /deprovision   {"container_name": "..."} -> {success, error?}
        GET  /accounts/<container_name>               -> {success, accounts: [...], error?}
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._session = session
        self._owns_session = session is None

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _request(
        self, operation: str, method: str, path: str, payload: dict | None = None,
    ) -> tuple[int, dict[str, Any]]:
        url = f"{self._base_url}{path}"
        try:
            async with self._client().request(
                method,
                url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as response:
                try:
                    body = await response.json(content_type=None)
                except ValueError as exc:
                    raise ControlPlaneTransportError(
                        operation, f"HTTP {response.status}: invalid JSON body ({exc})"
                    ) from exc
                status = response.status
        except asyncio.TimeoutError as exc:
            raise ControlPlaneTransportError(
                operation, f"no answer within {self._timeout}s"
            ) from exc
        except aiohttp.ClientError as exc:
            raise ControlPlaneTransportError(operation, str(exc) or type(exc).__name__) from exc

        if not isinstance(body, dict):
            raise ControlPlaneTransportError(
                operation, f"HTTP {status}: expected a JSON object"
            )
        logger.debug("control plane %s %s -> %s", method, url, status)
        return status, body

    @staticmethod
    def _error_text(status: int, body: dict[str, Any]) -> str:
        return str(body.get("error") or f"HTTP {status}")

    async def provision(self, environment_id: int) -> ProvisionResult:
        status, body = await self._request(
            "provision", "POST", "/provision", {"box_id": environment_id}
        )
        if status >= 400 or not body.get("success"):
            return ProvisionResult(success=False, error=self._error_text(status, body))
        container = body.get("container_name")
        address = body.get("ip")
        if not container or not address:
            return ProvisionResult(
                success=False,
                error="control plane reported success without container_name/ip",
            )
        return ProvisionResult(
            success=True, container_identity=str(container), leased_address=str(address)
        )

    async def deprovision(self, container_identity: str) -> DeprovisionResult:
        status, body = await self._request(
            "deprovision", "POST", "/deprovision",
            {"container_name": container_identity},
        )
        if status >= 400 or not body.get("success"):
            return DeprovisionResult(success=False, error=self._error_text(status, body))
        return DeprovisionResult(success=True)

    async def list_accounts(self, container_identity: str) -> list[ChainAccount]:
        status, body = await self._request(
            "accounts", "GET", f"/accounts/{container_identity}"
        )
        if status >= 400 or not body.get("success"):
            raise ControlPlaneError("accounts", self._error_text(status, body))
        return [
            ChainAccount(account=str(a["account"]), private_key=str(a["private_key"]))
            for a in body.get("accounts") or []
        ]

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


class SimulatedControlPlaneClient(ControlPlaneClient):
    """Demo backend: waits, then hands out a fake container and address.

    Ids listed in *fail_ids* fail to provision, which is handy for
    exercising rollback from the CLI.
    """

    def __init__(
        self,
        delay_seconds: float = 3.0,
        fail_ids: Iterable[int] = (),
        rng: random.Random | None = None,
    ) -> None:
        self._delay = delay_seconds
        self._fail_ids = set(fail_ids)
        self._rng = rng or random.Random()

    async def provision(self, environment_id: int) -> ProvisionResult:
        await asyncio.sleep(self._delay)
        if environment_id in self._fail_ids:
            return ProvisionResult(
                success=False, error=f"no capacity for box {environment_id}"
            )
        container = f"box-{environment_id}-{uuid.uuid4().hex[:8]}"
        address = f"10.10.11.{self._rng.randint(100, 254)}"
        logger.info("simulated provision box=%s -> %s %s", environment_id, container, address)
        return ProvisionResult(
            success=True, container_identity=container, leased_address=address
        )

    async def deprovision(self, container_identity: str) -> DeprovisionResult:
        await asyncio.sleep(self._delay / 3)
        return DeprovisionResult(success=True)

    async def list_accounts(self, container_identity: str) -> list[ChainAccount]:
        rng = random.Random(container_identity)
        return [
            ChainAccount(
                account="0x" + "".join(rng.choice("0123456789abcdef") for _ in range(40)),
                private_key="0x" + "".join(rng.choice("0123456789abcdef") for _ in range(64)),
            )
            for _ in range(5)
        ]
