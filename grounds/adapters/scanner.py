"""Contract deployment scanner for a running box's chain.

Every box exposes an Ethereum JSON-RPC endpoint on port 8545 of its
leased address.  The scanner walks the most recent blocks and reports
each transaction that created a contract.

The scanner can follow a LabBoard: pass ``scanner.track`` as the
board's ``on_change`` callback and the endpoint moves to the first
running box whenever the board changes.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

import aiohttp

from grounds.engine.errors import ChainRpcError
from grounds.engine.models import ContractDeployment, LabView, SessionStatus

logger = logging.getLogger(__name__)

RPC_PORT = 8545
DEFAULT_DEPTH = 50


def rpc_url_for(view: LabView) -> str | None:
    """JSON-RPC endpoint of a running view, None otherwise."""
    if view.status != SessionStatus.RUNNING or not view.leased_address:
        return None
    return f"https://{view.leased_address}:{RPC_PORT}"


def first_rpc_url(views: Sequence[LabView]) -> str | None:
    for view in views:
        url = rpc_url_for(view)
        if url is not None:
            return url
    return None


def _quantity(method: str, value: Any) -> int | None:
    """Decode a JSON-RPC hex quantity such as ``"0x1a"``."""
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    try:
        return int(str(value), 16)
    except ValueError:
        raise ChainRpcError(method, f"not a hex quantity: {value!r}") from None


class ContractScanner:
    """Find contract creations in the last blocks of a box's chain."""

    def __init__(
        self,
        rpc_url: str | None = None,
        *,
        timeout_seconds: float = 30.0,
        verify_tls: bool = False,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._timeout = timeout_seconds
        # Boxes serve the endpoint with a self-signed certificate.
        self._verify_tls = verify_tls
        self._session = session
        self._owns_session = session is None
        self._request_id = 0

    @property
    def rpc_url(self) -> str | None:
        return self._rpc_url

    def track(self, views: list[LabView]) -> None:
        """LabBoard callback: point at the first running box."""
        url = first_rpc_url(views)
        if url != self._rpc_url:
            logger.info("Contract scanner endpoint: %s -> %s", self._rpc_url, url)
            self._rpc_url = url

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def call(self, method: str, params: list[Any]) -> Any:
        """Send one JSON-RPC request and return its ``result``."""
        if self._rpc_url is None:
            raise ChainRpcError(method, "no running box to connect to")
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": self._request_id,
        }
        try:
            async with self._client().post(
                self._rpc_url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                ssl=self._verify_tls,
            ) as response:
                if response.status >= 400:
                    raise ChainRpcError(method, f"HTTP {response.status}")
                try:
                    body = await response.json(content_type=None)
                except ValueError as exc:
                    raise ChainRpcError(method, f"invalid JSON body ({exc})") from exc
        except asyncio.TimeoutError as exc:
            raise ChainRpcError(method, f"no answer within {self._timeout}s") from exc
        except aiohttp.ClientError as exc:
            raise ChainRpcError(method, str(exc) or type(exc).__name__) from exc

        if not isinstance(body, dict):
            raise ChainRpcError(method, "expected a JSON object")
        error = body.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else error
            raise ChainRpcError(method, str(message))
        return body.get("result")

    async def block_number(self) -> int:
        latest = _quantity("eth_blockNumber", await self.call("eth_blockNumber", []))
        if latest is None:
            raise ChainRpcError("eth_blockNumber", "empty result")
        return latest

    async def scan(self, depth: int = DEFAULT_DEPTH) -> list[ContractDeployment]:
        """Contract creations in blocks ``latest - depth`` through ``latest``.

        Transactions without a ``to`` address are creations; the created
        address comes from the receipt.  Results are in chain order.
        """
        latest = await self.block_number()
        first = max(0, latest - depth)
        logger.info(
            "Scanning blocks %d..%d on %s for contract deployments",
            first, latest, self._rpc_url,
        )

        deployments: list[ContractDeployment] = []
        for number in range(first, latest + 1):
            block = await self.call("eth_getBlockByNumber", [hex(number), True])
            if not block:
                continue
            for tx in block.get("transactions") or []:
                if not isinstance(tx, dict) or tx.get("to") is not None:
                    continue
                receipt = await self.call("eth_getTransactionReceipt", [tx.get("hash")])
                if not receipt or not receipt.get("contractAddress"):
                    continue
                deployments.append(ContractDeployment(
                    transaction_hash=str(tx.get("hash")),
                    block_number=_quantity("eth_getBlockByNumber", tx.get("blockNumber")) or number,
                    sender=str(tx.get("from")),
                    contract_address=str(receipt["contractAddress"]),
                    gas=_quantity("eth_getBlockByNumber", tx.get("gas")),
                    gas_used=_quantity("eth_getTransactionReceipt", receipt.get("gasUsed")),
                ))
        logger.info("Found %d contract deployments", len(deployments))
        return deployments

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
