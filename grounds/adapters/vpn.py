"""VPN configuration issuance.

Thin client for the artifact service that hands out an OpenVPN profile
per user.  Completely independent of lab sessions.
"""
from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path

import aiohttp

from grounds.engine.errors import ArtifactUnavailable, ControlPlaneTransportError

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


def vpn_filename(subject: str) -> str:
    """File name used when saving a profile for *subject*."""
    return f"vpn-config-{_UNSAFE.sub('_', subject)}.ovpn"


class VpnConfigClient:
    """Fetch ``.ovpn`` profiles from ``POST {base_url}/generate-vpn``."""

    def __init__(self, base_url: str, timeout_seconds: float = 30.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds

    async def generate(self, subject: str) -> bytes:
        """Return the profile bytes for *subject*."""
        if not subject:
            raise ArtifactUnavailable(subject, "no user identifier")
        url = f"{self._base_url}/generate-vpn"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    url,
                    json={"user_id": subject},
                    timeout=aiohttp.ClientTimeout(total=self._timeout),
                ) as response:
                    payload = await response.read()
                    if response.status >= 400:
                        raise ArtifactUnavailable(
                            subject, f"HTTP {response.status}"
                        )
        except asyncio.TimeoutError as exc:
            raise ControlPlaneTransportError(
                "generate-vpn", f"no answer within {self._timeout}s"
            ) from exc
        except aiohttp.ClientError as exc:
            raise ControlPlaneTransportError("generate-vpn", str(exc)) from exc

        logger.info("Issued VPN profile for %s (%d bytes)", subject, len(payload))
        return payload

    async def download(self, subject: str, directory: str | Path = ".") -> Path:
        """Fetch the profile and save it under *directory*."""
        payload = await self.generate(subject)
        path = Path(directory) / vpn_filename(subject)
        path.write_bytes(payload)
        return path
