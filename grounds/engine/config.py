"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via GROUNDS_* env vars,
or start from a YAML file (see yaml_config.py) and layer the env on top.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path

logger = logging.getLogger(__name__)


def _default_store_path() -> str:
    return str(Path.home() / ".grounds" / "sessions.json")


@dataclass
class GroundsConfig:
    """Lab manager configuration."""

    # Catalog of environment definitions (JSON or YAML).
    catalog_path: str = "data/boxes.json"
    # Shared session store file.  Every observer pointing at the same
    # file sees the same sessions.
    store_path: str = ""

    # Control plane.  When unset, the simulated backend is used.
    control_plane_url: str | None = None
    # Bound on each provision/deprovision call.  A timeout counts as a
    # failure and rolls the optimistic write back.
    request_timeout_seconds: float = 30.0
    # Rental window shown on a running box.  Display only, never enforced.
    rental_window_minutes: int = 240

    # How often file-store observers look for writes from other processes.
    poll_interval_seconds: float = 1.0
    # Delay of the simulated backend.
    simulated_delay_seconds: float = 3.0

    # Opaque subject identifier attributed to sessions this process starts.
    user: str | None = None

    # Logging
    log_level: str = "INFO"
    log_file: str | None = None

    def __post_init__(self) -> None:
        if not self.store_path:
            self.store_path = _default_store_path()

    @classmethod
    def from_env(cls, base: GroundsConfig | None = None) -> GroundsConfig:
        """Overlay GROUNDS_* environment variables on *base* (or defaults)."""
        base = base or cls()
        grounds_vars = {
            k: v for k, v in os.environ.items() if k.startswith("GROUNDS_")
        }
        if grounds_vars:
            logger.info(
                "GroundsConfig.from_env: GROUNDS_* env overrides: %s",
                ", ".join(sorted(grounds_vars)),
            )
        else:
            logger.debug("GroundsConfig.from_env: no GROUNDS_* env vars set")

        config = replace(
            base,
            catalog_path=os.getenv("GROUNDS_CATALOG", base.catalog_path),
            store_path=os.getenv("GROUNDS_STORE", base.store_path),
            control_plane_url=(
                os.getenv("GROUNDS_CONTROL_PLANE_URL", base.control_plane_url or "")
                or None
            ),
            request_timeout_seconds=float(os.getenv(
                "GROUNDS_REQUEST_TIMEOUT", str(base.request_timeout_seconds)
            )),
            rental_window_minutes=int(os.getenv(
                "GROUNDS_RENTAL_WINDOW_MINUTES", str(base.rental_window_minutes)
            )),
            poll_interval_seconds=float(os.getenv(
                "GROUNDS_POLL_INTERVAL", str(base.poll_interval_seconds)
            )),
            simulated_delay_seconds=float(os.getenv(
                "GROUNDS_SIMULATED_DELAY", str(base.simulated_delay_seconds)
            )),
            user=os.getenv("GROUNDS_USER", base.user or "") or None,
            log_level=os.getenv("GROUNDS_LOG_LEVEL", base.log_level),
            log_file=os.getenv("GROUNDS_LOG_FILE", base.log_file or "") or None,
        )
        logger.info(
            "GroundsConfig.from_env: catalog=%s store=%s control_plane=%s",
            config.catalog_path, config.store_path,
            config.control_plane_url or "<simulated>",
        )
        return config
