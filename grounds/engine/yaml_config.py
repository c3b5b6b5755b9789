"""YAML configuration loader.

Loads a single YAML file into a GroundsConfig.  Environment variables
are applied afterwards by the caller (GroundsConfig.from_env(base)).

Example YAML:
    grounds:
      catalog_path: data/boxes.json
      store_path: ~/.grounds/sessions.json
      rental_window_minutes: 240

    control_plane:
      url: http://localhost:5000
      timeout_seconds: 30

    logging:
      level: DEBUG
      file: ~/.grounds/logs/grounds.log
"""
from __future__ import annotations

import logging
import os
from dataclasses import fields
from pathlib import Path

import yaml

from .config import GroundsConfig

logger = logging.getLogger(__name__)

_PATH_KEYS = ("catalog_path", "store_path", "log_file")

_INT_KEYS = ("rental_window_minutes",)
_FLOAT_KEYS = ("request_timeout_seconds", "poll_interval_seconds", "simulated_delay_seconds")
_OPTIONAL_STR_KEYS = ("control_plane_url", "user", "log_file")


def _expand(value: str | None, base_dir: Path) -> str | None:
    """Expand ~ and make relative paths relative to the YAML file."""
    if not value:
        return value
    p = Path(os.path.expanduser(str(value)))
    if not p.is_absolute():
        p = base_dir / p
    return str(p)


def _section(raw: dict, name: str, path: Path) -> dict:
    section = raw.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ValueError(f"{path}: section {name!r} must be a mapping")
    return section


def _coerce(key: str, value: object, path: Path) -> object:
    """Check a value against the GroundsConfig field it is going into.

    Raises ValueError naming the offending key.
    """
    where = f"{path}: {key}"
    if key in _INT_KEYS or key in _FLOAT_KEYS:
        # bool is an int subclass; "yes" is not a duration.
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ValueError(f"{where} must be a number, got {value!r}")
        try:
            number = int(value) if key in _INT_KEYS else float(value)
        except ValueError:
            raise ValueError(f"{where} must be a number, got {value!r}") from None
        if number < 0:
            raise ValueError(f"{where} must not be negative, got {value!r}")
        if key == "request_timeout_seconds" and number == 0:
            raise ValueError(f"{where} must be greater than zero")
        return number
    if value is None:
        if key in _OPTIONAL_STR_KEYS:
            return None
        raise ValueError(f"{where} must not be empty")
    if not isinstance(value, (str, int, float)) or isinstance(value, bool):
        raise ValueError(f"{where} must be a string, got {value!r}")
    return str(value)


def load_yaml_config(path: str | Path) -> GroundsConfig:
    """Load and parse a YAML config file.

    Unknown keys in the ``grounds`` section are logged and ignored.
    Relative paths are resolved against the directory holding *path*.
    Values of the wrong type raise ValueError.
    """
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists()
    )
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute()
        )
        raise
    except yaml.YAMLError as exc:
        logger.error(
            "load_yaml_config: YAML parse error in %s: %s",
            path, exc
        )
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")

    top_sections = sorted(str(k) for k in raw.keys())
    logger.info(
        "Parsed YAML config %s, sections: %s",
        path.name, ", ".join(top_sections) if top_sections else "(empty)",
    )

    known = {f.name for f in fields(GroundsConfig)}
    values: dict[str, object] = {}

    # ── grounds: direct GroundsConfig fields ──────────────────
    for key, value in _section(raw, "grounds", path).items():
        if key not in known:
            logger.warning("load_yaml_config: ignoring unknown key grounds.%s", key)
            continue
        values[key] = value

    # ── control_plane: ────────────────────────────────────────
    cp = _section(raw, "control_plane", path)
    if "url" in cp:
        values["control_plane_url"] = cp["url"] or None
    if "timeout_seconds" in cp:
        values["request_timeout_seconds"] = cp["timeout_seconds"]
    if "simulated_delay_seconds" in cp:
        values["simulated_delay_seconds"] = cp["simulated_delay_seconds"]

    # ── logging: ──────────────────────────────────────────────
    log_raw = _section(raw, "logging", path)
    if "level" in log_raw:
        values["log_level"] = str(log_raw["level"]).upper()
    if "file" in log_raw:
        values["log_file"] = log_raw["file"]

    values = {key: _coerce(key, value, path) for key, value in values.items()}

    base_dir = path.parent
    for key in _PATH_KEYS:
        if key in values:
            values[key] = _expand(values[key], base_dir)

    return GroundsConfig(**values)
