"""Environment catalog loader.

Reads the static list of practice environments from a JSON or YAML
file.  The JSON shape is the one shipped with the web front end
(``data/boxes.json``); placeholder keys such as ``status`` or ``ip``
found there are ignored.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from .errors import CatalogUnavailable
from .models import Difficulty, EnvironmentDefinition

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ("id", "name", "difficulty", "os", "category", "description")


class CatalogLoader:
    """Load environment definitions from a file."""

    def __init__(self, source: str | Path) -> None:
        self._source = Path(source)

    @property
    def source(self) -> Path:
        return self._source

    def load(self) -> list[EnvironmentDefinition]:
        """Return the catalog in file order.

        Raises CatalogUnavailable on any read, parse or schema problem.
        """
        raw = self._read()
        if not isinstance(raw, list):
            raise CatalogUnavailable(
                str(self._source), "expected a list of environment records"
            )

        catalog: list[EnvironmentDefinition] = []
        seen: set[int] = set()
        for index, record in enumerate(raw):
            definition = self._parse_record(index, record)
            if definition.id in seen:
                raise CatalogUnavailable(
                    str(self._source), f"duplicate environment id {definition.id}"
                )
            seen.add(definition.id)
            catalog.append(definition)

        logger.info("Loaded %d environments from %s", len(catalog), self._source)
        return catalog

    def _read(self) -> Any:
        try:
            text = self._source.read_text(encoding="utf-8")
        except OSError as exc:
            raise CatalogUnavailable(str(self._source), str(exc)) from exc

        try:
            if self._source.suffix.lower() in (".yaml", ".yml"):
                return yaml.safe_load(text)
            return json.loads(text)
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise CatalogUnavailable(
                str(self._source), f"parse error: {exc}"
            ) from exc

    def _parse_record(self, index: int, record: Any) -> EnvironmentDefinition:
        if not isinstance(record, dict):
            raise CatalogUnavailable(
                str(self._source), f"record {index} is not a mapping"
            )
        missing = [k for k in REQUIRED_KEYS if k not in record]
        if missing:
            raise CatalogUnavailable(
                str(self._source),
                f"record {index} is missing {', '.join(missing)}",
            )
        try:
            difficulty = Difficulty(record["difficulty"])
        except ValueError:
            raise CatalogUnavailable(
                str(self._source),
                f"record {index} has unknown difficulty {record['difficulty']!r}",
            ) from None
        try:
            env_id = int(record["id"])
        except (TypeError, ValueError):
            raise CatalogUnavailable(
                str(self._source), f"record {index} has non-integer id {record['id']!r}"
            ) from None

        return EnvironmentDefinition(
            id=env_id,
            name=str(record["name"]),
            difficulty=difficulty,
            os=str(record["os"]),
            category=str(record["category"]),
            description=str(record["description"]),
        )
