"""Session store — the single source of truth for lab sessions.

Maps environment id -> LabSession and tells subscribers about every
write.  Two media are provided:

- MemorySessionStore: in-process dict.  Every observer holding the same
  instance is notified synchronously.
- FileSessionStore: JSON file shared between processes.  Local writes
  notify local subscribers immediately; writes made by other processes
  are picked up by poll()/watch() and announced as ``external`` changes.

Delivery is at-least-once.  A subscriber may see a notification for a
change it already applied, and an ``external`` notification carries no
id, so subscribers must re-read the store rather than patch state.

There is no cross-process lock: two processes writing the same file at
the same instant race and the last writer wins.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from grounds.engine.errors import PersistenceError
from grounds.engine.models import LabSession
from grounds.shared.services.durable_write import atomic_write_bytes, encode_json

logger = logging.getLogger(__name__)

CHANGE_PUT = "put"
CHANGE_REMOVE = "remove"
CHANGE_EXTERNAL = "external"


@dataclass(frozen=True)
class StoreChange:
    """Notification payload.  ``environment_id`` is None for external changes."""
    kind: str
    environment_id: int | None = None


StoreCallback = Callable[[StoreChange], None]


class SessionStore(ABC):
    """Abstract session persistence with change notification."""

    def __init__(self) -> None:
        self._subscribers: list[StoreCallback] = []
        self._revision = 0

    @property
    def revision(self) -> int:
        """Number of notifications emitted by this instance."""
        return self._revision

    @abstractmethod
    def get_all(self) -> dict[int, LabSession]:
        """Return every persisted session keyed by environment id."""

    @abstractmethod
    def _write(self, session: LabSession) -> None:
        """Upsert one record in the medium."""

    @abstractmethod
    def _delete(self, environment_id: int) -> bool:
        """Delete one record; return False if nothing was there."""

    def get(self, environment_id: int) -> LabSession | None:
        return self.get_all().get(environment_id)

    def put(self, session: LabSession) -> None:
        """Upsert *session*.  Raises PersistenceError or ValueError; never drops."""
        session.validate()
        self._write(session)
        logger.debug(
            "store put env=%s status=%s", session.environment_id, session.status.value
        )
        self._notify(StoreChange(CHANGE_PUT, session.environment_id))

    def remove(self, environment_id: int) -> None:
        """Delete the record for *environment_id*; no-op if absent."""
        if self._delete(environment_id):
            logger.debug("store remove env=%s", environment_id)
            self._notify(StoreChange(CHANGE_REMOVE, environment_id))

    def subscribe(self, callback: StoreCallback) -> Callable[[], None]:
        """Register *callback*; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    def _notify(self, change: StoreChange) -> None:
        self._revision += 1
        for callback in list(self._subscribers):
            try:
                callback(change)
            except Exception:
                logger.exception(
                    "Session store subscriber %r failed on %s", callback, change
                )


class MemorySessionStore(SessionStore):
    """Process-local store; share one instance between observers."""

    def __init__(self) -> None:
        super().__init__()
        self._records: dict[int, LabSession] = {}

    def get_all(self) -> dict[int, LabSession]:
        return {
            env_id: LabSession.from_dict(s.to_dict())
            for env_id, s in self._records.items()
        }

    def _write(self, session: LabSession) -> None:
        self._records[session.environment_id] = LabSession.from_dict(session.to_dict())

    def _delete(self, environment_id: int) -> bool:
        return self._records.pop(environment_id, None) is not None


class FileSessionStore(SessionStore):
    """JSON-file store shared by every process pointing at the same path."""

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self._path = Path(path).expanduser()
        self._last_digest: str | None = self._digest(self._read_bytes())

    @property
    def path(self) -> Path:
        return self._path

    # ── Medium ──────────────────────────────────────────────

    def _read_bytes(self) -> bytes | None:
        try:
            return self._path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise PersistenceError(str(self._path), f"read failed: {exc}") from exc

    @staticmethod
    def _digest(payload: bytes | None) -> str | None:
        if payload is None:
            return None
        return hashlib.sha256(payload).hexdigest()

    def _decode(self, payload: bytes | None) -> dict[int, LabSession]:
        if not payload or not payload.strip():
            return {}
        try:
            records = json.loads(payload.decode("utf-8"))
            if not isinstance(records, list):
                raise ValueError("expected a list of session records")
            sessions = [LabSession.from_dict(r) for r in records]
        except (UnicodeDecodeError, KeyError, TypeError, ValueError) as exc:
            raise PersistenceError(
                str(self._path), f"corrupt session file: {exc}"
            ) from exc
        return {s.environment_id: s for s in sessions}

    def _flush(self, sessions: dict[int, LabSession]) -> None:
        document = [sessions[k].to_dict() for k in sorted(sessions)]
        payload = encode_json(document)
        try:
            atomic_write_bytes(self._path, payload)
        except OSError as exc:
            raise PersistenceError(str(self._path), f"write failed: {exc}") from exc
        self._last_digest = self._digest(payload)

    def get_all(self) -> dict[int, LabSession]:
        return self._decode(self._read_bytes())

    def _write(self, session: LabSession) -> None:
        sessions = self.get_all()
        sessions[session.environment_id] = session
        self._flush(sessions)

    def _delete(self, environment_id: int) -> bool:
        sessions = self.get_all()
        if sessions.pop(environment_id, None) is None:
            return False
        self._flush(sessions)
        return True

    # ── Cross-process change detection ──────────────────────

    def poll(self) -> bool:
        """Emit an ``external`` change if another writer touched the file.

        Returns True when a notification was emitted.
        """
        digest = self._digest(self._read_bytes())
        if digest == self._last_digest:
            return False
        self._last_digest = digest
        logger.debug("store %s changed on disk", self._path)
        self._notify(StoreChange(CHANGE_EXTERNAL))
        return True

    async def watch(self, interval: float = 1.0) -> None:
        """Poll forever.  Cancel the task to stop watching."""
        while True:
            try:
                self.poll()
            except PersistenceError as exc:
                logger.warning("Session store watch: %s", exc)
            await asyncio.sleep(interval)
