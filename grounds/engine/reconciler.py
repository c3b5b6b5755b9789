"""Reconciliation of the static catalog with live sessions.

materialize() is a pure function: same catalog and snapshot in, equal
views out.  LabBoard is the stateful observer built on it; it re-runs
materialize() on every store notification, so duplicate or reordered
notifications are harmless.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence

from grounds.shared.services.session_store import SessionStore, StoreChange

from .models import (
    BoardSummary,
    EnvironmentDefinition,
    LabSession,
    LabView,
    SessionStatus,
)

logger = logging.getLogger(__name__)


def materialize(
    catalog: Sequence[EnvironmentDefinition],
    snapshot: Mapping[int, LabSession],
) -> list[LabView]:
    """Decorate each catalog entry with its session, in catalog order."""
    views: list[LabView] = []
    for definition in catalog:
        session = snapshot.get(definition.id)
        base = dict(
            id=definition.id,
            name=definition.name,
            difficulty=definition.difficulty,
            os=definition.os,
            category=definition.category,
            description=definition.description,
        )
        if session is None:
            views.append(LabView(**base))
        else:
            views.append(LabView(
                **base,
                status=session.status,
                container_identity=session.container_identity,
                leased_address=session.leased_address,
                time_remaining=session.time_remaining,
                owner=session.owner,
            ))
    return views


def summarize(views: Sequence[LabView]) -> BoardSummary:
    """Count running, starting and stopped boxes."""
    return BoardSummary(
        active=sum(1 for v in views if v.status == SessionStatus.RUNNING),
        starting=sum(1 for v in views if v.status == SessionStatus.STARTING),
        available=sum(1 for v in views if v.status == SessionStatus.STOPPED),
    )


class LabBoard:
    """A live, materialized view of the catalog over a session store.

    Any number of boards may share one store; each re-reads the store
    whenever it is notified.
    """

    def __init__(
        self,
        catalog: Sequence[EnvironmentDefinition],
        store: SessionStore,
        on_change: Callable[[list[LabView]], None] | None = None,
    ) -> None:
        self._catalog = list(catalog)
        self._store = store
        self._on_change = on_change
        self._views: list[LabView] = []
        self.refresh()
        self._unsubscribe: Callable[[], None] | None = store.subscribe(self._handle_change)

    @property
    def catalog(self) -> list[EnvironmentDefinition]:
        return list(self._catalog)

    @property
    def views(self) -> list[LabView]:
        return list(self._views)

    @property
    def summary(self) -> BoardSummary:
        return summarize(self._views)

    def find(self, environment_id: int) -> LabView | None:
        for view in self._views:
            if view.id == environment_id:
                return view
        return None

    def refresh(self) -> list[LabView]:
        """Re-read the store and rebuild the views."""
        snapshot = self._store.get_all()
        known = {d.id for d in self._catalog}
        orphans = sorted(set(snapshot) - known)
        if orphans:
            logger.debug("Ignoring sessions for unknown environments: %s", orphans)

        views = materialize(self._catalog, snapshot)
        changed = views != self._views
        self._views = views
        if changed and self._on_change is not None:
            self._on_change(self.views)
        return self.views

    def _handle_change(self, change: StoreChange) -> None:
        logger.debug("board refresh on %s", change)
        self.refresh()

    def close(self) -> None:
        """Stop listening to the store."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
