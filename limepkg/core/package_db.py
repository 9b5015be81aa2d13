"""Installed-package database with validated state transitions.

The database is the engine's single source of truth for which package is
in which state, at which manifest. It optionally persists to a JSON file
(``config.state_path`` by convention) after every change.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from limepkg.errors import InvalidTransition
from limepkg.models.enums import ActionType
from limepkg.models.lifecycle import (
    ACTION_ONLY_TRANSITIONS,
    PRESENT_STATES,
    VALID_TRANSITIONS,
    InstalledPackage,
    PackageState,
    PendingTransaction,
    TransitionRecord,
)
from limepkg.models.manifest import Manifest
from limepkg.models.version import Version

logger = logging.getLogger(__name__)


class _Snapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    packages: list[InstalledPackage] = Field(default_factory=list)
    history: list[TransitionRecord] = Field(default_factory=list)


class PackageDatabase:
    """Records package states, manifests and transition history.

    Parameters
    ----------
    path:
        JSON file to load from and persist to. ``None`` keeps the database
        in memory only.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._lock = threading.RLock()
        self._packages: dict[str, InstalledPackage] = {}
        self._history: list[TransitionRecord] = []
        self.load()

    # -- Persistence ----------------------------------------------------------

    def load(self) -> None:
        """Load records from disk, if a path is configured and exists."""
        if self._path is None or not self._path.exists():
            return
        raw = json.loads(self._path.read_text(encoding="utf-8"))
        snapshot = _Snapshot.model_validate(raw)
        with self._lock:
            self._packages = {p.name: p for p in snapshot.packages}
            self._history = list(snapshot.history)
        logger.debug("Loaded %d package records from %s", len(self._packages), self._path)

    def persist(self) -> None:
        if self._path is None:
            return
        with self._lock:
            snapshot = _Snapshot(
                packages=sorted(self._packages.values(), key=lambda p: p.name),
                history=list(self._history),
            )
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(
                snapshot.model_dump_json(by_alias=True, indent=2), encoding="utf-8"
            )

    # -- Lookup ---------------------------------------------------------------

    def get(self, name: str) -> InstalledPackage:
        """Return the record for ``name`` (NOT_INSTALLED if never seen)."""
        with self._lock:
            return self._packages.get(name) or InstalledPackage(name=name)

    def state(self, name: str) -> PackageState:
        return self.get(name).state

    def records(self) -> list[InstalledPackage]:
        with self._lock:
            return sorted(self._packages.values(), key=lambda p: p.name)

    def present_manifests(self) -> list[Manifest]:
        """Manifests of packages whose files are at least partly in place."""
        return [
            r.manifest for r in self.records()
            if r.state in PRESENT_STATES and r.manifest is not None
        ]

    def installed_manifests(self) -> list[Manifest]:
        """Manifests of fully installed packages; only these satisfy dependencies."""
        return [
            r.manifest for r in self.records()
            if r.state == PackageState.INSTALLED and r.manifest is not None
        ]

    def installed_version(self, name: str) -> Version | None:
        record = self.get(name)
        if record.state in PRESENT_STATES and record.manifest is not None:
            return record.manifest.version
        return None

    @property
    def history(self) -> list[TransitionRecord]:
        with self._lock:
            return list(self._history)

    # -- Mutation -------------------------------------------------------------

    def transition(
        self,
        name: str,
        target: PackageState,
        *,
        action: ActionType | str,
        manifest: Manifest | None,
        pending: PendingTransaction | None,
        detail: str = "",
    ) -> InstalledPackage:
        """Move ``name`` to ``target``, validating against VALID_TRANSITIONS.

        Edges listed in ACTION_ONLY_TRANSITIONS are also checked against
        ``action``.
        """
        action_name = action.value if isinstance(action, ActionType) else action
        with self._lock:
            current = self.get(name)
            allowed = VALID_TRANSITIONS.get(current.state, set())
            if target not in allowed:
                raise InvalidTransition(
                    f"Cannot move {name} from {current.state.value} to {target.value}. "
                    f"Allowed: {sorted(s.value for s in allowed)}"
                )
            only = ACTION_ONLY_TRANSITIONS.get((current.state, target))
            if only is not None and action_name != only.value:
                raise InvalidTransition(
                    f"Cannot move {name} from {current.state.value} to {target.value} "
                    f"for {action_name}; only {only.value} may"
                )
            record = InstalledPackage(
                name=name, state=target, manifest=manifest, pending=pending,
            )
            self._packages[name] = record
            self._history.append(
                TransitionRecord(
                    package=name,
                    action=action_name,
                    from_state=current.state,
                    to_state=target,
                    version=record.version,
                    detail=detail,
                )
            )
            self.persist()
        logger.info("%s: %s -> %s (%s)", name, current.state.value, target.value, action_name)
        return record

    def update_pending(self, name: str, pending: PendingTransaction) -> InstalledPackage:
        """Record progress of a pending transaction without changing state."""
        with self._lock:
            current = self.get(name)
            record = current.model_copy(update={"pending": pending})
            self._packages[name] = record
            self.persist()
        return record
