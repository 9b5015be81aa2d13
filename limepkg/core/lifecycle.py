"""Lifecycle engine: install, reconfigure, upgrade, remove and purge.

Every mutating transition follows the same shape:

1. Preconditions (state, dependency resolution, plugins). Failure leaves
   nothing changed.
2. ``before`` items. Failure leaves nothing changed.
3. The package moves to its pending state (INSTALLING, UPGRADING or
   REMOVING) carrying a ``PendingTransaction`` with the file plan.
4. File operations, ``after`` items, then triggers of watching packages.
   A failure here leaves the pending state in place; ``retry`` resumes
   the transaction from where it stopped and ``rollback`` abandons it.
5. The package reaches its target state.

Action items run on a worker pool; the engine waits for each one, up to
the configured timeout counted from when the item starts, before moving
on. An item that cannot get a worker within the timeout fails the same way.
"""

from __future__ import annotations

import logging
import posixpath
import threading
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, wait

from limepkg.config import config
from limepkg.core.archive import PackageArchive
from limepkg.core.locks import NameLockManager
from limepkg.core.package_db import PackageDatabase
from limepkg.core.resolver import DependencyResolver, Resolution
from limepkg.errors import (
    ActionItemFailed,
    InvalidTransition,
    LifecycleError,
    LimePackageError,
    PartialFailure,
    TriggerTimeout,
    UnresolvedDependency,
)
from limepkg.models.enums import HARD_RELATIONSHIPS, ActionType, FileType
from limepkg.models.lifecycle import (
    INSTALLABLE_STATES,
    PENDING_STATES,
    FileOperation,
    FileOperationKind,
    InstalledPackage,
    PackageState,
    PendingTransaction,
    TransactionStage,
)
from limepkg.models.manifest import ActionItem, Manifest
from limepkg.plugins.registry import ActionContext, PluginRegistry
from limepkg.providers.certificates import CertificateProvider
from limepkg.providers.filesystem import FilesystemProvider

logger = logging.getLogger(__name__)

DEFAULT_FILE_MODE = 0o644
DEFAULT_EXEC_MODE = 0o755

# action -> (pending state, target state)
_TRANSITIONS: dict[ActionType, tuple[PackageState, PackageState]] = {
    ActionType.INSTALL: (PackageState.INSTALLING, PackageState.INSTALLED),
    ActionType.UPGRADE: (PackageState.UPGRADING, PackageState.INSTALLED),
    ActionType.REMOVE: (PackageState.REMOVING, PackageState.REMOVED),
    ActionType.PURGE: (PackageState.REMOVING, PackageState.PURGED),
}


class LifecycleEngine:
    """Drives package state transitions.

    Parameters
    ----------
    database:
        Package records; also the resolver's view of present packages.
    filesystem:
        Backend package files are written to and deleted from.
    plugins:
        Registry resolving the plugins manifests declare.
    certificates:
        Optional certificate provider handed to plugins.
    trigger_timeout:
        Seconds one action item may run, counted from its start; also how
        long it may wait for a free worker. Defaults to
        ``config.trigger_timeout_seconds``.
    max_workers:
        Worker threads for action items. Defaults to ``config.trigger_workers``.
    locks:
        Shared lock manager, for engines that share one database.
    """

    def __init__(
        self,
        database: PackageDatabase,
        filesystem: FilesystemProvider,
        plugins: PluginRegistry,
        *,
        certificates: CertificateProvider | None = None,
        trigger_timeout: float | None = None,
        max_workers: int | None = None,
        locks: NameLockManager | None = None,
    ) -> None:
        self._db = database
        self._fs = filesystem
        self._plugins = plugins
        self._certificates = certificates
        self._timeout = (
            trigger_timeout if trigger_timeout is not None
            else config.trigger_timeout_seconds
        )
        self._locks = locks or NameLockManager()
        self._resolver = DependencyResolver(database)
        self._workers = max_workers or config.trigger_workers
        self._busy = 0
        self._busy_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=self._workers,
            thread_name_prefix="limepkg-action",
        )

    @property
    def database(self) -> PackageDatabase:
        return self._db

    @property
    def resolver(self) -> DependencyResolver:
        return self._resolver

    def close(self) -> None:
        # Timed-out items may still be running; do not block on them.
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> LifecycleEngine:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def install(self, archive: PackageArchive) -> Resolution:
        """Install one package. See ``install_batch``."""
        return self.install_batch([archive])

    def install_batch(self, archives: Sequence[PackageArchive]) -> Resolution:
        """Install several packages as one transaction, in dependency order.

        Resolution and plugin checks cover the whole batch before any
        package is touched. Packages are then installed one at a time; a
        failure stops the batch and leaves earlier packages installed.
        """
        by_name: dict[str, PackageArchive] = {}
        for archive in archives:
            name = archive.manifest.name
            if name in by_name:
                raise LifecycleError(f"{name} appears twice in one install transaction")
            by_name[name] = archive
        manifests = [a.manifest for a in archives]

        with self._locks.hold(self._lock_scope(manifests)):
            for manifest in manifests:
                state = self._db.state(manifest.name)
                if state not in INSTALLABLE_STATES:
                    raise InvalidTransition(
                        f"Cannot install {manifest.name}: it is {state.value}"
                    )
            resolution = self._resolver.resolve_batch(manifests)
            for manifest in manifests:
                self._require_plugins(manifest, ActionType.INSTALL)

            for name in resolution.order:
                for prerequisite in resolution.predepends.get(name, []):
                    if self._db.state(prerequisite) != PackageState.INSTALLED:
                        raise UnresolvedDependency(
                            name, prerequisite, "predepends (not installed yet)"
                        )
                self._begin(by_name[name].manifest, ActionType.INSTALL, by_name[name])
        return resolution

    def reconfigure(self, name: str) -> InstalledPackage:
        """Re-run the Reconfigure items of an installed package; files are untouched."""
        with self._locks.hold([name]):
            record = self._db.get(name)
            if record.state != PackageState.INSTALLED or record.manifest is None:
                raise InvalidTransition(
                    f"Cannot reconfigure {name}: it is {record.state.value}"
                )
            manifest = record.manifest
            self._require_plugins(manifest, ActionType.RECONFIGURE)
            action = manifest.action_for(ActionType.RECONFIGURE)
            if action is not None:
                self._run_items(manifest, action.before, ActionType.RECONFIGURE, "before")
                self._run_items(manifest, action.after, ActionType.RECONFIGURE, "after")
            self._fire_triggers(manifest, ActionType.RECONFIGURE)
            return self._db.transition(
                name, PackageState.INSTALLED,
                action=ActionType.RECONFIGURE, manifest=manifest, pending=None,
            )

    def upgrade(self, archive: PackageArchive) -> Resolution:
        """Replace an installed package with the manifest and files of ``archive``.

        Raises
        ------
        BreakingUpgrade
            An installed dependent would lose its only provider. Raised
            before any item runs or any file is touched.
        """
        manifest = archive.manifest
        with self._locks.hold(self._lock_scope([manifest])):
            state = self._db.state(manifest.name)
            if state != PackageState.INSTALLED:
                raise InvalidTransition(
                    f"Cannot upgrade {manifest.name}: it is {state.value}"
                )
            resolution = self._resolver.check_upgrade(manifest)
            self._require_plugins(manifest, ActionType.UPGRADE)
            self._begin(manifest, ActionType.UPGRADE, archive)
        return resolution

    def remove(self, names: Sequence[str]) -> list[str]:
        """Remove installed packages; common and configuration files stay.

        Dependents inside ``names`` are removed before what they depend on.
        Returns the removal order.
        """
        return self._remove_batch(names, ActionType.REMOVE)

    def purge(self, names: Sequence[str]) -> list[str]:
        """Remove packages completely, including configuration remnants.

        Installed and removed packages can both be purged. Common files go
        only when no other installed or removed package still declares them.
        """
        return self._remove_batch(names, ActionType.PURGE)

    def retry(self, name: str, archive: PackageArchive | None = None) -> InstalledPackage:
        """Resume a transaction left pending by PartialFailure or TriggerTimeout.

        ``archive`` is needed while file writes remain, and must carry the
        same package and version as the pending transaction.
        """
        with self._locks.hold([name]):
            record = self._pending_record(name)
            manifest = record.manifest
            if archive is not None and archive.manifest.identity != manifest.identity:
                raise LifecycleError(
                    f"Cannot retry {name} with {archive.manifest.identity}; "
                    f"pending transaction is for {manifest.identity}"
                )
            needs_archive = any(
                op.kind == FileOperationKind.WRITE for op in record.pending.remaining()
            )
            if needs_archive and archive is None:
                raise LifecycleError(f"Cannot retry {name}: file writes remain, pass the archive")
            logger.info("%s: retrying %s from stage %s",
                        name, record.pending.action.value, record.pending.stage.value)
            return self._advance(record, archive)

    def rollback(self, name: str) -> InstalledPackage:
        """Abandon a pending transaction and restore the previous record.

        Files already written or deleted are left as they are.
        """
        with self._locks.hold([name]):
            record = self._pending_record(name)
            pending = record.pending
            logger.warning(
                "%s: rolling back %s; %d file operation(s) already applied are kept",
                name, pending.action.value, len(pending.completed),
            )
            return self._db.transition(
                name, pending.previous_state,
                action="rollback", manifest=pending.previous_manifest, pending=None,
                detail=f"abandoned {pending.action.value} at stage {pending.stage.value}",
            )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _begin(
        self,
        manifest: Manifest,
        action: ActionType,
        archive: PackageArchive | None,
        *,
        before: list[ActionItem] | None = None,
        operations: list[FileOperation] | None = None,
    ) -> InstalledPackage:
        """Run ``before`` items, enter the pending state and advance."""
        current = self._db.get(manifest.name)
        if before is None:
            before = self._phase_items(manifest, action, current.state, "before")
        self._run_items(manifest, before, action, "before")

        if operations is None:
            operations = self._plan(manifest, action, current)
        pending_state, target = _TRANSITIONS[action]
        pending = PendingTransaction(
            action=action,
            previous_state=current.state,
            previous_manifest=current.manifest,
            target_state=target,
            operations=operations,
        )
        record = self._db.transition(
            manifest.name, pending_state,
            action=action, manifest=manifest, pending=pending,
        )
        return self._advance(record, archive)

    def _advance(self, record: InstalledPackage, archive: PackageArchive | None) -> InstalledPackage:
        """Carry a pending transaction through its remaining stages."""
        name, manifest, pending = record.name, record.manifest, record.pending

        if pending.stage == TransactionStage.FILES:
            pending = self._apply_operations(record, archive)
            pending = pending.model_copy(update={"stage": TransactionStage.AFTER})
            self._db.update_pending(name, pending)

        if pending.stage == TransactionStage.AFTER:
            after = self._phase_items(manifest, pending.action, pending.previous_state, "after")
            self._run_pending_items(
                record, pending,
                lambda: self._run_items(manifest, after, pending.action, "after"),
            )
            pending = pending.model_copy(update={"stage": TransactionStage.TRIGGERS})
            self._db.update_pending(name, pending)

        self._run_pending_items(
            record, pending, lambda: self._fire_triggers(manifest, pending.action),
        )

        final_manifest = None if pending.target_state == PackageState.PURGED else manifest
        return self._db.transition(
            name, pending.target_state,
            action=pending.action, manifest=final_manifest, pending=None,
        )

    def _apply_operations(
        self, record: InstalledPackage, archive: PackageArchive | None
    ) -> PendingTransaction:
        pending = record.pending
        completed = list(pending.completed)
        for op in pending.remaining():
            try:
                if op.kind == FileOperationKind.WRITE:
                    self._write_file(record.manifest, archive, op.path)
                else:
                    self._delete_file(op.path)
            except (OSError, LimePackageError) as exc:
                pending = pending.model_copy(update={"completed": completed})
                self._db.update_pending(record.name, pending)
                succeeded = [k.split(":", 1)[1] for k in completed]
                logger.error(
                    "%s: %s of %s failed after %d file operation(s): %s",
                    record.name, op.kind.value, op.path, len(completed), exc,
                )
                raise PartialFailure(
                    record.name, record.state.value, succeeded, op.path, str(exc)
                ) from exc
            completed.append(op.key)
        return pending.model_copy(update={"completed": completed})

    def _run_pending_items(
        self, record: InstalledPackage, pending: PendingTransaction, run: Callable[[], None]
    ) -> None:
        """Run items after files were touched; failures keep the pending state."""
        try:
            run()
        except ActionItemFailed as exc:
            logger.error("%s: %s left pending: %s", record.name, record.state.value, exc)
            succeeded = [k.split(":", 1)[1] for k in pending.completed]
            raise PartialFailure(
                record.name, record.state.value, succeeded,
                f"{exc.phase} item ({exc.plugin})", str(exc),
            ) from exc
        except TriggerTimeout:
            logger.error("%s: %s left pending after a timeout", record.name, record.state.value)
            raise

    def _remove_batch(self, names: Sequence[str], action: ActionType) -> list[str]:
        names = list(dict.fromkeys(names))
        allowed = (
            {PackageState.INSTALLED} if action == ActionType.REMOVE
            else {PackageState.INSTALLED, PackageState.REMOVED}
        )

        def checked_records() -> dict[str, InstalledPackage]:
            records = {name: self._db.get(name) for name in names}
            for name, record in records.items():
                if record.state not in allowed or record.manifest is None:
                    raise InvalidTransition(
                        f"Cannot {action.value} {name}: it is {record.state.value}"
                    )
            return records

        # Unlocked read only sizes the lock scope; states are checked again
        # once the locks are held.
        scope = self._lock_scope([r.manifest for r in checked_records().values()])
        with self._locks.hold(scope):
            records = checked_records()
            manifests = [r.manifest for r in records.values()]
            present = [n for n in names if records[n].state == PackageState.INSTALLED]
            order = self._resolver.check_removal(present)
            order += [n for n in names if n not in present]
            for manifest in manifests:
                self._require_plugins(manifest, action)

            for name in order:
                record = self._db.get(name)
                manifest = record.manifest
                operations = self._plan(manifest, action, record, purging=names)
                self._begin(manifest, action, None, operations=operations)
        return order

    def _pending_record(self, name: str) -> InstalledPackage:
        record = self._db.get(name)
        if record.state not in PENDING_STATES or record.pending is None:
            raise InvalidTransition(
                f"{name} has no pending transaction (state {record.state.value})"
            )
        return record

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _plan(
        self,
        manifest: Manifest,
        action: ActionType,
        current: InstalledPackage,
        *,
        purging: Iterable[str] = (),
    ) -> list[FileOperation]:
        """File operations for ``action`` on ``manifest``."""
        if action == ActionType.INSTALL:
            return [FileOperation(kind=FileOperationKind.WRITE, path=f.path) for f in manifest.files]

        if action == ActionType.UPGRADE:
            ops = [FileOperation(kind=FileOperationKind.WRITE, path=f.path) for f in manifest.files]
            old = current.manifest
            if old is not None:
                ops += [
                    FileOperation(kind=FileOperationKind.DELETE, path=f.path)
                    for f in old.files
                    if not f.is_common and manifest.file(f.path) is None
                ]
            return ops

        if action == ActionType.REMOVE:
            return [
                FileOperation(kind=FileOperationKind.DELETE, path=f.path)
                for f in manifest.files
                if not f.is_common and not f.is_configuration
            ]

        # Purge: everything, except common files another package still
        # declares. Removed packages keep their common files, so they count.
        leaving = set(purging) | {manifest.name}
        shared = {
            f.path
            for other in self._db.records()
            if other.manifest is not None and other.name not in leaving
            for f in other.manifest.files
        }
        return [
            FileOperation(kind=FileOperationKind.DELETE, path=f.path)
            for f in manifest.files
            if not (f.is_common and f.path in shared)
        ]

    @staticmethod
    def _phase_items(
        manifest: Manifest, action: ActionType, previous: PackageState, phase: str
    ) -> list[ActionItem]:
        """``before``/``after`` items for ``action``; purging an installed
        package runs its Remove items first."""
        actions = [action]
        if action == ActionType.PURGE and previous == PackageState.INSTALLED:
            actions = [ActionType.REMOVE, ActionType.PURGE]
        items: list[ActionItem] = []
        for action_type in actions:
            declared = manifest.action_for(action_type)
            if declared is not None:
                items.extend(getattr(declared, phase))
        return items

    def _watchers(self, package: str, action: ActionType) -> list[tuple[Manifest, list]]:
        return [
            (watcher, watcher.triggers_for(package, action))
            for watcher in self._db.present_manifests()
            if watcher.name != package and watcher.triggers_for(package, action)
        ]

    def _lock_scope(self, manifests: Sequence[Manifest]) -> set[str]:
        """Names touched by a transaction: the packages, what they depend on
        and the present packages that depend on them."""
        names = {m.name for m in manifests}
        scope = set(names)
        for manifest in manifests:
            scope.update(d.name for d in manifest.dependencies_of(*HARD_RELATIONSHIPS))
        for present in self._db.present_manifests():
            if any(d.name in names for d in present.dependencies_of(*HARD_RELATIONSHIPS)):
                scope.add(present.name)
        return scope

    def _require_plugins(self, manifest: Manifest, action: ActionType) -> None:
        self._plugins.require(manifest)
        for watcher, _ in self._watchers(manifest.name, action):
            self._plugins.require(watcher)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _write_file(self, manifest: Manifest, archive: PackageArchive | None, path: str) -> None:
        if archive is None:
            raise LifecycleError(f"{manifest.name}: no archive to read {path} from")
        entry = manifest.file(path)
        data = archive.read(path)
        mode = entry.mode or (
            DEFAULT_EXEC_MODE if entry.type == FileType.EXECUTABLE else DEFAULT_FILE_MODE
        )
        self._fs.mkdir_all(posixpath.dirname(path) or "/")
        self._fs.write_file(path, data, mode)
        if entry.user or entry.group:
            self._fs.chown(path, entry.user, entry.group)
        logger.debug("%s: wrote %s (%d bytes, mode %o)", manifest.name, path, len(data), mode)

    def _delete_file(self, path: str) -> None:
        try:
            self._fs.remove(path)
        except FileNotFoundError:
            logger.debug("%s already absent", path)
            return
        logger.debug("deleted %s", path)

    def _fire_triggers(self, manifest: Manifest, action: ActionType) -> None:
        for watcher, triggers in self._watchers(manifest.name, action):
            for trigger in triggers:
                logger.info("%s: %s trigger fired by %s", watcher.name, action.value, manifest.name)
                self._run_items(
                    watcher, trigger.items(), action, "trigger", event_package=manifest.name
                )

    def _run_items(
        self,
        manifest: Manifest,
        items: Sequence[ActionItem],
        action: ActionType,
        phase: str,
        *,
        event_package: str | None = None,
    ) -> None:
        """Run ``items`` in order, waiting for each up to the timeout."""
        for item in items:
            plugin = self._plugins.get(item.plugin)
            if plugin is None:
                raise ActionItemFailed(manifest.name, phase, item.plugin, "plugin is not registered")
            context = ActionContext(
                package=manifest.name,
                version=manifest.version,
                action=action,
                phase=phase,
                event_package=event_package or manifest.name,
                filesystem=self._fs,
                certificates=self._certificates,
            )
            started = threading.Event()
            future = self._executor.submit(self._tracked, plugin.run, item, context, started)
            if not started.wait(self._timeout) and future.cancel():
                logger.error(
                    "%s: %s item (%s) never started within %ss; %d of %d workers busy",
                    manifest.name, phase, item.plugin, self._timeout,
                    self._busy, self._workers,
                )
                raise TriggerTimeout(manifest.name, item.plugin, self._timeout)
            done, _ = wait([future], timeout=self._timeout)
            if not done:
                logger.error(
                    "%s: %s item (%s) timed out after %ss",
                    manifest.name, phase, item.plugin, self._timeout,
                )
                raise TriggerTimeout(manifest.name, item.plugin, self._timeout)
            exc = future.exception()
            if exc is not None:
                raise ActionItemFailed(manifest.name, phase, item.plugin, str(exc)) from exc
            logger.debug("%s: %s item (%s) done", manifest.name, phase, item.plugin)

    def _tracked(
        self, run: Callable[..., None], item: ActionItem, context: ActionContext, started: threading.Event
    ) -> None:
        """Worker-side wrapper: marks the start and counts busy workers."""
        with self._busy_lock:
            self._busy += 1
        started.set()
        try:
            run(item, context)
        finally:
            with self._busy_lock:
                self._busy -= 1
