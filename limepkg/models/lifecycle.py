"""Package lifecycle state models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from limepkg.models.enums import ActionType
from limepkg.models.manifest import Manifest


class PackageState(str, Enum):
    """Lifecycle state of one package name."""

    NOT_INSTALLED = "not_installed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    UPGRADING = "upgrading"
    REMOVING = "removing"
    REMOVED = "removed"
    PURGED = "purged"


# Valid state transitions, enforced by PackageDatabase.
# INSTALLING/UPGRADING/REMOVING are the non-terminal states a partial
# failure leaves behind; their backward edges are operator rollbacks.
VALID_TRANSITIONS: dict[PackageState, set[PackageState]] = {
    PackageState.NOT_INSTALLED: {PackageState.INSTALLING},
    PackageState.INSTALLING: {
        PackageState.INSTALLED,
        PackageState.NOT_INSTALLED,
        PackageState.REMOVED,
        PackageState.PURGED,
    },
    PackageState.INSTALLED: {
        PackageState.INSTALLED,  # reconfigure
        PackageState.UPGRADING,
        PackageState.REMOVING,
    },
    PackageState.UPGRADING: {PackageState.INSTALLED},
    PackageState.REMOVING: {
        PackageState.REMOVED,
        PackageState.PURGED,
        PackageState.INSTALLED,
    },
    PackageState.REMOVED: {PackageState.INSTALLING, PackageState.REMOVING},
    PackageState.PURGED: {PackageState.INSTALLING},
}

# Edges that only one action may take. A removed package re-enters
# REMOVING only to be purged.
ACTION_ONLY_TRANSITIONS: dict[tuple[PackageState, PackageState], ActionType] = {
    (PackageState.REMOVED, PackageState.REMOVING): ActionType.PURGE,
}

INSTALLABLE_STATES = frozenset(
    {PackageState.NOT_INSTALLED, PackageState.REMOVED, PackageState.PURGED}
)

# States whose manifest is (at least partly) on disk. Conflicts, triggers and
# lock scopes consider them; only INSTALLED packages satisfy dependencies.
PRESENT_STATES = frozenset(
    {PackageState.INSTALLED, PackageState.UPGRADING, PackageState.REMOVING}
)

PENDING_STATES = frozenset(
    {PackageState.INSTALLING, PackageState.UPGRADING, PackageState.REMOVING}
)


class TransactionStage(str, Enum):
    """How far a pending transaction got."""

    FILES = "files"
    AFTER = "after"
    TRIGGERS = "triggers"


class FileOperationKind(str, Enum):
    WRITE = "write"
    DELETE = "delete"


class FileOperation(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: FileOperationKind
    path: str

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.path}"


class PendingTransaction(BaseModel):
    """A transition that mutated state and has not reached its target yet."""

    model_config = ConfigDict(frozen=True)

    action: ActionType
    previous_state: PackageState
    previous_manifest: Manifest | None = None
    target_state: PackageState
    stage: TransactionStage = TransactionStage.FILES
    operations: list[FileOperation] = Field(default_factory=list)
    completed: list[str] = Field(default_factory=list)  # FileOperation keys

    def remaining(self) -> list[FileOperation]:
        done = set(self.completed)
        return [op for op in self.operations if op.key not in done]


class InstalledPackage(BaseModel):
    """Database record for one package name."""

    model_config = ConfigDict(frozen=True)

    name: str
    state: PackageState = PackageState.NOT_INSTALLED
    manifest: Manifest | None = None
    pending: PendingTransaction | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def version(self) -> str:
        return str(self.manifest.version) if self.manifest is not None else ""


class TransitionRecord(BaseModel):
    """Audit entry for one state change."""

    model_config = ConfigDict(frozen=True)

    package: str
    action: str
    from_state: PackageState
    to_state: PackageState
    version: str = ""
    detail: str = ""
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
