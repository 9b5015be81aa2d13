"""Manifest models — the declarative description of one package.

The YAML spellings (``depends``, ``relation``, ``hash``, ``common``, ...)
are field aliases; models accept either the alias or the attribute name.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
)

from limepkg.errors import InvalidManifest, InvalidName
from limepkg.models.enums import (
    ActionType,
    Architecture,
    FileType,
    REQUIRED_SYMBOLS,
    Relationship,
    Required,
)
from limepkg.models.version import Version

VALID_NAME_CHARACTERS = frozenset("abcdefghijklmnopqrstuvwxyz0123456789-_")


def validate_package_name(name: str) -> str:
    """Return ``name`` unchanged, or raise InvalidName."""
    if not name or any(ch not in VALID_NAME_CHARACTERS for ch in name):
        raise InvalidName(
            f"invalid package name {name!r}: only lowercase letters, digits, "
            f"'-' and '_' are allowed"
        )
    return name


PackageName = Annotated[str, AfterValidator(validate_package_name)]


def _parse_enum(enum_cls: type, value: Any) -> Any:
    if isinstance(value, str):
        return enum_cls.parse(value)
    return value


class _ManifestModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


class MetadataItem(_ManifestModel):
    key: str
    value: str


class Metadata(_ManifestModel):
    description: str = ""
    architectures: list[Architecture] = Field(default_factory=list, alias="arch")
    items: list[MetadataItem] = Field(default_factory=list)

    @field_validator("architectures", mode="before")
    @classmethod
    def _parse_architectures(cls, value: Any) -> Any:
        if not isinstance(value, (list, tuple, set, frozenset)):
            return value
        seen: list[Architecture] = []
        for item in value:
            arch = _parse_enum(Architecture, item)
            if arch not in seen:
                seen.append(arch)
        return seen

    def get(self, key: str, default: str | None = None) -> str | None:
        """Return the value of the first free-form item named ``key``."""
        for item in self.items:
            if item.key == key:
                return item.value
        return default


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


class Dependency(_ManifestModel):
    """A relation to another (possibly virtual) package at a version."""

    name: PackageName
    version: Version
    requires: Required = Required.GREATER_THAN_EQUAL
    relationship: Relationship = Field(default=Relationship.DEPENDS, alias="relation")

    @field_validator("requires", mode="before")
    @classmethod
    def _parse_requires(cls, value: Any) -> Any:
        if isinstance(value, str):
            return Required.parse(value)
        if isinstance(value, int) and not isinstance(value, Required):
            return Required(value)
        return value

    @field_validator("relationship", mode="before")
    @classmethod
    def _parse_relationship(cls, value: Any) -> Any:
        return _parse_enum(Relationship, value)

    @field_serializer("requires")
    def _serialize_requires(self, value: Required) -> str:
        return value.symbol

    @property
    def constraint(self) -> str:
        """Human-readable ``name >= v1.0.0`` form."""
        symbol = REQUIRED_SYMBOLS.get(self.requires, "??")
        return f"{symbol} {self.version}"

    def is_satisfied_by(self, version: Version) -> bool:
        return version.satisfies(self.requires, self.version)


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


class File(_ManifestModel):
    """A file shipped by the package."""

    path: str = Field(min_length=1)
    type: FileType = FileType.OTHER
    is_common: bool = Field(default=False, alias="common")
    sha256: str = Field(default="", alias="hash")
    user: str = ""
    group: str = ""
    mode: int = 0

    @field_validator("type", mode="before")
    @classmethod
    def _parse_type(cls, value: Any) -> Any:
        return _parse_enum(FileType, value)

    @property
    def is_configuration(self) -> bool:
        return self.type == FileType.CONFIGURATION


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class ActionItem(_ManifestModel):
    """One step of an action; ``action`` is interpreted by the named plugin."""

    plugin: str
    action: Any = None


class Action(_ManifestModel):
    """Before/after items for one lifecycle phase.

    When used as a trigger, ``package`` names the package whose event this
    action watches (``None`` watches every other package).
    """

    type: ActionType
    before: list[ActionItem] = Field(default_factory=list)
    after: list[ActionItem] = Field(default_factory=list)
    package: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _parse_type(cls, value: Any) -> Any:
        return _parse_enum(ActionType, value)

    def items(self) -> list[ActionItem]:
        return [*self.before, *self.after]


class Plugin(_ManifestModel):
    name: PackageName


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------


class Manifest(_ManifestModel):
    """Declarative description of one package.

    Construction checks field types and the package name; ``ensure_valid``
    checks the cross-field rules (unique paths, one action per phase,
    named ``requires`` combinations, declared plugins).
    """

    name: PackageName
    version: Version
    created: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Metadata = Field(default_factory=Metadata)
    dependencies: list[Dependency] = Field(default_factory=list, alias="depends")
    files: list[File] = Field(default_factory=list)
    actions: list[Action] = Field(default_factory=list)
    triggers: list[Action] = Field(default_factory=list)
    plugins: list[Plugin] = Field(default_factory=list)

    @field_validator("plugins", mode="before")
    @classmethod
    def _accept_plugin_names(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [{"name": p} if isinstance(p, str) else p for p in value]
        return value

    # -- Validation ---------------------------------------------------------

    def ensure_valid(self) -> Manifest:
        """Raise InvalidName/InvalidManifest if the manifest breaks a rule."""
        validate_package_name(self.name)

        seen_paths: set[str] = set()
        for f in self.files:
            if f.path in seen_paths:
                raise InvalidManifest(f"{self.name}: duplicate file path {f.path}")
            seen_paths.add(f.path)

        seen_phases: set[ActionType] = set()
        for action in self.actions:
            if action.type in seen_phases:
                raise InvalidManifest(
                    f"{self.name}: duplicate {action.type.value} action"
                )
            seen_phases.add(action.type)

        for dep in self.dependencies:
            validate_package_name(dep.name)
            try:
                dep.requires.check_valid()
            except InvalidManifest as exc:
                raise InvalidManifest(f"{self.name}: dependency {dep.name}: {exc}") from exc

        declared = set(self.plugin_names)
        for action in [*self.actions, *self.triggers]:
            for item in action.items():
                if item.plugin not in declared:
                    raise InvalidManifest(
                        f"{self.name}: {action.type.value} item uses undeclared "
                        f"plugin {item.plugin}"
                    )
        return self

    # -- Lookup helpers -----------------------------------------------------

    @property
    def plugin_names(self) -> list[str]:
        return [p.name for p in self.plugins]

    def action_for(self, action_type: ActionType) -> Action | None:
        for action in self.actions:
            if action.type == action_type:
                return action
        return None

    def triggers_for(self, package: str, action_type: ActionType) -> list[Action]:
        """Triggers of this manifest that watch ``action_type`` on ``package``."""
        return [
            t for t in self.triggers
            if t.type == action_type and t.package in (None, package)
        ]

    def dependencies_of(self, *relationships: Relationship) -> list[Dependency]:
        return [d for d in self.dependencies if d.relationship in relationships]

    def file(self, path: str) -> File | None:
        for f in self.files:
            if f.path == path:
                return f
        return None

    @property
    def identity(self) -> str:
        return f"{self.name} {self.version}"
