"""Plugin registry — resolves a manifest's declared plugins to providers.

Every action item names a plugin. The engine asks the registry for the
plugins a manifest declares before it touches anything, then calls
``plugin.run(item, context)`` for each item.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from limepkg.errors import PluginNotFound
from limepkg.models.enums import ActionType, TextEnum
from limepkg.models.manifest import ActionItem, Manifest
from limepkg.models.version import Version
from limepkg.providers.certificates import CertificateProvider
from limepkg.providers.filesystem import FilesystemProvider

logger = logging.getLogger(__name__)


class LimePluginType(TextEnum):
    """The capability a plugin provides."""

    GENERIC_FILE_GENERATOR = "genericfilegenerator"
    CERTIFICATE_GENERATOR = "certificategenerator"
    COMMAND_PROXY = "commandproxy"
    BUILDER = "builder"
    CONFIG_STORE = "configstore"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    LimePluginType.GENERIC_FILE_GENERATOR: "GenericFileGenerator",
    LimePluginType.CERTIFICATE_GENERATOR: "CertificateGenerator",
    LimePluginType.COMMAND_PROXY: "CommandProxy",
    LimePluginType.BUILDER: "Builder",
    LimePluginType.CONFIG_STORE: "ConfigStore",
}


class ActionContext(BaseModel):
    """What a plugin sees while running one action item.

    ``package`` owns the item. For triggers, ``event_package`` is the
    package whose lifecycle event fired it; otherwise it equals ``package``.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    package: str
    version: Version
    action: ActionType
    phase: str  # "before", "after" or "trigger"
    event_package: str
    filesystem: FilesystemProvider
    certificates: CertificateProvider | None = None


@runtime_checkable
class LimePlugin(Protocol):
    """Protocol for capability providers named in manifests."""

    name: str
    description: str
    version: Version
    plugin_type: LimePluginType

    def run(self, item: ActionItem, context: ActionContext) -> None:
        """Carry out ``item``; raise to fail the action."""
        ...


class PluginRegistry:
    """In-process registry of plugins keyed by name."""

    def __init__(self, plugins: list[LimePlugin] | None = None) -> None:
        self._plugins: dict[str, LimePlugin] = {}
        for plugin in plugins or []:
            self.register(plugin)

    def register(self, plugin: LimePlugin) -> None:
        """Add a plugin. A different plugin already registered under the name is an error."""
        existing = self._plugins.get(plugin.name)
        if existing is not None and existing is not plugin:
            raise ValueError(
                f"Plugin '{plugin.name}' {existing.version} is already registered."
            )
        self._plugins[plugin.name] = plugin
        logger.info(
            "Registered plugin %s %s (%s)",
            plugin.name, plugin.version, plugin.plugin_type.display_name,
        )

    def unregister(self, name: str) -> bool:
        if name in self._plugins:
            del self._plugins[name]
            logger.info("Unregistered plugin '%s'.", name)
            return True
        logger.warning("Cannot unregister '%s': not found in registry.", name)
        return False

    def get(self, name: str) -> LimePlugin | None:
        return self._plugins.get(name)

    def list_plugins(self, plugin_type: LimePluginType | None = None) -> list[LimePlugin]:
        result = [
            p for p in self._plugins.values()
            if plugin_type is None or p.plugin_type == plugin_type
        ]
        return sorted(result, key=lambda p: p.name)

    def require(self, manifest: Manifest) -> dict[str, LimePlugin]:
        """Return every plugin ``manifest`` declares, or raise PluginNotFound."""
        missing = [name for name in manifest.plugin_names if name not in self._plugins]
        if missing:
            raise PluginNotFound(manifest.name, missing)
        return {name: self._plugins[name] for name in manifest.plugin_names}
