"""Plugins — capability providers named by manifests and run by the engine."""

from limepkg.plugins.builtin import CertificatePlugin, FileGeneratorPlugin, default_registry
from limepkg.plugins.registry import ActionContext, LimePlugin, LimePluginType, PluginRegistry

__all__ = [
    "ActionContext",
    "CertificatePlugin",
    "FileGeneratorPlugin",
    "LimePlugin",
    "LimePluginType",
    "PluginRegistry",
    "default_registry",
]
