"""Built-in plugins: embedded file generation and certificate issuance."""

from __future__ import annotations

import logging
import posixpath

from pydantic import BaseModel, ConfigDict

from limepkg.models.build import EmbeddedFileContents
from limepkg.models.certificates import CertificateRequest
from limepkg.models.manifest import ActionItem
from limepkg.models.version import Version
from limepkg.plugins.registry import ActionContext, LimePluginType, PluginRegistry

logger = logging.getLogger(__name__)


class GeneratedFile(BaseModel):
    """Payload of a ``file-generator`` item."""

    model_config = ConfigDict(frozen=True)

    path: str
    contents: EmbeddedFileContents = b""
    mode: int = 0o644
    user: str = ""
    group: str = ""


class FileGeneratorPlugin:
    """Writes a file whose contents are embedded in the manifest as radix-85."""

    name = "file-generator"
    description = "Writes embedded files through the filesystem provider"
    version = Version(major=1)
    plugin_type = LimePluginType.GENERIC_FILE_GENERATOR

    def run(self, item: ActionItem, context: ActionContext) -> None:
        spec = GeneratedFile.model_validate(item.action)
        fs = context.filesystem
        fs.mkdir_all(posixpath.dirname(spec.path) or "/")
        fs.write_file(spec.path, spec.contents, spec.mode)
        if spec.user or spec.group:
            fs.chown(spec.path, spec.user, spec.group)
        logger.debug("%s: generated %s (%d bytes)", context.package, spec.path, len(spec.contents))


class CertificatePlugin:
    """Asks the certificate provider for a certificate and writes cert and key."""

    name = "certificates"
    description = "Generates certificates through the certificate provider"
    version = Version(major=1)
    plugin_type = LimePluginType.CERTIFICATE_GENERATOR

    def run(self, item: ActionItem, context: ActionContext) -> None:
        if context.certificates is None:
            raise RuntimeError("no certificate provider configured")
        request = CertificateRequest.model_validate(item.action)
        certificate = context.certificates.generate(request)

        fs = context.filesystem
        for path, data, mode in (
            (request.path.certificate, certificate.certificate_pem, 0o644),
            (request.path.key, certificate.private_key_pem, 0o600),
        ):
            fs.mkdir_all(posixpath.dirname(path) or "/")
            fs.write_file(path, data, mode)
        logger.info(
            "%s: issued certificate %s -> %s",
            context.package, request.common_name or "<unnamed>", request.path.certificate,
        )


def default_registry() -> PluginRegistry:
    """A registry holding the built-in plugins."""
    return PluginRegistry([FileGeneratorPlugin(), CertificatePlugin()])
