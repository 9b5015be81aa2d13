"""Capability providers consumed by the lifecycle engine."""

from limepkg.providers.certificates import Certificate, CertificateProvider
from limepkg.providers.filesystem import (
    FileStat,
    FilesystemProvider,
    InMemoryFilesystem,
    LocalFilesystem,
)

__all__ = [
    "Certificate",
    "CertificateProvider",
    "FileStat",
    "FilesystemProvider",
    "InMemoryFilesystem",
    "LocalFilesystem",
]
