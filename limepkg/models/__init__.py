"""limepkg data models — all Pydantic v2, all frozen (immutable)."""

from limepkg.models.archive import Compression, FileIndex, FileIndexEntry
from limepkg.models.build import DockerBuildRequest, EmbeddedFileContents, EmbeddedFiles
from limepkg.models.certificates import (
    CertificateKeyRequest,
    CertificateName,
    CertificatePath,
    CertificateRequest,
    KeyAlgorithm,
)
from limepkg.models.enums import (
    ActionType,
    Architecture,
    FileType,
    Relationship,
    Required,
)
from limepkg.models.lifecycle import (
    ACTION_ONLY_TRANSITIONS,
    VALID_TRANSITIONS,
    InstalledPackage,
    PackageState,
    PendingTransaction,
    TransitionRecord,
)
from limepkg.models.manifest import (
    Action,
    ActionItem,
    Dependency,
    File,
    Manifest,
    Metadata,
    MetadataItem,
    PackageName,
    Plugin,
    validate_package_name,
)
from limepkg.models.version import Version, parse_version

__all__ = [
    # version
    "Version",
    "parse_version",
    # enums
    "ActionType",
    "Architecture",
    "FileType",
    "Relationship",
    "Required",
    # manifest
    "Action",
    "ActionItem",
    "Dependency",
    "File",
    "Manifest",
    "Metadata",
    "MetadataItem",
    "PackageName",
    "Plugin",
    "validate_package_name",
    # archive
    "Compression",
    "FileIndex",
    "FileIndexEntry",
    # lifecycle
    "ACTION_ONLY_TRANSITIONS",
    "VALID_TRANSITIONS",
    "InstalledPackage",
    "PackageState",
    "PendingTransaction",
    "TransitionRecord",
    # build / certificates
    "DockerBuildRequest",
    "EmbeddedFileContents",
    "EmbeddedFiles",
    "CertificateKeyRequest",
    "CertificateName",
    "CertificatePath",
    "CertificateRequest",
    "KeyAlgorithm",
]
