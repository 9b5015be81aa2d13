"""limepkg: the Lime package container format and its lifecycle engine.

  - ``LiMedPkg`` archives: manifest, file index and zlib-compressed payloads
  - Versions, manifests and dependency relations as frozen pydantic models
  - Dependency resolution with Provides/Replaces and topological ordering
  - Install / reconfigure / upgrade / remove / purge with triggers,
    partial-failure recovery and per-package locking
  - Radix-85 embedded file codec
"""

__version__ = "0.1.0"
__description__ = "Lime package archives, dependency resolution and lifecycle engine"

from limepkg.core.archive import PackageArchive, build_archive, open_archive, write_archive
from limepkg.core.lifecycle import LifecycleEngine
from limepkg.core.package_db import PackageDatabase
from limepkg.core.resolver import DependencyResolver
from limepkg.models.manifest import Manifest
from limepkg.models.version import Version

__all__ = [
    "DependencyResolver",
    "LifecycleEngine",
    "Manifest",
    "PackageArchive",
    "PackageDatabase",
    "Version",
    "build_archive",
    "open_archive",
    "write_archive",
    "__version__",
]
