"""Shared test fixtures for limepkg."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from limepkg.core.archive import PackageArchive, build_archive
from limepkg.core.hasher import sha256_hex
from limepkg.core.lifecycle import LifecycleEngine
from limepkg.core.package_db import PackageDatabase
from limepkg.models.manifest import ActionItem, Manifest
from limepkg.models.version import Version
from limepkg.plugins.builtin import default_registry
from limepkg.plugins.registry import ActionContext, LimePluginType, PluginRegistry
from limepkg.providers.filesystem import InMemoryFilesystem


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingPlugin:
    """Records every item it runs.

    Items whose ``action`` is in ``fail_on`` raise. The item ``"hang"`` sets
    ``started`` and blocks until ``release`` is set (or five seconds pass);
    ``"slow"`` takes ``slow_seconds``.
    """

    name = "recorder"
    description = "Records action items for assertions"
    version = Version(major=1)
    plugin_type = LimePluginType.COMMAND_PROXY

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str, Any]] = []
        self.fail_on: set[str] = set()
        self.release = threading.Event()
        self.started = threading.Event()
        self.slow_seconds = 0.6

    def run(self, item: ActionItem, context: ActionContext) -> None:
        self.calls.append((context.package, context.phase, context.event_package, item.action))
        if item.action == "hang":
            self.started.set()
            self.release.wait(5)
        if item.action == "slow":
            time.sleep(self.slow_seconds)
        if item.action in self.fail_on:
            raise RuntimeError(f"refusing to run {item.action}")

    def actions(self) -> list[Any]:
        return [call[3] for call in self.calls]


class FlakyFilesystem(InMemoryFilesystem):
    """In-memory filesystem whose writes and removals of ``fail_paths`` raise OSError."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_paths: set[str] = set()

    def write_file(self, path: str, data: bytes, mode: int) -> None:
        if path in self.fail_paths:
            raise OSError(f"disk full writing {path}")
        super().write_file(path, data, mode)

    def remove(self, path: str) -> None:
        if path in self.fail_paths:
            raise OSError(f"device busy removing {path}")
        super().remove(path)


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def filesystem() -> FlakyFilesystem:
    """Provide an empty in-memory filesystem that can be told to fail."""
    return FlakyFilesystem()


@pytest.fixture
def database(tmp_dir: Path) -> PackageDatabase:
    """Provide a PackageDatabase persisted to a temp JSON file."""
    return PackageDatabase(tmp_dir / "state.json")


@pytest.fixture
def recorder() -> Iterator[RecordingPlugin]:
    plugin = RecordingPlugin()
    yield plugin
    plugin.release.set()


@pytest.fixture
def registry(recorder: RecordingPlugin) -> PluginRegistry:
    """Provide the built-in plugins plus the recording plugin."""
    reg = default_registry()
    reg.register(recorder)
    return reg


@pytest.fixture
def engine(
    database: PackageDatabase, filesystem: FlakyFilesystem, registry: PluginRegistry
) -> Iterator[LifecycleEngine]:
    """Provide a LifecycleEngine over the in-memory filesystem."""
    eng = LifecycleEngine(database, filesystem, registry, trigger_timeout=2.0, max_workers=2)
    yield eng
    eng.close()


# ---------------------------------------------------------------------------
# Package factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_manifest() -> Callable[..., Manifest]:
    """Factory fixture: build a Manifest whose file hashes match ``files``.

    ``file_attrs`` maps a path to extra File fields (``type``, ``common``...).
    Other keyword arguments are manifest fields in YAML spelling.
    """

    def _factory(
        name: str = "app",
        version: str = "v1.0.0",
        *,
        files: dict[str, bytes] | None = None,
        file_attrs: dict[str, dict[str, Any]] | None = None,
        **overrides: Any,
    ) -> Manifest:
        attrs = file_attrs or {}
        data: dict[str, Any] = {
            "name": name,
            "version": version,
            "files": [
                {"path": path, "hash": sha256_hex(payload), **attrs.get(path, {})}
                for path, payload in (files or {}).items()
            ],
        }
        data.update(overrides)
        return Manifest.model_validate(data)

    return _factory


@pytest.fixture
def make_archive(make_manifest: Callable[..., Manifest]) -> Callable[..., PackageArchive]:
    """Factory fixture: build a manifest, pack it and reopen it as an archive."""

    def _factory(
        name: str = "app",
        version: str = "v1.0.0",
        *,
        files: dict[str, bytes] | None = None,
        compress: bool = True,
        **overrides: Any,
    ) -> PackageArchive:
        manifest = make_manifest(name, version, files=files, **overrides)
        return PackageArchive.from_bytes(build_archive(manifest, files or {}, compress=compress))

    return _factory
