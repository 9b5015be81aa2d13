"""End-to-end lifecycle: archives on disk installed onto a real directory tree.

These tests exercise write_archive, PackageArchive, DependencyResolver,
PackageDatabase, the built-in plugins and LifecycleEngine working together.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import ExitStack
from pathlib import Path

import pytest

from limepkg.core import embedded
from limepkg.core.archive import PackageArchive, write_archive
from limepkg.core.lifecycle import LifecycleEngine
from limepkg.core.package_db import PackageDatabase
from limepkg.errors import DependentPackagesExist
from limepkg.models.certificates import CertificateRequest
from limepkg.models.lifecycle import PackageState
from limepkg.models.manifest import Manifest
from limepkg.models.version import Version
from limepkg.plugins.builtin import default_registry
from limepkg.providers.certificates import Certificate
from limepkg.providers.filesystem import LocalFilesystem


class StaticCertificates:
    def generate(self, request: CertificateRequest) -> Certificate:
        return Certificate(
            certificate_pem=f"CERT {request.common_name}\n".encode(),
            private_key_pem=b"KEY\n",
            common_name=request.common_name,
        )


class TestFullLifecycle:
    """Install, upgrade, remove and purge against a LocalFilesystem."""

    @pytest.fixture
    def root(self, tmp_path: Path) -> Path:
        return tmp_path / "root"

    @pytest.fixture
    def state_path(self, tmp_path: Path) -> Path:
        return tmp_path / "state.json"

    @pytest.fixture
    def engine(self, root: Path, state_path: Path) -> Iterator[LifecycleEngine]:
        with LifecycleEngine(
            PackageDatabase(state_path),
            LocalFilesystem(root),
            default_registry(),
            certificates=StaticCertificates(),
            trigger_timeout=5.0,
        ) as eng:
            yield eng

    @pytest.fixture
    def publish(self, tmp_path: Path, make_manifest: Callable[..., Manifest]) -> Callable[..., Path]:
        """Write an archive to disk and return its path."""

        def _publish(name: str, version: str = "v1.0.0", *, files: dict[str, bytes], **overrides) -> Path:
            manifest = make_manifest(name, version, files=files, **overrides)
            return write_archive(tmp_path / "pool" / f"{name}_{version}.lime", manifest, files)

        return _publish

    def _runtime(self, publish: Callable[..., Path]) -> Path:
        return publish(
            "runtime",
            files={"/usr/lib/runtime.so": b"\x7fELF runtime", "/usr/share/doc/NOTICE": b"shared"},
            file_attrs={"/usr/share/doc/NOTICE": {"common": True}},
        )

    def _app(
        self, publish: Callable[..., Path], version: str = "v1.0.0", extra: dict[str, bytes] | None = None
    ) -> Path:
        files = {
            "/usr/bin/app": f"#!/bin/sh\necho {version}\n".encode(),
            "/etc/app/app.conf": b"port = 8080\n",
            **(extra or {}),
        }
        return publish(
            "app", version,
            files=files,
            file_attrs={"/usr/bin/app": {"type": "exec"}, "/etc/app/app.conf": {"type": "config"}},
            depends=[{"name": "runtime", "version": "v1.0.0", "relation": "predepends"}],
            actions=[{
                "type": "install",
                "after": [
                    {
                        "plugin": "file-generator",
                        "action": {
                            "path": "/etc/app/generated.conf",
                            "contents": embedded.encode(b"generated = true\n"),
                        },
                    },
                    {
                        "plugin": "certificates",
                        "action": {
                            "commonName": "app.local",
                            "path": {"cert": "/etc/ssl/app.pem", "key": "/etc/ssl/app.key"},
                        },
                    },
                ],
            }],
            plugins=["file-generator", "certificates"],
        )

    def test_install_persists_and_writes_tree(
        self, engine: LifecycleEngine, publish, root: Path, state_path: Path
    ):
        with ExitStack() as stack:
            archives = [
                stack.enter_context(PackageArchive.from_path(self._app(publish))),
                stack.enter_context(PackageArchive.from_path(self._runtime(publish))),
            ]
            resolution = engine.install_batch(archives)

        assert resolution.order == ["runtime", "app"]
        assert (root / "usr" / "bin" / "app").stat().st_mode & 0o777 == 0o755
        assert (root / "etc" / "app" / "generated.conf").read_bytes() == b"generated = true\n"
        assert (root / "etc" / "ssl" / "app.pem").read_bytes() == b"CERT app.local\n"
        assert (root / "etc" / "ssl" / "app.key").stat().st_mode & 0o777 == 0o600

        reloaded = PackageDatabase(state_path)
        assert reloaded.state("app") == PackageState.INSTALLED
        assert reloaded.installed_version("runtime") == Version(major=1)

    def test_upgrade_remove_purge(self, engine: LifecycleEngine, publish, root: Path, state_path: Path):
        with PackageArchive.from_path(self._runtime(publish)) as runtime:
            engine.install(runtime)
        with PackageArchive.from_path(self._app(publish)) as app:
            engine.install(app)

        v2 = self._app(publish, "v1.1.0", {"/usr/share/app/README": b"new in 1.1"})
        with PackageArchive.from_path(v2) as app:
            engine.upgrade(app)
        assert (root / "usr" / "bin" / "app").read_bytes() == b"#!/bin/sh\necho v1.1.0\n"
        assert (root / "usr" / "share" / "app" / "README").exists()
        assert engine.database.installed_version("app") == Version(major=1, minor=1)

        with pytest.raises(DependentPackagesExist):
            engine.remove(["runtime"])

        assert engine.remove(["runtime", "app"]) == ["app", "runtime"]
        assert not (root / "usr" / "bin" / "app").exists()
        assert (root / "etc" / "app" / "app.conf").exists()
        assert (root / "usr" / "share" / "doc" / "NOTICE").exists()

        engine.purge(["app", "runtime"])
        assert not (root / "etc" / "app" / "app.conf").exists()
        assert not (root / "usr" / "share" / "doc" / "NOTICE").exists()

        reloaded = PackageDatabase(state_path)
        assert reloaded.state("app") == PackageState.PURGED
        assert reloaded.get("app").manifest is None
        assert reloaded.present_manifests() == []

    def test_unrelated_installs_in_parallel(self, engine: LifecycleEngine, publish, root: Path):
        paths = [
            publish(f"tool-{i}", files={f"/usr/bin/tool-{i}": f"tool {i}".encode()})
            for i in range(6)
        ]
        errors: list[Exception] = []

        def install(path: Path) -> None:
            try:
                with PackageArchive.from_path(path) as archive:
                    engine.install(archive)
            except Exception as exc:  # surfaced by the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=install, args=(p,)) for p in paths]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        for i in range(6):
            assert (root / "usr" / "bin" / f"tool-{i}").read_bytes() == f"tool {i}".encode()
            assert engine.database.state(f"tool-{i}") == PackageState.INSTALLED
