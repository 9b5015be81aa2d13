"""Filesystem providers the lifecycle engine writes package files through.

Defines the ``FilesystemProvider`` Protocol along with two backends:

* ``InMemoryFilesystem`` — dictionary-backed, for tests and dry runs.
* ``LocalFilesystem`` — real files below a root directory.

Paths are always absolute package paths (``/etc/app.conf``); backends map
them onto their own storage.
"""

from __future__ import annotations

import io
import os
import posixpath
import shutil
import threading
from pathlib import Path
from typing import BinaryIO, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict


class FileStat(BaseModel):
    """Subset of stat information the engine cares about."""

    model_config = ConfigDict(frozen=True)

    path: str
    size: int
    mode: int
    user: str = ""
    group: str = ""
    is_dir: bool = False


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class FilesystemProvider(Protocol):
    """Protocol for filesystem backends.

    Missing files raise ``FileNotFoundError`` from ``open``, ``stat``,
    ``read_file``, ``remove`` and ``rename``.
    """

    def open(self, path: str) -> BinaryIO:
        """Open an existing file for reading."""
        ...

    def create(self, path: str) -> BinaryIO:
        """Create (or truncate) a file for writing."""
        ...

    def write_file(self, path: str, data: bytes, mode: int) -> None:
        ...

    def read_file(self, path: str) -> bytes:
        ...

    def exists(self, path: str) -> bool:
        ...

    def stat(self, path: str) -> FileStat:
        ...

    def chmod(self, path: str, mode: int) -> None:
        ...

    def chown(self, path: str, user: str, group: str) -> None:
        ...

    def mkdir_all(self, path: str, mode: int = 0o755) -> None:
        ...

    def remove(self, path: str) -> None:
        ...

    def rename(self, old: str, new: str) -> None:
        ...


def _normalize(path: str) -> str:
    return posixpath.normpath("/" + path.lstrip("/"))


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class _Node:
    __slots__ = ("data", "mode", "user", "group")

    def __init__(self, data: bytes, mode: int) -> None:
        self.data = data
        self.mode = mode
        self.user = ""
        self.group = ""


class _WriteBuffer(io.BytesIO):
    """BytesIO that commits its contents to the filesystem on close."""

    def __init__(self, fs: InMemoryFilesystem, path: str) -> None:
        super().__init__()
        self._fs = fs
        self._path = path

    def close(self) -> None:
        if not self.closed:
            self._fs.write_file(self._path, self.getvalue(), self._fs._mode_of(self._path))
        super().close()


class InMemoryFilesystem:
    """Dictionary-backed filesystem. Parent directories must exist before writes."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._files: dict[str, _Node] = {}
        self._dirs: set[str] = {"/"}

    def _mode_of(self, path: str) -> int:
        node = self._files.get(_normalize(path))
        return node.mode if node is not None else 0o644

    def _node(self, path: str) -> _Node:
        node = self._files.get(_normalize(path))
        if node is None:
            raise FileNotFoundError(path)
        return node

    def _require_parent(self, path: str) -> None:
        parent = posixpath.dirname(path)
        if parent not in self._dirs:
            raise FileNotFoundError(f"parent directory does not exist: {parent}")

    def open(self, path: str) -> BinaryIO:
        with self._lock:
            return io.BytesIO(self._node(path).data)

    def create(self, path: str) -> BinaryIO:
        path = _normalize(path)
        with self._lock:
            self._require_parent(path)
        return _WriteBuffer(self, path)

    def write_file(self, path: str, data: bytes, mode: int) -> None:
        path = _normalize(path)
        with self._lock:
            self._require_parent(path)
            if path in self._dirs:
                raise IsADirectoryError(path)
            existing = self._files.get(path)
            node = _Node(bytes(data), mode)
            if existing is not None:
                node.user, node.group = existing.user, existing.group
            self._files[path] = node

    def read_file(self, path: str) -> bytes:
        with self._lock:
            return self._node(path).data

    def exists(self, path: str) -> bool:
        path = _normalize(path)
        with self._lock:
            return path in self._files or path in self._dirs

    def stat(self, path: str) -> FileStat:
        norm = _normalize(path)
        with self._lock:
            if norm in self._dirs:
                return FileStat(path=norm, size=0, mode=0o755, is_dir=True)
            node = self._node(norm)
            return FileStat(
                path=norm, size=len(node.data), mode=node.mode,
                user=node.user, group=node.group,
            )

    def chmod(self, path: str, mode: int) -> None:
        with self._lock:
            self._node(path).mode = mode

    def chown(self, path: str, user: str, group: str) -> None:
        with self._lock:
            node = self._node(path)
            node.user, node.group = user, group

    def mkdir_all(self, path: str, mode: int = 0o755) -> None:
        path = _normalize(path)
        with self._lock:
            while path not in self._dirs:
                if path in self._files:
                    raise NotADirectoryError(path)
                self._dirs.add(path)
                path = posixpath.dirname(path)

    def remove(self, path: str) -> None:
        path = _normalize(path)
        with self._lock:
            if path in self._files:
                del self._files[path]
                return
            if path in self._dirs and path != "/":
                if any(p.startswith(path + "/") for p in [*self._files, *self._dirs]):
                    raise OSError(f"directory not empty: {path}")
                self._dirs.discard(path)
                return
            raise FileNotFoundError(path)

    def rename(self, old: str, new: str) -> None:
        old, new = _normalize(old), _normalize(new)
        with self._lock:
            node = self._node(old)
            self._require_parent(new)
            self._files[new] = node
            del self._files[old]

    def files(self) -> dict[str, bytes]:
        """Snapshot of every file's contents."""
        with self._lock:
            return {path: node.data for path, node in sorted(self._files.items())}


# ---------------------------------------------------------------------------
# On-disk backend
# ---------------------------------------------------------------------------


class LocalFilesystem:
    """Real files below ``root``; package paths may not escape it.

    Parameters
    ----------
    root:
        Directory that stands in for ``/``. Created if missing.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _host_path(self, path: str) -> Path:
        host = (self._root / _normalize(path).lstrip("/")).resolve()
        if host != self._root and self._root not in host.parents:
            raise PermissionError(f"path escapes filesystem root: {path}")
        return host

    def open(self, path: str) -> BinaryIO:
        return self._host_path(path).open("rb")

    def create(self, path: str) -> BinaryIO:
        return self._host_path(path).open("wb")

    def write_file(self, path: str, data: bytes, mode: int) -> None:
        host = self._host_path(path)
        host.write_bytes(data)
        os.chmod(host, mode)

    def read_file(self, path: str) -> bytes:
        return self._host_path(path).read_bytes()

    def exists(self, path: str) -> bool:
        return self._host_path(path).exists()

    def stat(self, path: str) -> FileStat:
        host = self._host_path(path)
        st = host.stat()
        return FileStat(
            path=_normalize(path),
            size=st.st_size,
            mode=st.st_mode & 0o7777,
            user=host.owner(),
            group=host.group(),
            is_dir=host.is_dir(),
        )

    def chmod(self, path: str, mode: int) -> None:
        os.chmod(self._host_path(path), mode)

    def chown(self, path: str, user: str, group: str) -> None:
        shutil.chown(self._host_path(path), user=user or None, group=group or None)

    def mkdir_all(self, path: str, mode: int = 0o755) -> None:
        self._host_path(path).mkdir(mode=mode, parents=True, exist_ok=True)

    def remove(self, path: str) -> None:
        host = self._host_path(path)
        if host.is_dir():
            host.rmdir()
        else:
            host.unlink()

    def rename(self, old: str, new: str) -> None:
        os.replace(self._host_path(old), self._host_path(new))
