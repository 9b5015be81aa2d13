"""Package archive codec.

Layout (all lengths are unsigned 64-bit big-endian)::

    b"LiMedPkg" | len(manifest) | manifest YAML | len(index) | index YAML | files

File offsets in the index are relative to the start of the files region.
Entries appear in manifest order and never overlap. File bytes are only
read when an entry reader asks for them.
"""

from __future__ import annotations

import io
import logging
import struct
import threading
import zlib
from collections.abc import Iterator, Mapping, Sequence
from pathlib import Path
from typing import BinaryIO

from limepkg.config import config
from limepkg.core.hasher import digests_match, sha256_hex
from limepkg.core.serialization import (
    index_from_yaml,
    index_to_yaml,
    manifest_from_yaml,
    manifest_to_yaml,
)
from limepkg.errors import FormatError, IntegrityError
from limepkg.models.archive import Compression, FileIndex, FileIndexEntry
from limepkg.models.manifest import File, Manifest

logger = logging.getLogger(__name__)

MAGIC = b"LiMedPkg"
_LENGTH = struct.Struct(">Q")

FilePayloads = Mapping[str, bytes] | Sequence[tuple[str, bytes]]


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


def _collect_payloads(manifest: Manifest, files: FilePayloads) -> dict[str, bytes]:
    pairs = list(files.items()) if isinstance(files, Mapping) else list(files)
    payloads: dict[str, bytes] = {}
    for path, data in pairs:
        if path in payloads:
            raise IntegrityError(path, "payload supplied more than once")
        payloads[path] = bytes(data)

    declared = {f.path for f in manifest.files}
    for path in payloads:
        if path not in declared:
            raise IntegrityError(path, "payload is not declared in the manifest")

    for f in manifest.files:
        if f.path not in payloads:
            raise IntegrityError(f.path, "no payload supplied for manifest file")
        actual = sha256_hex(payloads[f.path])
        if not digests_match(f.sha256, actual):
            raise IntegrityError(
                f.path, f"sha256 mismatch: manifest={f.sha256!r}, payload={actual}"
            )
    return payloads


def build_archive(
    manifest: Manifest,
    files: FilePayloads,
    *,
    compress: bool | None = None,
    compression_level: int | None = None,
) -> bytes:
    """Validate ``manifest`` against ``files`` and return the archive bytes.

    Parameters
    ----------
    manifest:
        The package manifest. Every File must have a payload whose
        SHA-256 matches ``File.sha256``.
    files:
        ``(path, bytes)`` pairs or a path -> bytes mapping.
    compress:
        zlib-compress payloads. Defaults to ``config.compress_files``.
    """
    manifest.ensure_valid()
    payloads = _collect_payloads(manifest, files)

    if compress is None:
        compress = config.compress_files
    level = config.compression_level if compression_level is None else compression_level
    compression = Compression.ZLIB if compress else Compression.NONE

    entries: list[FileIndexEntry] = []
    region = io.BytesIO()
    offset = 0
    for f in manifest.files:
        data = payloads[f.path]
        stored = zlib.compress(data, level) if compress else data
        entries.append(
            FileIndexEntry(
                path=f.path,
                size=len(data),
                compressed_size=len(stored),
                file_offset=offset,
            )
        )
        region.write(stored)
        offset += len(stored)
        logger.debug("Packed %s (%d -> %d bytes)", f.path, len(data), len(stored))

    manifest_bytes = manifest_to_yaml(manifest)
    index_bytes = index_to_yaml(FileIndex(compression=compression, files=entries))

    out = io.BytesIO()
    out.write(MAGIC)
    out.write(_LENGTH.pack(len(manifest_bytes)))
    out.write(manifest_bytes)
    out.write(_LENGTH.pack(len(index_bytes)))
    out.write(index_bytes)
    out.write(region.getvalue())

    logger.info(
        "Built archive for %s: %d files, %d bytes",
        manifest.identity, len(entries), out.tell(),
    )
    return out.getvalue()


def write_archive(
    path: Path,
    manifest: Manifest,
    files: FilePayloads,
    **kwargs,
) -> Path:
    """Build an archive and write it to ``path``."""
    data = build_archive(manifest, files, **kwargs)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


# ---------------------------------------------------------------------------
# Open
# ---------------------------------------------------------------------------


class ArchiveEntryReader:
    """Lazy, restartable reader for one file of an opened archive.

    Nothing is read until ``read`` or ``iter_chunks`` is called, and every
    call starts again from the beginning of the entry.
    """

    def __init__(self, archive: PackageArchive, entry: FileIndexEntry, file: File) -> None:
        self._archive = archive
        self.entry = entry
        self.file = file

    @property
    def path(self) -> str:
        return self.entry.path

    def iter_chunks(self, chunk_size: int | None = None) -> Iterator[bytes]:
        """Yield the decompressed bytes of the entry in chunks."""
        chunk_size = chunk_size or config.read_chunk_size
        compressed = self._archive.compression == Compression.ZLIB
        decompressor = zlib.decompressobj() if compressed else None
        start = self._archive.files_offset + self.entry.file_offset
        remaining = self.entry.compressed_size
        position = start
        while remaining > 0:
            raw = self._archive._read_at(position, min(chunk_size, remaining), self.path)
            position += len(raw)
            remaining -= len(raw)
            if decompressor is None:
                yield raw
                continue
            try:
                out = decompressor.decompress(raw)
            except zlib.error as exc:
                raise IntegrityError(self.path, f"corrupt compressed data: {exc}") from exc
            if out:
                yield out
        if decompressor is not None:
            try:
                tail = decompressor.flush()
            except zlib.error as exc:
                raise IntegrityError(self.path, f"corrupt compressed data: {exc}") from exc
            if not decompressor.eof and self.entry.compressed_size:
                raise IntegrityError(self.path, "compressed data is truncated")
            if tail:
                yield tail

    def __iter__(self) -> Iterator[bytes]:
        return self.iter_chunks()

    def read(self, *, verify: bool = True) -> bytes:
        """Return the full contents, checking size and SHA-256 when ``verify``."""
        data = b"".join(self.iter_chunks())
        if verify:
            if len(data) != self.entry.size:
                raise IntegrityError(
                    self.path,
                    f"size mismatch: index={self.entry.size}, actual={len(data)}",
                )
            actual = sha256_hex(data)
            if not digests_match(self.file.sha256, actual):
                raise IntegrityError(
                    self.path,
                    f"sha256 mismatch: manifest={self.file.sha256!r}, actual={actual}",
                )
        return data


class PackageArchive:
    """An opened package archive over a seekable binary stream.

    The header, manifest and index are parsed and cross-checked on
    construction. File payloads stay on the stream until requested.
    Reads from several threads are serialised on the stream handle.

    Parameters
    ----------
    stream:
        A seekable binary stream positioned anywhere.
    name:
        Label used in log messages.
    """

    def __init__(self, stream: BinaryIO, *, name: str = "<archive>", owns_stream: bool = False) -> None:
        self._stream = stream
        self._owns_stream = owns_stream
        self._lock = threading.Lock()
        self.name = name
        self._parse()

    @classmethod
    def from_bytes(cls, data: bytes, *, name: str = "<bytes>") -> PackageArchive:
        return cls(io.BytesIO(data), name=name, owns_stream=True)

    @classmethod
    def from_path(cls, path: Path) -> PackageArchive:
        path = Path(path)
        stream = path.open("rb")
        try:
            return cls(stream, name=str(path), owns_stream=True)
        except Exception:
            stream.close()
            raise

    # -- Parsing ------------------------------------------------------------

    def _read_exact(self, size: int, section: str) -> bytes:
        data = self._stream.read(size)
        if len(data) != size:
            raise FormatError(section, "truncated header")
        return data

    def _read_length(self, section: str) -> int:
        return _LENGTH.unpack(self._read_exact(_LENGTH.size, section))[0]

    def _parse(self) -> None:
        total = self._stream.seek(0, io.SEEK_END)
        self._stream.seek(0)

        magic = self._stream.read(len(MAGIC))
        if magic != MAGIC:
            raise FormatError("magic", "not a package")

        manifest_length = self._read_length("manifest length")
        if self._stream.tell() + manifest_length > total:
            raise FormatError(
                "manifest",
                f"truncated header: section claims {manifest_length} bytes, "
                f"{total - self._stream.tell()} available",
            )
        manifest_bytes = self._read_exact(manifest_length, "manifest")

        index_length = self._read_length("index length")
        if self._stream.tell() + index_length > total:
            raise FormatError(
                "index",
                f"truncated header: section claims {index_length} bytes, "
                f"{total - self._stream.tell()} available",
            )
        index_bytes = self._read_exact(index_length, "index")

        self.files_offset = self._stream.tell()
        self.files_size = total - self.files_offset

        self.manifest = manifest_from_yaml(manifest_bytes).ensure_valid()
        self.index = index_from_yaml(index_bytes)
        self._cross_check()

    def _cross_check(self) -> None:
        files = self.manifest.files
        entries = self.index.files
        for position, f in enumerate(files):
            if position >= len(entries):
                raise IntegrityError(f.path, "index/manifest mismatch: no index entry")
            if entries[position].path != f.path:
                raise IntegrityError(
                    f.path,
                    f"index/manifest mismatch: index has {entries[position].path} "
                    f"at position {position}",
                )
        if len(entries) > len(files):
            raise IntegrityError(
                entries[len(files)].path, "index/manifest mismatch: not in manifest"
            )

        previous_end = 0
        for entry in entries:
            if entry.file_offset < previous_end:
                raise FormatError(
                    "index", f"{entry.path} overlaps the previous entry"
                )
            if entry.end > self.files_size:
                raise FormatError(
                    "index",
                    f"{entry.path} extends past the files region "
                    f"({entry.end} > {self.files_size})",
                )
            if self.compression == Compression.NONE and entry.compressed_size != entry.size:
                raise IntegrityError(
                    entry.path, "stored size differs from size in an uncompressed archive"
                )
            previous_end = entry.end

    # -- Access -------------------------------------------------------------

    @property
    def compression(self) -> Compression:
        return self.index.compression

    @property
    def paths(self) -> list[str]:
        return [e.path for e in self.index.files]

    def _read_at(self, offset: int, size: int, path: str) -> bytes:
        with self._lock:
            self._stream.seek(offset)
            data = self._stream.read(size)
        if len(data) != size:
            raise IntegrityError(path, "archive ended inside file data")
        return data

    def reader(self, path: str) -> ArchiveEntryReader:
        entry = self.index.entry(path)
        file = self.manifest.file(path)
        if entry is None or file is None:
            raise KeyError(path)
        return ArchiveEntryReader(self, entry, file)

    def readers(self) -> list[ArchiveEntryReader]:
        return [
            ArchiveEntryReader(self, entry, file)
            for entry, file in zip(self.index.files, self.manifest.files)
        ]

    def read(self, path: str, *, verify: bool = True) -> bytes:
        return self.reader(path).read(verify=verify)

    def extract_all(self, *, verify: bool = True) -> dict[str, bytes]:
        """Read every file, in manifest order."""
        return {r.path: r.read(verify=verify) for r in self.readers()}

    def verify(self) -> None:
        """Read every payload and check its size and hash."""
        for r in self.readers():
            r.read(verify=True)

    # -- Resource handling ----------------------------------------------------

    def close(self) -> None:
        if self._owns_stream:
            self._stream.close()

    def __enter__(self) -> PackageArchive:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def open_archive(source: bytes | Path | BinaryIO) -> PackageArchive:
    """Open an archive from bytes, a filesystem path or a binary stream."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        return PackageArchive.from_bytes(bytes(source))
    if isinstance(source, (str, Path)):
        return PackageArchive.from_path(Path(source))
    return PackageArchive(source)
