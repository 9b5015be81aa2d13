"""File index models stored in the archive's index section."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Compression(str, Enum):
    """Codec applied to every file payload in one archive."""

    NONE = "none"
    ZLIB = "zlib"


class FileIndexEntry(BaseModel):
    """Where one file's bytes live inside the files region."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    path: str
    size: int = Field(ge=0)  # original size
    compressed_size: int = Field(ge=0, alias="compressed")
    file_offset: int = Field(ge=0, alias="offset")  # relative to the files region

    @property
    def end(self) -> int:
        return self.file_offset + self.compressed_size


class FileIndex(BaseModel):
    """One entry per manifest file, in manifest order."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    compression: Compression = Compression.NONE
    files: list[FileIndexEntry] = Field(default_factory=list)

    def entry(self, path: str) -> FileIndexEntry | None:
        for entry in self.files:
            if entry.path == path:
                return entry
        return None

    @property
    def region_size(self) -> int:
        return max((e.end for e in self.files), default=0)
