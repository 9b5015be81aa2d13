"""Build request models carrying embedded files (Dockerfile bundles)."""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer

from limepkg.core import embedded


def _decode_embedded(value: Any) -> Any:
    if isinstance(value, str):
        return embedded.decode(value)
    return value


EmbeddedFileContents = Annotated[
    bytes,
    BeforeValidator(_decode_embedded),
    PlainSerializer(embedded.encode, return_type=str),
]

EmbeddedFiles = dict[str, EmbeddedFileContents]


class DockerBuildRequest(BaseModel):
    """A docker-based build of package files, serialisable as YAML."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    dockerfile: str
    tags: list[str] = Field(default_factory=list)
    build_args: dict[str, str] = Field(default_factory=dict, alias="buildargs")
    extra_files: EmbeddedFiles = Field(default_factory=dict, alias="files")
    build_directory: str = Field(default="", alias="buildDirectory")
