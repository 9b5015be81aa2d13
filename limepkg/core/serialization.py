"""YAML encoding of manifests and file indexes.

Canonical form: model_dump in JSON mode with YAML aliases, empty optional
sections dropped, keys in declaration order, UTF-8 bytes.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from limepkg.errors import FormatError, LimePackageError
from limepkg.models.archive import FileIndex
from limepkg.models.manifest import Manifest

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _prune(value: Any) -> Any:
    """Drop None values and empty lists from nested dicts."""
    if isinstance(value, dict):
        pruned = {}
        for key, item in value.items():
            item = _prune(item)
            if item is None or item == []:
                continue
            pruned[key] = item
        return pruned
    if isinstance(value, list):
        return [_prune(item) for item in value]
    return value


def _domain_error(exc: ValidationError) -> LimePackageError | None:
    """Return the first limepkg error raised inside a pydantic validator."""
    for error in exc.errors():
        cause = (error.get("ctx") or {}).get("error")
        if isinstance(cause, LimePackageError):
            return cause
    return None


def dump_model(model: BaseModel) -> bytes:
    """Serialize a model to canonical YAML bytes."""
    data = _prune(model.model_dump(mode="json", by_alias=True))
    text = yaml.safe_dump(
        data, default_flow_style=False, allow_unicode=True, sort_keys=False,
    )
    return text.encode("utf-8")


def load_model(model_cls: type[ModelT], data: bytes, section: str) -> ModelT:
    """Parse YAML bytes into ``model_cls``, raising FormatError naming ``section``."""
    try:
        raw = yaml.safe_load(data.decode("utf-8"))
    except (UnicodeDecodeError, yaml.YAMLError) as exc:
        raise FormatError(section, f"not valid YAML: {exc}") from exc
    if not isinstance(raw, dict):
        raise FormatError(section, f"expected a mapping, got {type(raw).__name__}")
    try:
        return model_cls.model_validate(raw)
    except ValidationError as exc:
        domain_error = _domain_error(exc)
        if domain_error is not None:
            raise domain_error from exc
        raise FormatError(section, f"schema violation: {exc}") from exc


def manifest_to_yaml(manifest: Manifest) -> bytes:
    return dump_model(manifest)


def manifest_from_yaml(data: bytes) -> Manifest:
    return load_model(Manifest, data, "manifest")


def index_to_yaml(index: FileIndex) -> bytes:
    return dump_model(index)


def index_from_yaml(data: bytes) -> FileIndex:
    return load_model(FileIndex, data, "index")
