"""Package version value: ``v<major>.<minor>.<patch>[-<tag>]``.

Ordering compares (major, minor, patch) only. The tag is informational:
two versions that differ only by tag compare equal.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_serializer, model_validator

from limepkg.errors import InvalidVersion
from limepkg.models.enums import Required

_NUMERIC = re.compile(r"[0-9]+", re.ASCII)


def parse_version(text: str) -> Version:
    """Parse ``text`` into a Version, raising InvalidVersion on failure.

    One leading ``v`` is optional. The first ``-`` separates the tag, so a
    tag may itself contain dashes. Missing minor/patch default to 0.
    """
    if not isinstance(text, str):
        raise InvalidVersion(f"invalid version {text!r}: expected a string")
    body = text[1:] if text.startswith("v") else text
    if body == "":
        raise InvalidVersion(f"invalid version {text!r}: empty")

    numeric, _, tag = body.partition("-")
    parts = numeric.split(".")
    if len(parts) > 3:
        raise InvalidVersion(f"invalid version {text!r}: too many components")
    for part in parts:
        if not _NUMERIC.fullmatch(part):
            raise InvalidVersion(
                f"invalid version {text!r}: component {part!r} is not numeric"
            )
    numbers = [int(p) for p in parts] + [0] * (3 - len(parts))
    return Version(major=numbers[0], minor=numbers[1], patch=numbers[2], tag=tag)


class Version(BaseModel):
    """Immutable semantic version with an optional free-text tag."""

    model_config = ConfigDict(frozen=True)

    major: int = Field(default=0, ge=0)
    minor: int = Field(default=0, ge=0)
    patch: int = Field(default=0, ge=0)
    tag: str = ""

    @model_validator(mode="before")
    @classmethod
    def _accept_text(cls, data: Any) -> Any:
        if isinstance(data, str):
            parsed = parse_version(data)
            return {
                "major": parsed.major,
                "minor": parsed.minor,
                "patch": parsed.patch,
                "tag": parsed.tag,
            }
        return data

    @model_serializer
    def _as_text(self) -> str:
        return str(self)

    @classmethod
    def parse(cls, text: str) -> Version:
        return parse_version(text)

    def __str__(self) -> str:
        text = f"v{self.major}.{self.minor}.{self.patch}"
        if self.tag:
            return f"{text}-{self.tag}"
        return text

    # -- Ordering -----------------------------------------------------------

    @property
    def key(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def compare(self, other: Version) -> int:
        """Return -1, 0 or 1 comparing (major, minor, patch)."""
        if self.key < other.key:
            return -1
        if self.key > other.key:
            return 1
        return 0

    def satisfies(self, requires: Required, target: Version) -> bool:
        """Whether this version meets ``requires`` against ``target``."""
        requires.check_valid()
        result = self.compare(target)
        if result == 0:
            return bool(requires & Required.EQUAL)
        if result > 0:
            return bool(requires & Required.GREATER_THAN)
        return bool(requires & Required.LESS_THAN)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __lt__(self, other: Version) -> bool:
        return self.compare(other) < 0

    def __le__(self, other: Version) -> bool:
        return self.compare(other) <= 0

    def __gt__(self, other: Version) -> bool:
        return self.compare(other) > 0

    def __ge__(self, other: Version) -> bool:
        return self.compare(other) >= 0
