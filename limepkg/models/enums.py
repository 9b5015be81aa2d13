"""Closed enumerations with their exact textual spellings.

Parsing is a case-insensitive table lookup; serialization is the value
(or, for ``Required``, the symbol table entry).
"""

from __future__ import annotations

from enum import Enum, IntFlag

from limepkg.errors import InvalidManifest


class TextEnum(str, Enum):
    """String enum whose ``parse`` ignores case and surrounding whitespace."""

    @classmethod
    def parse(cls, text: str):
        key = text.strip().lower()
        for member in cls:
            if member.value == key:
                return member
        raise ValueError(f"unknown {cls.__name__} {text!r}")


class Architecture(TextEnum):
    """Target system architecture."""

    AMD64 = "amd64"
    ARM64 = "arm64"

    @classmethod
    def parse(cls, text: str) -> Architecture:
        if text.strip() == "":
            return cls.AMD64
        return super().parse(text)


class Relationship(TextEnum):
    """How a package relates to one of its dependencies."""

    SUGGESTS = "suggests"
    RECOMMENDS = "recommends"
    DEPENDS = "depends"
    PREDEPENDS = "predepends"
    BREAKS = "breaks"
    CONFLICTS = "conflicts"
    PROVIDES = "provides"
    REPLACES = "replaces"


# Relationships that gate installation and define ordering edges.
HARD_RELATIONSHIPS = frozenset({Relationship.DEPENDS, Relationship.PREDEPENDS})
ADVISORY_RELATIONSHIPS = frozenset({Relationship.SUGGESTS, Relationship.RECOMMENDS})
NEGATIVE_RELATIONSHIPS = frozenset({Relationship.BREAKS, Relationship.CONFLICTS})
VIRTUAL_RELATIONSHIPS = frozenset({Relationship.PROVIDES, Relationship.REPLACES})


class FileType(TextEnum):
    """Package file category."""

    CONFIGURATION = "config"
    EXECUTABLE = "exec"
    DATA = "data"
    OTHER = "other"

    @classmethod
    def parse(cls, text: str) -> FileType:
        if text.strip() == "":
            return cls.OTHER
        return super().parse(text)


class ActionType(TextEnum):
    """Lifecycle phase an action belongs to."""

    INSTALL = "install"
    RECONFIGURE = "reconfigure"
    UPGRADE = "upgrade"
    REMOVE = "remove"
    PURGE = "purge"


class Required(IntFlag):
    """Version comparison qualifier as bit flags."""

    EQUAL = 1
    GREATER_THAN = 2
    LESS_THAN = 4
    GREATER_THAN_EQUAL = EQUAL | GREATER_THAN
    LESS_THAN_EQUAL = EQUAL | LESS_THAN

    @classmethod
    def parse(cls, text: str) -> Required:
        symbol = text.strip()
        for value, name in REQUIRED_SYMBOLS.items():
            if name == symbol:
                return value
        raise ValueError(f"unknown required relationship {text!r}")

    @property
    def symbol(self) -> str:
        return REQUIRED_SYMBOLS[self]

    def check_valid(self) -> None:
        """Reject bit patterns that are not one of the five named combinations."""
        if int(self) not in _VALID_REQUIRED:
            raise InvalidManifest(f"invalid requires bit pattern {int(self)}")


REQUIRED_SYMBOLS: dict[Required, str] = {
    Required.EQUAL: "==",
    Required.GREATER_THAN: ">>",
    Required.GREATER_THAN_EQUAL: ">=",
    Required.LESS_THAN: "<<",
    Required.LESS_THAN_EQUAL: "<=",
}

_VALID_REQUIRED = frozenset(int(r) for r in REQUIRED_SYMBOLS)
