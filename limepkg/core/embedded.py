"""Radix-85 text encoding for binary payloads embedded in manifests.

Uses the plain Ascii85 alphabet (``!`` .. ``u`` plus ``z`` for an all-zero
group) without ``<~ ~>`` framing. Whitespace in encoded text is ignored
on decode so folded YAML scalars still decode.
"""

from __future__ import annotations

import base64
import binascii

from limepkg.errors import EncodingError


def encode(data: bytes) -> str:
    """Encode ``data`` as printable radix-85 text."""
    return base64.a85encode(bytes(data)).decode("ascii")


def decode(text: str | bytes) -> bytes:
    """Decode radix-85 text, raising EncodingError on invalid input."""
    if isinstance(text, str):
        try:
            raw = text.encode("ascii")
        except UnicodeEncodeError as exc:
            raise EncodingError(f"non-ASCII character in embedded data: {exc}") from exc
    else:
        raw = bytes(text)
    try:
        return base64.a85decode(raw)
    except (ValueError, binascii.Error) as exc:
        raise EncodingError(f"invalid embedded data: {exc}") from exc
