"""Legacy message encoding primitives.

SSB message values are identified by a hash of their "legacy" JSON text, the
exact output of JavaScript's ``JSON.stringify(value, null, 2)``. This module
reproduces that text form and derives the two facts the validators need from
it:

- the length of the text in UTF-16 code units (the protocol limit is 8192)
- the message id: ``%`` + base64(SHA-256(latin1 bytes)) + ``.sha256``

The hash input is not UTF-8. Node's ``Buffer.from(text, "binary")`` keeps only
the low byte of every UTF-16 code unit, and the reference implementation hashes
those bytes, so we do the same.

Design principles:
- Pure functions, no global mutable state
- Byte-for-byte reproducibility with the JavaScript implementation
"""

from __future__ import annotations

import base64
import hashlib
import json
import math
from decimal import Decimal
from typing import Any, List, Mapping

HASH_FUNCTION = "sha256"
MESSAGE_ID_PREFIX = "%"
MESSAGE_ID_SUFFIX = ".sha256"
MAX_VALUE_LENGTH = 8192

_INDENT = "  "


def format_number(number: Any) -> str:
    """Format a number the way ``JSON.stringify`` does."""
    if isinstance(number, int):
        return str(number)
    if math.isnan(number) or math.isinf(number):
        return "null"
    if number == 0:
        return "0"

    # repr() gives the shortest round-trip digits, as JavaScript does.
    d = Decimal(repr(number))
    exponent = d.adjusted()
    if -7 < exponent < 21:
        text = format(d, "f")
        if "." in text:
            text = text.rstrip("0").rstrip(".")
        return text

    sign, digits, _ = d.as_tuple()
    text = "".join(str(x) for x in digits).rstrip("0") or "0"
    mantissa = text[0] + ("." + text[1:] if len(text) > 1 else "")
    return f"{'-' if sign else ''}{mantissa}e{'+' if exponent > 0 else '-'}{abs(exponent)}"


def _encode(value: Any, depth: int, out: List[str]) -> None:
    if value is None:
        out.append("null")
    elif value is True:
        out.append("true")
    elif value is False:
        out.append("false")
    elif isinstance(value, str):
        out.append(json.dumps(value, ensure_ascii=False))
    elif isinstance(value, (int, float)):
        out.append(format_number(value))
    elif isinstance(value, Mapping):
        if not value:
            out.append("{}")
            return
        inner = _INDENT * (depth + 1)
        out.append("{\n")
        for i, (k, v) in enumerate(value.items()):
            if not isinstance(k, str):
                raise TypeError(f"object keys must be strings, got {type(k).__name__}")
            if i:
                out.append(",\n")
            out.append(inner + json.dumps(k, ensure_ascii=False) + ": ")
            _encode(v, depth + 1, out)
        out.append("\n" + _INDENT * depth + "}")
    elif isinstance(value, (list, tuple)):
        if not value:
            out.append("[]")
            return
        inner = _INDENT * (depth + 1)
        out.append("[\n")
        for i, v in enumerate(value):
            if i:
                out.append(",\n")
            out.append(inner)
            _encode(v, depth + 1, out)
        out.append("\n" + _INDENT * depth + "]")
    else:
        raise TypeError(f"cannot encode {type(value).__name__} as legacy JSON")


def to_legacy_json(value: Any) -> str:
    """Serialize a decoded value to its legacy JSON text.

    Key order is taken from the mapping as-is; it is part of the message and
    must never be sorted.
    """
    out: List[str] = []
    _encode(value, 0, out)
    return "".join(out)


def utf16_length(text: str) -> int:
    """Length of ``text`` in UTF-16 code units (astral characters count twice)."""
    return len(text.encode("utf-16-le", "surrogatepass")) // 2


def binary_bytes(text: str) -> bytes:
    """Low byte of every UTF-16 code unit, as Node's ``"binary"`` encoding does."""
    return text.encode("utf-16-le", "surrogatepass")[::2]


def message_id(serialized: str) -> str:
    """Compute the ``%...=.sha256`` id of a serialized message value."""
    digest = hashlib.sha256(binary_bytes(serialized)).digest()
    return MESSAGE_ID_PREFIX + base64.b64encode(digest).decode("ascii") + MESSAGE_ID_SUFFIX


def message_id_for_value(value: Any) -> str:
    """Compute the message id of a decoded value."""
    return message_id(to_legacy_json(value))
