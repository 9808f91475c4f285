"""Field-shape checks for a single message value.

Checks, in order (the first failure is returned):

1. exact field set and canonical field order
2. field types (JSON Schema)
3. ``hash`` names the supported hash function
4. string ``content`` is canonical base64 with a ``.box`` marker
5. serialized length is at most 8192 UTF-16 code units

The field order rule is asymmetric: ``author`` and ``sequence``
may swap places, every other field has a fixed position.
"""

from __future__ import annotations

import base64
import binascii
import re
from functools import lru_cache
from typing import Any, List, Mapping, Optional

from jsonschema import Draft202012Validator

from ssb_validate.errors import ShapeError, ShapeErrorKind
from ssb_validate.legacy import HASH_FUNCTION, MAX_VALUE_LENGTH, to_legacy_json, utf16_length
from ssb_validate.message import VALUE_FIELDS

# Private messages end in `.box`; newer envelope specs append a version (`.box2`).
BOX_SUFFIX_RE = re.compile(r"\.box\d*\Z")

_SWAPPABLE = frozenset({"author", "sequence"})
_TAIL = list(VALUE_FIELDS[3:])

VALUE_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "properties": {
        "previous": {"type": ["string", "null"]},
        "author": {"type": "string"},
        "sequence": {"type": "integer", "minimum": 1},
        "timestamp": {"type": "number"},
        "hash": {"type": "string"},
        "content": {"type": ["object", "string"]},
        "signature": {"type": "string"},
    },
}


@lru_cache(maxsize=1)
def _value_validator() -> Draft202012Validator:
    return Draft202012Validator(VALUE_SCHEMA)


def is_canonical_base64(text: str) -> bool:
    """True iff decoding then re-encoding ``text`` yields ``text`` unchanged."""
    try:
        raw = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        return False
    return base64.b64encode(raw).decode("ascii") == text


def _check_fields(keys: List[str], value: Mapping[str, Any]) -> Optional[ShapeError]:
    for k in keys:
        if k not in VALUE_FIELDS:
            return ShapeError(
                ShapeErrorKind.UNEXPECTED_FIELD,
                f"unexpected field {k!r}",
                field=k,
                expected=list(VALUE_FIELDS),
                actual=keys,
            )

    for f in VALUE_FIELDS:
        if f not in value:
            return ShapeError(
                ShapeErrorKind.MISSING_FIELD,
                f"missing field {f!r}",
                field=f,
                expected=list(VALUE_FIELDS),
                actual=keys,
            )

    misplaced = ""
    if keys[0] != "previous":
        misplaced = keys[0]
    elif set(keys[1:3]) != _SWAPPABLE:
        misplaced = next(k for k in keys[1:3] if k not in _SWAPPABLE)
    elif keys[3:] != _TAIL:
        misplaced = next(k for k, want in zip(keys[3:], _TAIL) if k != want)

    if misplaced:
        return ShapeError(
            ShapeErrorKind.BAD_FIELD_ORDER,
            f"field {misplaced!r} is out of order",
            field=misplaced,
            expected=list(VALUE_FIELDS),
            actual=keys,
        )
    return None


def _check_types(value: Mapping[str, Any]) -> Optional[ShapeError]:
    errors = list(_value_validator().iter_errors(dict(value)))
    if not errors:
        return None

    def position(err) -> int:
        name = err.path[0] if err.path else ""
        return VALUE_FIELDS.index(name) if name in VALUE_FIELDS else len(VALUE_FIELDS)

    err = min(errors, key=position)
    name = str(err.path[0]) if err.path else ""
    return ShapeError(
        ShapeErrorKind.INVALID_FIELD_TYPE,
        err.message,
        field=name,
        expected=err.schema.get(err.validator) if isinstance(err.schema, dict) else None,
        actual=err.instance,
    )


def _check_content(content: Any) -> Optional[ShapeError]:
    if not isinstance(content, str):
        return None

    m = BOX_SUFFIX_RE.search(content)
    body = content[: m.start()] if m else content
    if not is_canonical_base64(body):
        return ShapeError(
            ShapeErrorKind.NON_CANONICAL_BASE64,
            "content string must be canonical base64",
            field="content",
            actual=content,
        )
    if not m:
        return ShapeError(
            ShapeErrorKind.MISSING_BOX_SUFFIX,
            "content string must end with the .box marker",
            field="content",
            expected=".box",
            actual=content,
        )
    return None


def check_shape(value: Mapping[str, Any], serialized: Optional[str] = None) -> Optional[ShapeError]:
    """Check the structure of a message value.

    Args:
        value: Decoded value, in the order it was received.
        serialized: Text form of the value; rebuilt from ``value`` when omitted.

    Returns:
        The first ``ShapeError`` found, or ``None`` when the value is well-formed.
    """
    keys = list(value.keys())

    error = _check_fields(keys, value)
    if error is None:
        error = _check_types(value)
    if error is not None:
        return error

    if value["hash"] != HASH_FUNCTION:
        return ShapeError(
            ShapeErrorKind.UNSUPPORTED_HASH,
            f"hash must be {HASH_FUNCTION!r}",
            field="hash",
            expected=HASH_FUNCTION,
            actual=value["hash"],
        )

    error = _check_content(value["content"])
    if error is not None:
        return error

    text = serialized if serialized is not None else to_legacy_json(value)
    length = utf16_length(text)
    if length > MAX_VALUE_LENGTH:
        return ShapeError(
            ShapeErrorKind.MESSAGE_TOO_LONG,
            f"value is {length} UTF-16 code units, limit is {MAX_VALUE_LENGTH}",
            field="value",
            expected=MAX_VALUE_LENGTH,
            actual=length,
        )
    return None
