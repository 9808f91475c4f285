"""
Validation error taxonomy.

Every check returns (never raises) one of three error families so callers can
decide whether a bad message aborts a feed or is merely recorded:

    ShapeError   structural problems with a single message value
    HashError    the asserted `key` does not match the value
    ChainError   the message does not extend the prior feed state

Each error carries the offending field and the expected/actual values so it
can be logged or surfaced without re-running the check.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ShapeErrorKind(Enum):
    UNEXPECTED_FIELD = "unexpected_field"
    MISSING_FIELD = "missing_field"
    BAD_FIELD_ORDER = "bad_field_order"
    INVALID_FIELD_TYPE = "invalid_field_type"
    NON_CANONICAL_BASE64 = "non_canonical_base64"
    MISSING_BOX_SUFFIX = "missing_box_suffix"
    MESSAGE_TOO_LONG = "message_too_long"
    UNSUPPORTED_HASH = "unsupported_hash"


class HashErrorKind(Enum):
    KEY_MISMATCH = "key_mismatch"


class ChainErrorKind(Enum):
    EXPECTED_FIRST_MESSAGE = "expected_first_message"
    PREVIOUS_HASH_MISMATCH = "previous_hash_mismatch"
    SEQUENCE_OUT_OF_ORDER = "sequence_out_of_order"
    AUTHOR_CHANGED = "author_changed"


class FeedValidationError(Exception):
    """Base exception for message and feed validation failures."""

    def __init__(
        self,
        kind: Enum,
        message: str,
        field: str = "",
        expected: Any = None,
        actual: Any = None,
    ):
        self.kind = kind
        self.message = message
        self.field = field
        self.expected = expected
        self.actual = actual
        super().__init__(f"{kind.value}: {message}")

    def __reduce__(self):
        # Rebuild from the constructor arguments so errors survive process pools.
        return (
            self.__class__,
            (self.kind, self.message, self.field, self.expected, self.actual),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FeedValidationError):
            return NotImplemented
        return (
            type(self) is type(other)
            and self.kind == other.kind
            and self.field == other.field
            and self.expected == other.expected
            and self.actual == other.actual
        )

    def __hash__(self) -> int:
        return hash((type(self), self.kind, self.field))

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "kind": self.kind.value,
            "field": self.field,
            "expected": self.expected,
            "actual": self.actual,
            "message": self.message,
        }


class ShapeError(FeedValidationError):
    """A message value is malformed."""

    kind: ShapeErrorKind


class HashError(FeedValidationError):
    """A message key does not match the hash of its value."""

    kind: HashErrorKind


class ChainError(FeedValidationError):
    """A message does not correctly extend the feed."""

    kind: ChainErrorKind


def describe(error: Optional[FeedValidationError]) -> str:
    """One-line description of an error, or an empty string."""
    if error is None:
        return ""
    where = f" [{error.field}]" if error.field else ""
    return f"{type(error).__name__}.{error.kind.name}{where}: {error.message}"
