"""Per-author chain state and the sequential message validator.

A feed is validated one transition at a time:

    Empty ──(sequence 1, previous null)──▶ Active(1, h1)
    Active(n, hn) ──(sequence n+1, previous hn, same author)──▶ Active(n+1, hn+1)

``ChainState`` is an immutable snapshot; validating a message never changes
the state it was given, it returns a new one. Nothing is kept between calls,
so a caller tracking many feeds owns its own ``{author: ChainState}`` mapping.

Three modes relax the linkage rules for messages that arrive out of order:

    STRICT                      shape + key + full linkage
    OUT_OF_ORDER_SINGLE_AUTHOR  shape + key + author must not change
    OUT_OF_ORDER_MULTI_AUTHOR   shape + key only

Check order per message: shape, linkage, key. The first failure wins.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from ssb_validate.errors import ChainError, ChainErrorKind, FeedValidationError
from ssb_validate.hashlink import check_key
from ssb_validate.legacy import message_id
from ssb_validate.message import Message
from ssb_validate.observability import Component, LogLevel, get_logger
from ssb_validate.shape import check_shape

_log = get_logger("sequential", Component.CHAIN)


class ValidationMode(Enum):
    STRICT = "strict"
    OUT_OF_ORDER_SINGLE_AUTHOR = "out_of_order_single_author"
    OUT_OF_ORDER_MULTI_AUTHOR = "out_of_order_multi_author"


@dataclass(frozen=True)
class ChainState:
    """Minimal context needed to validate the next message of a feed."""
    author: Optional[str] = None
    sequence: int = 0
    last_hash: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.sequence == 0 and self.last_hash is None

    @classmethod
    def empty(cls, author: Optional[str] = None) -> "ChainState":
        return cls(author=author)

    @classmethod
    def from_message(cls, message: Message) -> "ChainState":
        """State after an already-accepted message (e.g. the latest one in storage)."""
        return cls(
            author=message.author,
            sequence=message.sequence,
            last_hash=message.compute_id(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "author": self.author,
            "sequence": self.sequence,
            "last_hash": self.last_hash,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChainState":
        author = data.get("author")
        sequence = data.get("sequence", 0)
        last_hash = data.get("last_hash")
        if author is not None and not isinstance(author, str):
            raise ValueError("chain state author must be a string or null")
        if isinstance(sequence, bool) or not isinstance(sequence, int) or sequence < 0:
            raise ValueError("chain state sequence must be a non-negative integer")
        if last_hash is not None and not isinstance(last_hash, str):
            raise ValueError("chain state last_hash must be a string or null")
        if (sequence == 0) != (last_hash is None):
            raise ValueError("chain state sequence and last_hash must be set together")
        return cls(author=author, sequence=sequence, last_hash=last_hash)


@dataclass(frozen=True)
class MessageResult:
    """Outcome of validating one message."""
    is_valid: bool
    state: ChainState
    error: Optional[FeedValidationError] = None

    @classmethod
    def success(cls, state: ChainState) -> "MessageResult":
        return cls(is_valid=True, state=state)

    @classmethod
    def failure(cls, state: ChainState, error: FeedValidationError) -> "MessageResult":
        return cls(is_valid=False, state=state, error=error)

    def raise_if_invalid(self) -> None:
        if self.error is not None:
            raise self.error


def check_linkage(
    state: ChainState,
    message: Message,
    mode: ValidationMode = ValidationMode.STRICT,
) -> Optional[ChainError]:
    """Check that ``message`` may follow ``state``.

    Shared by the sequential fold and the parallel stitch pass.
    """
    if mode is ValidationMode.OUT_OF_ORDER_MULTI_AUTHOR:
        return None

    author = message.author
    if state.author is not None and author != state.author:
        return ChainError(
            ChainErrorKind.AUTHOR_CHANGED,
            "the author of a feed must not change",
            field="author",
            expected=state.author,
            actual=author,
        )

    if mode is ValidationMode.OUT_OF_ORDER_SINGLE_AUTHOR:
        return None

    sequence = message.sequence
    previous = message.previous

    if state.is_empty:
        if sequence != 1:
            return ChainError(
                ChainErrorKind.EXPECTED_FIRST_MESSAGE,
                "the first message of a feed must have sequence 1",
                field="sequence",
                expected=1,
                actual=sequence,
            )
        if previous is not None:
            return ChainError(
                ChainErrorKind.EXPECTED_FIRST_MESSAGE,
                "the first message of a feed must have previous of null",
                field="previous",
                expected=None,
                actual=previous,
            )
        return None

    if sequence != state.sequence + 1:
        return ChainError(
            ChainErrorKind.SEQUENCE_OUT_OF_ORDER,
            "the sequence must increase by one",
            field="sequence",
            expected=state.sequence + 1,
            actual=sequence,
        )
    if previous != state.last_hash:
        return ChainError(
            ChainErrorKind.PREVIOUS_HASH_MISMATCH,
            f"previous does not match the hash of message {state.sequence}; the feed is forked",
            field="previous",
            expected=state.last_hash,
            actual=previous,
        )
    return None


def advance(
    state: ChainState,
    message: Message,
    msg_id: str,
    mode: ValidationMode = ValidationMode.STRICT,
) -> ChainState:
    """State after ``message`` (already checked) has been accepted."""
    if mode is ValidationMode.OUT_OF_ORDER_MULTI_AUTHOR:
        return state

    seen = ChainState(author=message.author, sequence=message.sequence, last_hash=msg_id)
    if mode is ValidationMode.OUT_OF_ORDER_SINGLE_AUTHOR:
        # Keep the highest sequence seen so far.
        return combine(state, seen, mode)
    return seen


def combine(
    earlier: ChainState,
    later: ChainState,
    mode: ValidationMode = ValidationMode.STRICT,
) -> ChainState:
    """Fold the state reached by a later run of messages onto an earlier one."""
    if mode is ValidationMode.OUT_OF_ORDER_MULTI_AUTHOR:
        return earlier
    if mode is ValidationMode.OUT_OF_ORDER_SINGLE_AUTHOR:
        # Highest sequence wins; the first author seen stays pinned.
        highest = later if later.sequence > earlier.sequence else earlier
        author = earlier.author if earlier.author is not None else later.author
        return highest if highest.author == author else replace(highest, author=author)
    return later if not later.is_empty else earlier


def validate_message(
    message: Message,
    state: Optional[ChainState] = None,
    mode: ValidationMode = ValidationMode.STRICT,
) -> MessageResult:
    """Validate one message against the current feed state.

    Returns the new state on success; on failure the given state is returned
    unchanged together with the first error found.
    """
    state = state if state is not None else ChainState()
    text = message.text

    def reject(error: FeedValidationError) -> MessageResult:
        if _log.is_enabled_for(LogLevel.DEBUG):
            _log.debug(
                "message rejected",
                kind=error.kind.value,
                field=error.field,
                author=message.author,
                sequence=message.sequence,
            )
        return MessageResult.failure(state, error)

    error: Optional[FeedValidationError] = check_shape(message.value, text)
    if error is not None:
        return reject(error)

    error = check_linkage(state, message, mode)
    if error is not None:
        return reject(error)

    msg_id = message_id(text)
    error = check_key(message, msg_id)
    if error is not None:
        return reject(error)

    return MessageResult.success(advance(state, message, msg_id, mode))
