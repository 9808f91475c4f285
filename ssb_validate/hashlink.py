"""Key / value hash linkage.

A message envelope may assert a ``key``: the id its value hashes to. When
present it is recomputed from the serialized value and compared exactly.
"""

from __future__ import annotations

from typing import Optional

from ssb_validate.errors import HashError, HashErrorKind
from ssb_validate.message import Message


def check_key(message: Message, actual_id: Optional[str] = None) -> Optional[HashError]:
    """Compare ``message.key`` to the hash of its value.

    ``actual_id`` may be passed when the caller already hashed the value.
    Messages without a key always pass.
    """
    if message.key is None:
        return None

    actual = actual_id if actual_id is not None else message.compute_id()
    if actual != message.key:
        return HashError(
            HashErrorKind.KEY_MISMATCH,
            "the hash of the value does not match the message key",
            field="key",
            expected=message.key,
            actual=actual,
        )
    return None
