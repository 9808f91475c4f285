"""Message envelope model.

A ``Message`` is what the validators consume: the decoded value (an
order-preserving mapping), the ``key`` the value claims to hash to, and
optionally the serialized text the decoder produced. When the serialized text
is missing it is rebuilt from the value in the legacy form.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from ssb_validate.legacy import message_id, to_legacy_json

VALUE_FIELDS = (
    "previous",
    "author",
    "sequence",
    "timestamp",
    "hash",
    "content",
    "signature",
)


@dataclass(frozen=True)
class Message:
    """A message value with its optional asserted key."""
    value: Mapping[str, Any]
    key: Optional[str] = None
    serialized: Optional[str] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.value, Mapping):
            raise ValueError(f"message value must be a mapping, got {type(self.value).__name__}")

    @classmethod
    def from_value(cls, value: Mapping[str, Any], key: Optional[str] = None) -> "Message":
        return cls(value=value, key=key)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Message":
        """Build from a decoded KVT record (``key``/``value``/``timestamp``) or a bare value."""
        if "value" in data and isinstance(data.get("value"), Mapping):
            return cls(value=data["value"], key=data.get("key"))
        return cls(value=data)

    @classmethod
    def from_json(cls, text: str) -> "Message":
        """Decode JSON text, preserving field order."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"message is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValueError("message JSON must be an object")
        return cls.from_dict(data)

    @property
    def text(self) -> str:
        """Serialized legacy text of the value."""
        if self.serialized is not None:
            return self.serialized
        return to_legacy_json(self.value)

    def compute_id(self) -> str:
        """Hash of the value; what a following message's ``previous`` must equal."""
        return message_id(self.text)

    @property
    def author(self) -> Any:
        return self.value.get("author")

    @property
    def sequence(self) -> Any:
        return self.value.get("sequence")

    @property
    def previous(self) -> Any:
        return self.value.get("previous")

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"value": dict(self.value)}
        if self.key is not None:
            d["key"] = self.key
        return d
