"""
ssb-validate: Secure Scuttlebutt message and feed validation

Checks that messages are well-formed, that their asserted keys match their
contents and that they correctly extend their author's feed. Large batches
can be validated by a worker pool with results identical to a sequential
fold.

Architecture
────────────

    ┌──────────────────────────────────────────────────────────────────┐
    │  batch.py        sequential / parallel / multi-author / feeds    │
    ├──────────────────────────────────────────────────────────────────┤
    │  chain.py        ChainState, linkage rules, validate_message     │
    ├──────────────────────────────────────────────────────────────────┤
    │  shape.py        field set, order, types, content, length        │
    │  hashlink.py     key vs. hash of value                           │
    ├──────────────────────────────────────────────────────────────────┤
    │  legacy.py       legacy JSON text, UTF-16 length, message ids    │
    │  message.py      Message envelope                                │
    │  errors.py       ShapeError / HashError / ChainError             │
    ├──────────────────────────────────────────────────────────────────┤
    │  config.py       YAML + SSBV_* environment configuration         │
    │  observability.py  structured JSON logging                      │
    └──────────────────────────────────────────────────────────────────┘

Validators never raise on bad input; they return result objects carrying
the first error (or, for multi-author batches, every error). Call
``raise_if_invalid()`` to turn a failed result into an exception.

Copyright (c) 2026 The ssb-validate Authors. All rights reserved.
"""

__version__ = "0.1.0"


# Lazy imports to avoid circular dependencies
def __getattr__(name):
    """Lazy import validator modules on first access."""

    if name in ("Message", "VALUE_FIELDS"):
        from ssb_validate import message
        return getattr(message, name)

    if name in ("FeedValidationError", "ShapeError", "ShapeErrorKind", "HashError",
                "HashErrorKind", "ChainError", "ChainErrorKind", "describe"):
        from ssb_validate import errors
        return getattr(errors, name)

    if name in ("check_shape", "is_canonical_base64"):
        from ssb_validate import shape
        return getattr(shape, name)

    if name == "check_key":
        from ssb_validate import hashlink
        return hashlink.check_key

    if name in ("to_legacy_json", "message_id", "message_id_for_value", "utf16_length",
                "MAX_VALUE_LENGTH"):
        from ssb_validate import legacy
        return getattr(legacy, name)

    if name in ("ChainState", "ValidationMode", "MessageResult", "validate_message",
                "check_linkage", "combine"):
        from ssb_validate import chain
        return getattr(chain, name)

    if name in ("BatchResult", "MultiAuthorResult", "FeedsResult", "IndexedError",
                "validate_sequential", "validate_parallel", "validate_multi_author",
                "validate_feeds"):
        from ssb_validate import batch
        return getattr(batch, name)

    if name in ("ConfigManager", "ConfigError", "get_config", "get_config_manager"):
        from ssb_validate import config
        return getattr(config, name)

    raise AttributeError(f"module 'ssb_validate' has no attribute {name!r}")


__all__ = [
    "__version__",
    # Model
    "Message",
    "VALUE_FIELDS",
    # Errors
    "FeedValidationError",
    "ShapeError",
    "ShapeErrorKind",
    "HashError",
    "HashErrorKind",
    "ChainError",
    "ChainErrorKind",
    "describe",
    # Checks
    "check_shape",
    "is_canonical_base64",
    "check_key",
    "to_legacy_json",
    "message_id",
    "message_id_for_value",
    "utf16_length",
    "MAX_VALUE_LENGTH",
    # Chain
    "ChainState",
    "ValidationMode",
    "MessageResult",
    "validate_message",
    "check_linkage",
    "combine",
    # Batch
    "BatchResult",
    "MultiAuthorResult",
    "FeedsResult",
    "IndexedError",
    "validate_sequential",
    "validate_parallel",
    "validate_multi_author",
    "validate_feeds",
    # Config
    "ConfigManager",
    "ConfigError",
    "get_config",
    "get_config_manager",
]
