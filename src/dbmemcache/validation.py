"""
dbmemcache - Argument Validation

Shape checks applied before any I/O. Failures raise ValidationError and are
fatal to the single call.
"""

from collections.abc import Sequence
from typing import Any

from .errors import ValidationError
from .types import Key

MAX_KEY_LENGTH = 250
MAX_FLAGS = 0xFFFF


def key_bytes(key: Key) -> bytes:
    """Return the wire representation of a key."""
    if isinstance(key, bytes):
        return key
    return key.encode("utf-8")


def validate_key(key: Any) -> Key:
    """Ensure a key is non-null and between 1 and 249 bytes long."""
    if key is None:
        raise ValidationError("Unable to have a NULL key")
    if not isinstance(key, (str, bytes)):
        raise ValidationError(
            f"Key must be str or bytes, not {type(key).__name__}",
            details={"key_type": type(key).__name__},
        )

    length = len(key_bytes(key))
    if length < 1:
        raise ValidationError("Unable to have a zero length key")
    if length >= MAX_KEY_LENGTH:
        raise ValidationError(
            f"Key length of {length} is longer than maximum key length of {MAX_KEY_LENGTH - 1}",
            details={"length": length, "max_length": MAX_KEY_LENGTH - 1},
        )
    return key


def validate_value(value: Any) -> bytes:
    """Ensure a write value is non-null; str values are UTF-8 encoded."""
    if value is None:
        raise ValidationError("Unable to have a NULL value")
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    raise ValidationError(
        f"Value must be str or bytes, not {type(value).__name__}",
        details={"value_type": type(value).__name__},
    )


def validate_flags(flags: Any) -> int:
    """Client flags are an unsigned 16-bit word."""
    if flags is None:
        return 0
    if isinstance(flags, bool) or not isinstance(flags, int):
        raise ValidationError("Flags must be an integer", details={"flags": repr(flags)})
    if not 0 <= flags <= MAX_FLAGS:
        raise ValidationError(
            f"Flags must be between 0 and {MAX_FLAGS}",
            details={"flags": flags},
        )
    return flags


def validate_key_array(keys: Any) -> list[Key]:
    """
    Validate a multi-get key array.

    The array must be one-dimensional; duplicates are permitted.
    """
    if keys is None:
        raise ValidationError("Unable to have a NULL key array")
    if isinstance(keys, (str, bytes)) or not isinstance(keys, Sequence):
        raise ValidationError(
            "Key array must be a list or tuple of keys",
            details={"keys_type": type(keys).__name__},
        )

    result: list[Key] = []
    for position, key in enumerate(keys):
        if isinstance(key, (list, tuple)):
            raise ValidationError(
                "Multi-dimensional key arrays are not supported",
                details={"position": position},
            )
        result.append(validate_key(key))
    return result
