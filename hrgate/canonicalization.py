"""
hrgate Canonical Assertion Encoding

The signed message is a compact JSON object holding exactly the eight
assertion fields, keys in alphabetical wire order. Signers in other runtimes
produce the same bytes with ``JSON.stringify`` over an object literal built
in this order, so the encoding here is written field by field instead of
relying on any serializer's key ordering.
"""

import json
from typing import Any, Tuple

# (wire key, attribute name), in canonical order
CANONICAL_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("bpm", "bpm"),
    ("exp_unix", "expires_at_unix"),
    ("hr_ok", "threshold_met"),
    ("nonce", "nonce"),
    ("session_id", "session_id"),
    ("threshold_bpm", "threshold_bpm"),
    ("user_key", "subject_key"),
    ("v", "version"),
)


def canonicalize(assertion: Any) -> str:
    """
    Canonical form of an assertion.

    Rules:
    - exactly the eight fields of CANONICAL_FIELDS, in that order
    - no whitespace between tokens
    - booleans as ``true``/``false``
    - integers in plain decimal (no exponent, no fraction)
    - strings with mandatory JSON escaping only; non-ASCII kept as-is

    Works on anything exposing the assertion attributes; a ``signature``
    attribute, if present, is ignored.

    Raises:
        ValueError: a field has a type with no canonical encoding
    """
    parts = []
    for wire_key, attr in CANONICAL_FIELDS:
        value = getattr(assertion, attr)
        parts.append(f'"{wire_key}":{_encode_value(wire_key, value)}')
    return "{" + ",".join(parts) + "}"


def canonical_bytes(assertion: Any) -> bytes:
    """UTF-8 bytes of the canonical form: the exact message that is signed."""
    return canonicalize(assertion).encode('utf-8')


def _encode_value(key: str, value: Any) -> str:
    # bool first: bool is a subclass of int
    if isinstance(value, bool):
        return "true" if value else "false"
    elif isinstance(value, int):
        return str(value)
    elif isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    else:
        raise ValueError(f"Cannot canonicalize {key}: unsupported type {type(value).__name__}")
