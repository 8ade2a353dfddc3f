"""
Utility functions for hrgate.

Hex encoding, time, nonce and identifier helpers shared by the signer and
the verifier.
"""

import hmac
import secrets
import time
import uuid
from datetime import datetime, timezone
from typing import Union


def now_epoch() -> int:
    """Get current Unix timestamp as integer."""
    return int(time.time())


def utc_timestamp(ts_epoch: float = None) -> str:
    """RFC3339 UTC timestamp with second precision (decision log format)."""
    if ts_epoch is None:
        ts_epoch = time.time()
    return datetime.fromtimestamp(ts_epoch, tz=timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def hex_encode(b: bytes) -> str:
    """Lowercase hex encoding."""
    return b.hex()


def hex_decode(s: str, expected_length: int = None) -> bytes:
    """
    Decode a hex string to bytes.

    Raises:
        ValueError: if the string is not valid hex or has the wrong
            decoded length
    """
    if not isinstance(s, str):
        raise ValueError(f"expected hex string, got {type(s).__name__}")
    data = bytes.fromhex(s)
    if expected_length is not None and len(data) != expected_length:
        raise ValueError(f"expected {expected_length} bytes, got {len(data)}")
    return data


def validate_hex_string(s: str, expected_length: int = None) -> bool:
    """Validate that a string is valid hexadecimal of the given byte length."""
    try:
        hex_decode(s, expected_length)
        return True
    except (ValueError, TypeError):
        return False


def generate_nonce(length: int = 16) -> str:
    """Generate a cryptographically secure random nonce (hex)."""
    return secrets.token_hex(length)


def generate_call_id() -> str:
    """Identifier for a gate call when the host did not supply one."""
    return f"call-{uuid.uuid4().hex}"


def constant_time_compare(a: Union[str, bytes], b: Union[str, bytes]) -> bool:
    """
    Compare two strings/bytes in constant time to prevent timing attacks.
    """
    if isinstance(a, str):
        a = a.encode('utf-8')
    if isinstance(b, str):
        b = b.encode('utf-8')
    return hmac.compare_digest(a, b)


def mask_sensitive(value: str, visible_chars: int = 4) -> str:
    """
    Mask a sensitive value, showing only the last N characters.
    Useful for logging.
    """
    if len(value) <= visible_chars:
        return '*' * len(value)
    return '*' * (len(value) - visible_chars) + value[-visible_chars:]
