"""
hrgate Cryptographic Signing

Ed25519 (RFC 8032) signing of heart-rate assertions. Key material is
hex-encoded: the 32-byte private seed and the 32-byte public key, matching
what the mobile/backend signer stores.

Only the trusted side (the backend that knows the live bpm) holds a private
key and decides ``hr_ok``.
"""

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional, Union

try:
    from nacl.signing import SigningKey
    NACL_AVAILABLE = True
except ImportError:
    NACL_AVAILABLE = False

from .assertion import SignedAssertion, UnsignedAssertion
from .canonicalization import canonical_bytes
from .config import SIGNAL_VERSION
from .errors import SigningError
from .util import generate_nonce, hex_decode, hex_encode, now_epoch

SEED_BYTES = 32
PUBLIC_KEY_BYTES = 32
SIGNATURE_BYTES = 64


def _require_nacl():
    if not NACL_AVAILABLE:
        raise RuntimeError("PyNaCl required for cryptographic operations. Install with: pip install pynacl")


@dataclass(frozen=True)
class KeyPair:
    """Ed25519 key pair, hex encoded."""
    private_key: str
    public_key: str
    public_key_version: int = 1

    def to_dict(self):
        return {
            "private_key": self.private_key,
            "public_key": self.public_key,
            "public_key_version": self.public_key_version,
            "algorithm": "Ed25519",
        }


def generate_keypair() -> KeyPair:
    """
    Generate a new Ed25519 key pair.

    The caller persists the private key; nothing is written here.
    """
    _require_nacl()
    signing_key = SigningKey.generate()
    return KeyPair(
        private_key=hex_encode(bytes(signing_key)),
        public_key=hex_encode(bytes(signing_key.verify_key)),
    )


def public_key_for(private_key_hex: str) -> str:
    """Derive the hex public key for a hex private seed."""
    return hex_encode(bytes(_signing_key(private_key_hex).verify_key))


def sign(unsigned: UnsignedAssertion, private_key_hex: str) -> SignedAssertion:
    """
    Sign an assertion.

    Canonicalizes ``unsigned``, signs the UTF-8 bytes and attaches the hex
    signature. Deterministic for identical inputs and key.
    """
    signing_key = _signing_key(private_key_hex)
    signature = signing_key.sign(canonical_bytes(unsigned)).signature
    return SignedAssertion(signature=hex_encode(signature), **_fields_of(unsigned))


def issue(
    subject_key: str,
    session_id: str,
    bpm: int,
    threshold_bpm: int,
    ttl_seconds: int,
    private_key_hex: str,
    now: Optional[int] = None
) -> SignedAssertion:
    """
    Compose and sign a fresh assertion.

    Must be called anew for every publish: the nonce and the expiry are
    generated here and must never be reused across publishes.

    Args:
        subject_key: Stable per-user identifier
        session_id: Workout session the sample belongs to
        bpm: Current heart rate
        threshold_bpm: Configured threshold; met when bpm >= threshold_bpm
        ttl_seconds: Freshness window
        private_key_hex: Signer's private seed
        now: Override for the current Unix time

    Returns:
        SignedAssertion ready to publish
    """
    if now is None:
        now = now_epoch()
    unsigned = UnsignedAssertion(
        version=SIGNAL_VERSION,
        subject_key=subject_key,
        session_id=session_id,
        threshold_met=bpm >= threshold_bpm,
        bpm=bpm,
        threshold_bpm=threshold_bpm,
        expires_at_unix=now + ttl_seconds,
        nonce=generate_nonce(16),
    )
    return sign(unsigned, private_key_hex)


def save_private_key(path: Union[str, Path], key_pair: KeyPair) -> None:
    """Write a key file readable only by the owner."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        json.dump(key_pair.to_dict(), f, indent=2)


def load_private_key(path: Union[str, Path]) -> KeyPair:
    """
    Load a key file written by save_private_key.

    Raises:
        SigningError: file missing, unreadable, or not a valid key
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        private_key = raw["private_key"]
        public_key = raw.get("public_key") or public_key_for(private_key)
        return KeyPair(
            private_key=private_key,
            public_key=public_key,
            public_key_version=int(raw.get("public_key_version", 1)),
        )
    except SigningError:
        raise
    except (OSError, ValueError, KeyError, TypeError) as e:
        raise SigningError(f"cannot load signing key from {path}: {e}") from e


def _signing_key(private_key_hex: str) -> 'SigningKey':
    _require_nacl()
    try:
        return SigningKey(hex_decode(private_key_hex, SEED_BYTES))
    except ValueError as e:
        raise SigningError(f"invalid private key: {e}") from e


def _fields_of(unsigned: UnsignedAssertion):
    return {f.name: getattr(unsigned, f.name) for f in fields(UnsignedAssertion)}
