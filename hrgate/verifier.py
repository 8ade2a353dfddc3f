"""
hrgate Verification

Two layers:
- verify_signature: the canonical message recomputed from the embedded
  fields verifies under the scope's public key
- verify_full: signature, then freshness (``exp_unix > now``), then the
  ``hr_ok`` flag

Every failure, including exceptions raised while decoding key material,
resolves to an invalid result. Nothing here raises.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

try:
    from nacl.signing import VerifyKey
    from nacl.exceptions import BadSignatureError
    NACL_AVAILABLE = True
except ImportError:
    NACL_AVAILABLE = False

from .assertion import SignedAssertion
from .canonicalization import canonical_bytes
from .signing import PUBLIC_KEY_BYTES, SIGNATURE_BYTES
from .util import hex_decode, now_epoch


class Reason(str, Enum):
    """Why a signal failed verification."""
    INVALID_SIGNATURE = "invalid_signature"
    VERIFICATION_ERROR = "verification_error"
    SIGNAL_EXPIRED = "signal_expired"
    HR_BELOW_THRESHOLD = "hr_below_threshold"


@dataclass
class VerificationResult:
    """Result of verifying a signed assertion."""
    valid: bool
    reason: Optional[Reason] = None
    detail: Optional[str] = None
    assertion: Optional[SignedAssertion] = None

    def __bool__(self) -> bool:
        return self.valid

    @classmethod
    def ok(cls, assertion: SignedAssertion) -> 'VerificationResult':
        return cls(valid=True, assertion=assertion)

    @classmethod
    def invalid(cls, reason: Reason, detail: str = None,
                assertion: SignedAssertion = None) -> 'VerificationResult':
        return cls(valid=False, reason=reason, detail=detail, assertion=assertion)


def verify_signature(signed: SignedAssertion, public_key_hex: str) -> VerificationResult:
    """
    Verify the Ed25519 signature of a signed assertion.

    Returns:
        valid, or invalid with INVALID_SIGNATURE on mismatch and
        VERIFICATION_ERROR on malformed key/signature encoding
    """
    try:
        if not NACL_AVAILABLE:
            raise RuntimeError("PyNaCl not installed")
        message = canonical_bytes(signed)
        signature = hex_decode(signed.signature, SIGNATURE_BYTES)
        verify_key = VerifyKey(hex_decode(public_key_hex, PUBLIC_KEY_BYTES))
    except Exception as e:
        return VerificationResult.invalid(
            Reason.VERIFICATION_ERROR, f"Verification error: {e}", signed
        )

    try:
        verify_key.verify(message, signature)
    except BadSignatureError:
        return VerificationResult.invalid(Reason.INVALID_SIGNATURE, "Invalid signature", signed)
    except Exception as e:
        return VerificationResult.invalid(
            Reason.VERIFICATION_ERROR, f"Verification error: {e}", signed
        )

    return VerificationResult.ok(signed)


def verify_full(
    signed: SignedAssertion,
    public_key_hex: str,
    now_unix: Optional[int] = None
) -> VerificationResult:
    """
    Full verification: signature, freshness, threshold.

    Short-circuits on the first failure.
    """
    now = now_epoch() if now_unix is None else now_unix

    result = verify_signature(signed, public_key_hex)
    if not result.valid:
        return result

    expired = check_expiry(signed, now)
    if expired is not None:
        return expired

    return check_threshold(signed)


def check_expiry(signed: SignedAssertion, now_unix: int) -> Optional[VerificationResult]:
    """SIGNAL_EXPIRED result when ``exp_unix <= now``, else None."""
    if signed.expires_at_unix <= now_unix:
        return VerificationResult.invalid(
            Reason.SIGNAL_EXPIRED,
            f"Signal expired at {signed.expires_at_unix}, current time is {now_unix}",
            signed
        )
    return None


def check_threshold(signed: SignedAssertion) -> VerificationResult:
    """Valid only when the signer asserted the threshold was met."""
    if signed.threshold_met is not True:
        return VerificationResult.invalid(
            Reason.HR_BELOW_THRESHOLD,
            f"HR {signed.bpm} is below threshold {signed.threshold_bpm}",
            signed
        )
    return VerificationResult.ok(signed)
