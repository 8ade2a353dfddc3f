"""
hrgate Heart-Rate Assertion

The claim "heart rate is currently at/above threshold", with an expiry and a
replay-diversifying nonce. ``UnsignedAssertion`` is what gets canonicalized
and signed; ``SignedAssertion`` is the only document ever published to a
signal ref.
"""

import json
from dataclasses import dataclass, fields
from typing import Any, Dict

from .canonicalization import CANONICAL_FIELDS
from .errors import MalformedPayloadError

SIGNATURE_KEY = "sig"

# attribute name -> accepted type
_FIELD_TYPES = {
    "version": int,
    "subject_key": str,
    "session_id": str,
    "threshold_met": bool,
    "bpm": int,
    "threshold_bpm": int,
    "expires_at_unix": int,
    "nonce": str,
}


def _type_ok(value: Any, expected: type) -> bool:
    if expected is int:
        return isinstance(value, int) and not isinstance(value, bool)
    return isinstance(value, expected)


@dataclass(frozen=True)
class UnsignedAssertion:
    """
    Assertion before signing.

    Every field is required and strictly typed; ``bool`` is never accepted
    where an integer is expected.
    """
    version: int
    subject_key: str
    session_id: str
    threshold_met: bool
    bpm: int
    threshold_bpm: int
    expires_at_unix: int
    nonce: str

    def __post_init__(self):
        self._validate()

    def _validate(self):
        for name, expected in _FIELD_TYPES.items():
            value = getattr(self, name)
            if not _type_ok(value, expected):
                raise MalformedPayloadError(
                    f"{name} must be {expected.__name__}, got {type(value).__name__}",
                    field=name
                )
        if self.bpm < 0:
            raise MalformedPayloadError("bpm must be >= 0", field="bpm")
        if self.threshold_bpm < 0:
            raise MalformedPayloadError("threshold_bpm must be >= 0", field="threshold_bpm")

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation (without signature)."""
        return {wire: getattr(self, attr) for wire, attr in CANONICAL_FIELDS}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UnsignedAssertion':
        return cls(**_attrs_from_wire(data))


@dataclass(frozen=True)
class SignedAssertion(UnsignedAssertion):
    """UnsignedAssertion plus a hex-encoded Ed25519 signature."""
    signature: str

    def _validate(self):
        super()._validate()
        if not isinstance(self.signature, str):
            raise MalformedPayloadError("sig must be a string", field="signature")

    def unsigned(self) -> UnsignedAssertion:
        """The signed-over portion."""
        return UnsignedAssertion(**{
            f.name: getattr(self, f.name) for f in fields(UnsignedAssertion)
        })

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data[SIGNATURE_KEY] = self.signature
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(',', ':'), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SignedAssertion':
        """
        Parse a wire payload.

        Extra keys are ignored; they never participate in signing.

        Raises:
            MalformedPayloadError: a required field is absent, null, or of
                the wrong type
        """
        attrs = _attrs_from_wire(data)
        signature = data.get(SIGNATURE_KEY)
        if signature is None:
            raise MalformedPayloadError("missing field: sig", field="signature")
        return cls(signature=signature, **attrs)

    @classmethod
    def from_json(cls, raw: str) -> 'SignedAssertion':
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise MalformedPayloadError(f"payload is not JSON: {e}") from e
        return cls.from_dict(data)


def _attrs_from_wire(data: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise MalformedPayloadError("payload must be a JSON object")
    attrs = {}
    for wire, attr in CANONICAL_FIELDS:
        value = data.get(wire)
        if value is None:
            raise MalformedPayloadError(f"missing field: {wire}", field=attr)
        attrs[attr] = value
    return attrs
