"""
hrgate Signing and Verification Test Suite

Critical property tested:
    A SIGNAL VERIFIES ONLY IF EVERY SIGNED FIELD IS EXACTLY AS ISSUED
"""

import json
import os
import stat
import tempfile
import unittest
from dataclasses import replace
from pathlib import Path

from hrgate.errors import SigningError
from hrgate.signing import (
    generate_keypair,
    issue,
    load_private_key,
    public_key_for,
    save_private_key,
    sign,
)
from hrgate.verifier import Reason, verify_full, verify_signature
from hrgate.util import validate_hex_string

from helpers import NOW, RFC8032_PUBLIC, RFC8032_SEED, make_signal


def _flip_hex(value: str, index: int = 0) -> str:
    flipped = format(int(value[index], 16) ^ 0x1, "x")
    return value[:index] + flipped + value[index + 1:]


class TestSigning(unittest.TestCase):
    """Test key handling and issuing."""

    def test_public_key_derivation_rfc8032(self):
        self.assertEqual(public_key_for(RFC8032_SEED), RFC8032_PUBLIC)

    def test_generate_keypair(self):
        kp = generate_keypair()
        self.assertTrue(validate_hex_string(kp.private_key, 32))
        self.assertTrue(validate_hex_string(kp.public_key, 32))
        self.assertEqual(public_key_for(kp.private_key), kp.public_key)

    def test_issue_sets_fields(self):
        signed = make_signal(bpm=142, threshold_bpm=120)
        self.assertEqual(signed.version, 1)
        self.assertEqual(signed.subject_key, "alice")
        self.assertTrue(signed.threshold_met)
        self.assertEqual(signed.expires_at_unix, NOW + 15)
        self.assertTrue(validate_hex_string(signed.nonce, 16))
        self.assertTrue(validate_hex_string(signed.signature, 64))

    def test_threshold_boundary(self):
        self.assertTrue(make_signal(bpm=120, threshold_bpm=120).threshold_met)
        self.assertFalse(make_signal(bpm=119, threshold_bpm=120).threshold_met)

    def test_fresh_nonce_per_issue(self):
        self.assertNotEqual(make_signal().nonce, make_signal().nonce)

    def test_sign_is_deterministic(self):
        signed = make_signal()
        again = sign(signed.unsigned(), RFC8032_SEED)
        self.assertEqual(again.signature, signed.signature)

    def test_bad_private_key(self):
        with self.assertRaises(SigningError):
            issue("alice", "s", 1, 1, 15, "zz" * 32, now=NOW)
        with self.assertRaises(SigningError):
            issue("alice", "s", 1, 1, 15, "ab" * 16, now=NOW)

    def test_key_file_round_trip(self):
        kp = generate_keypair()
        with tempfile.TemporaryDirectory() as d:
            path = Path(d) / "keys" / "signing.json"
            save_private_key(path, kp)
            self.assertEqual(load_private_key(path), kp)
            if os.name == "posix":
                self.assertEqual(stat.S_IMODE(path.stat().st_mode), 0o600)

    def test_key_file_without_public_key(self):
        with tempfile.TemporaryDirectory() as d:
            path = Path(d) / "k.json"
            path.write_text(json.dumps({"private_key": RFC8032_SEED}))
            self.assertEqual(load_private_key(path).public_key, RFC8032_PUBLIC)

    def test_missing_key_file(self):
        with tempfile.TemporaryDirectory() as d:
            with self.assertRaises(SigningError):
                load_private_key(Path(d) / "absent.json")


class TestVerifySignature(unittest.TestCase):
    """Test tamper detection."""

    def setUp(self):
        self.signed = make_signal()

    def test_valid(self):
        result = verify_signature(self.signed, RFC8032_PUBLIC)
        self.assertTrue(result.valid)
        self.assertTrue(result)

    def test_tampered_bpm(self):
        result = verify_signature(replace(self.signed, bpm=self.signed.bpm + 1), RFC8032_PUBLIC)
        self.assertEqual(result.reason, Reason.INVALID_SIGNATURE)

    def test_tampered_hr_ok(self):
        below = make_signal(bpm=90)
        forged = replace(below, threshold_met=True)
        result = verify_signature(forged, RFC8032_PUBLIC)
        self.assertEqual(result.reason, Reason.INVALID_SIGNATURE)

    def test_tampered_exp_unix(self):
        extended = replace(self.signed, expires_at_unix=self.signed.expires_at_unix + 3600)
        result = verify_signature(extended, RFC8032_PUBLIC)
        self.assertEqual(result.reason, Reason.INVALID_SIGNATURE)

    def test_tampered_session_id(self):
        result = verify_signature(replace(self.signed, session_id="other"), RFC8032_PUBLIC)
        self.assertEqual(result.reason, Reason.INVALID_SIGNATURE)

    def test_signature_bit_flips(self):
        for index in (0, 63, 64, 127):
            forged = replace(self.signed, signature=_flip_hex(self.signed.signature, index))
            result = verify_signature(forged, RFC8032_PUBLIC)
            self.assertFalse(result.valid, msg=f"flip at {index}")

    def test_wrong_public_key(self):
        other = generate_keypair().public_key
        result = verify_signature(self.signed, other)
        self.assertEqual(result.reason, Reason.INVALID_SIGNATURE)

    def test_truncated_signature(self):
        forged = replace(self.signed, signature=self.signed.signature[:-2])
        result = verify_signature(forged, RFC8032_PUBLIC)
        self.assertEqual(result.reason, Reason.VERIFICATION_ERROR)

    def test_non_hex_signature(self):
        forged = replace(self.signed, signature="zz" * 64)
        result = verify_signature(forged, RFC8032_PUBLIC)
        self.assertEqual(result.reason, Reason.VERIFICATION_ERROR)

    def test_malformed_public_key(self):
        for bad in ("", "not-hex", RFC8032_PUBLIC[:-2]):
            result = verify_signature(self.signed, bad)
            self.assertEqual(result.reason, Reason.VERIFICATION_ERROR, msg=bad)


class TestVerifyFull(unittest.TestCase):
    """Test signature, freshness and threshold in order."""

    def test_scenario_valid_signal(self):
        result = verify_full(make_signal(), RFC8032_PUBLIC, now_unix=NOW)
        self.assertTrue(result.valid)
        self.assertEqual(result.assertion.bpm, 142)

    def test_scenario_below_threshold(self):
        result = verify_full(make_signal(bpm=100), RFC8032_PUBLIC, now_unix=NOW)
        self.assertEqual(result.reason, Reason.HR_BELOW_THRESHOLD)

    def test_expiry_boundary(self):
        signed = make_signal()
        self.assertTrue(verify_full(signed, RFC8032_PUBLIC, now_unix=signed.expires_at_unix - 1).valid)
        result = verify_full(signed, RFC8032_PUBLIC, now_unix=signed.expires_at_unix)
        self.assertEqual(result.reason, Reason.SIGNAL_EXPIRED)

    def test_signature_checked_before_expiry(self):
        forged = replace(make_signal(), bpm=1)
        result = verify_full(forged, RFC8032_PUBLIC, now_unix=NOW + 3600)
        self.assertEqual(result.reason, Reason.INVALID_SIGNATURE)

    def test_expired_below_threshold_reports_expiry(self):
        result = verify_full(make_signal(bpm=60), RFC8032_PUBLIC, now_unix=NOW + 3600)
        self.assertEqual(result.reason, Reason.SIGNAL_EXPIRED)


if __name__ == "__main__":
    unittest.main(verbosity=2)
