"""Tests for webhook payload signing."""
import hashlib
import hmac

from hookrelay.services.signing import SIGNATURE_ALGORITHM, sign, verify


class TestSign:
    def test_matches_hmac_sha256_hex(self):
        """Signature is the hex HMAC-SHA256 of the raw body."""
        body = b'{"event":"order.created"}'
        expected = hmac.new(b"secret", body, hashlib.sha256).hexdigest()
        assert sign(body, "secret") == expected
        assert SIGNATURE_ALGORITHM == "sha256"

    def test_str_and_bytes_sign_the_same(self):
        assert sign("héllo", "s3cret") == sign("héllo".encode("utf-8"), b"s3cret")

    def test_deterministic(self):
        assert sign(b"payload", "k") == sign(b"payload", "k")

    def test_different_secrets_differ(self):
        assert sign(b"payload", "k1") != sign(b"payload", "k2")


class TestVerify:
    def test_round_trip(self):
        signature = sign(b"payload", "secret")
        assert verify(b"payload", signature, "secret") is True

    def test_accepts_uppercase_and_whitespace(self):
        signature = sign(b"payload", "secret")
        assert verify(b"payload", f"  {signature.upper()}\n", "secret") is True

    def test_tampered_payload_rejected(self):
        signature = sign(b"payload", "secret")
        assert verify(b"payload!", signature, "secret") is False

    def test_wrong_secret_rejected(self):
        signature = sign(b"payload", "secret")
        assert verify(b"payload", signature, "other") is False

    def test_empty_signature_rejected(self):
        assert verify(b"payload", "", "secret") is False

    def test_empty_secret_rejected(self):
        assert verify(b"payload", sign(b"payload", ""), "") is False

    def test_non_ascii_signature_rejected(self):
        """compare_digest raises on non-ASCII str; verify turns that into False."""
        assert verify(b"payload", "ünicode", "secret") is False
