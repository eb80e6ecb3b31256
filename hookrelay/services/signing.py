"""
Webhook payload signing.

Receivers replicate `verify` to check that a request came from us:
hex(HMAC-SHA256(secret, raw request body)).
"""
import hashlib
import hmac

SIGNATURE_ALGORITHM = "sha256"


def _as_bytes(value: bytes | str) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def sign(payload: bytes | str, secret: bytes | str) -> str:
    """Generate HMAC-SHA256 hex signature for a webhook payload."""
    return hmac.new(
        _as_bytes(secret),
        _as_bytes(payload),
        hashlib.sha256
    ).hexdigest()


def verify(payload: bytes | str, signature: str, secret: bytes | str) -> bool:
    """
    Check a signature in constant time.

    Returns False for anything that is not the exact expected hex digest,
    including malformed or non-ASCII signatures.
    """
    if not signature or not secret:
        return False
    expected = sign(payload, secret)
    try:
        return hmac.compare_digest(expected, signature.strip().lower())
    except TypeError:
        # compare_digest rejects non-ASCII str input
        return False
