"""Paystack webhook signature: HMAC-SHA512 over the raw request body."""

from Crypto.Hash import HMAC, SHA512

SIGNATURE_HEADER = "x-paystack-signature"


def generate_signature(raw_body: bytes, secret_key: str) -> str:
    """Lower-case hex HMAC-SHA512 of the body, keyed by the secret key."""
    h = HMAC.new(secret_key.encode("utf-8"), digestmod=SHA512)
    h.update(raw_body)
    return h.hexdigest()


def verify_signature(raw_body: bytes, secret_key: str, signature: str | None) -> bool:
    """Constant-time comparison of the header value against the expected digest."""
    if not signature or not secret_key:
        return False
    h = HMAC.new(secret_key.encode("utf-8"), digestmod=SHA512)
    h.update(raw_body)
    try:
        h.hexverify(signature.strip().lower())
        return True
    except ValueError:
        return False
