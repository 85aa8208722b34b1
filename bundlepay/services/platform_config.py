"""
Platform configuration: runtime settings in the system_config table,
layered over environment variables.

The gateway secret key may be stored by an admin; it is kept encrypted
with Fernet under a key derived from JWT_SECRET via PBKDF2 and takes
precedence over PAYSTACK_SECRET_KEY.
"""

import base64
import logging
import os
from datetime import datetime

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from bundlepay.database import get_db

logger = logging.getLogger(__name__)

POOLING_OWN = "own"
POOLING_POOLED = "pooled"
POOLING_POLICIES = (POOLING_OWN, POOLING_POOLED)


class PlatformConfigError(Exception):
    """Invalid configuration value."""
    pass


def _get_fernet() -> Fernet:
    """Derive the Fernet key from JWT_SECRET."""
    secret = os.getenv("JWT_SECRET", "default-secret-key")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=b"bundlepay-salt",
        iterations=100_000,
    )
    key = base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))
    return Fernet(key)


def _encrypt(plaintext: str) -> str:
    f = _get_fernet()
    return f.encrypt(plaintext.encode("utf-8")).decode("utf-8")


def _decrypt(ciphertext: str) -> str:
    f = _get_fernet()
    return f.decrypt(ciphertext.encode("utf-8")).decode("utf-8")


# ── Generic key/value ─────────────────────────────────────


def get_config(key: str) -> str | None:
    """Read one value from system_config."""
    db = get_db()
    try:
        row = db.execute(
            "SELECT config_value FROM system_config WHERE config_key = ?",
            (key,),
        ).fetchone()
        return row["config_value"] if row else None
    finally:
        db.close()


def set_config(key: str, value: str | None) -> None:
    """Insert or update one value in system_config."""
    now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    db = get_db()
    try:
        db.execute(
            """INSERT INTO system_config (config_key, config_value, updated_at)
               VALUES (?, ?, ?)
               ON CONFLICT(config_key)
               DO UPDATE SET config_value = excluded.config_value,
                             updated_at = excluded.updated_at""",
            (key, value, now),
        )
        db.commit()
    finally:
        db.close()


# ── Gateway settings ──────────────────────────────────────


def save_gateway_secret(secret_key: str) -> dict:
    """
    Store the Paystack secret key (encrypted) and try a connectivity check.

    Returns:
        {"status": "verified"/"failed", "message": str}

    Raises:
        PlatformConfigError: empty key.
    """
    secret_key = (secret_key or "").strip()
    if not secret_key:
        raise PlatformConfigError("Secret key cannot be empty")

    set_config("paystack_secret_key", _encrypt(secret_key))

    from bundlepay.services.paystack_client import PaystackClient
    settings = get_gateway_settings()
    client = PaystackClient(secret_key, settings["base_url"], settings["timeout"])
    if client.verify_connectivity():
        status, message = "verified", "Gateway credentials verified"
    else:
        status, message = "failed", "Credentials saved but the connectivity check failed"

    set_config("gateway_status", status)
    logger.info("Gateway secret key updated (status=%s)", status)
    return {"status": status, "message": message}


def get_gateway_secret() -> str:
    """Stored key if present and decryptable, else PAYSTACK_SECRET_KEY."""
    encrypted = get_config("paystack_secret_key")
    if encrypted:
        try:
            return _decrypt(encrypted)
        except InvalidToken:
            logger.error("Failed to decrypt stored gateway secret; falling back to environment")
    return os.getenv("PAYSTACK_SECRET_KEY", "")


def get_gateway_settings() -> dict:
    """Everything the gateway adapter and settlement engine need to reach Paystack."""
    try:
        timeout = float(os.getenv("GATEWAY_TIMEOUT", "10"))
    except ValueError:
        timeout = 10.0
    return {
        "secret_key": get_gateway_secret(),
        "base_url": os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co"),
        "timeout": timeout,
        "app_url": os.getenv("APP_URL", "http://localhost:8000").rstrip("/"),
    }


def get_gateway_status() -> dict:
    """
    Returns:
        {"status": "unconfigured"/"configured"/"verified"/"failed", "source": "database"/"environment"/None}
    """
    if get_config("paystack_secret_key"):
        return {"status": get_config("gateway_status") or "configured", "source": "database"}
    if os.getenv("PAYSTACK_SECRET_KEY"):
        return {"status": "configured", "source": "environment"}
    return {"status": "unconfigured", "source": None}


# ── Withdrawal pooling policy ─────────────────────────────


def get_withdrawal_policy() -> str:
    """system_config override, then WITHDRAWAL_POOLING, then "own"."""
    value = get_config("withdrawal_pooling") or os.getenv("WITHDRAWAL_POOLING", POOLING_OWN)
    value = value.strip().lower()
    if value not in POOLING_POLICIES:
        logger.warning("Unknown withdrawal pooling policy %r; using %r", value, POOLING_OWN)
        return POOLING_OWN
    return value


def set_withdrawal_policy(policy: str) -> None:
    """
    Raises:
        PlatformConfigError: unknown policy name.
    """
    policy = (policy or "").strip().lower()
    if policy not in POOLING_POLICIES:
        raise PlatformConfigError(
            f"Unknown pooling policy '{policy}'; expected one of {', '.join(POOLING_POLICIES)}"
        )
    set_config("withdrawal_pooling", policy)
