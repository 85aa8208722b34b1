"""Platform configuration tests: key/value store, encrypted gateway secret, pooling policy."""

import os
import sqlite3
import tempfile
from unittest.mock import patch

import pytest

_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False, prefix="platform_config_")
_tmp.close()
os.environ["DB_PATH"] = _tmp.name
os.environ["JWT_SECRET"] = "test-secret-key-for-platform-config"

import bundlepay.database as _db_mod
from bundlepay.database import drop_all, init_db
from bundlepay.services.platform_config import (
    POOLING_OWN,
    POOLING_POOLED,
    PlatformConfigError,
    _decrypt,
    _encrypt,
    get_config,
    get_gateway_secret,
    get_gateway_settings,
    get_gateway_status,
    get_withdrawal_policy,
    save_gateway_secret,
    set_config,
    set_withdrawal_policy,
)


@pytest.fixture(autouse=True)
def _setup_db(monkeypatch):
    os.environ["DB_PATH"] = _tmp.name
    _db_mod.DB_PATH = _tmp.name
    for name in ("PAYSTACK_SECRET_KEY", "WITHDRAWAL_POOLING", "GATEWAY_TIMEOUT", "APP_URL", "PAYSTACK_BASE_URL"):
        monkeypatch.delenv(name, raising=False)
    conn = sqlite3.connect(_tmp.name)
    drop_all(conn)
    conn.close()
    init_db()
    yield


class TestConfigStore:

    def test_missing_key(self):
        assert get_config("nope") is None

    def test_upsert(self):
        set_config("k", "v1")
        set_config("k", "v2")
        assert get_config("k") == "v2"


class TestEncryption:

    def test_round_trip(self):
        ciphertext = _encrypt("sk_live_secret")
        assert ciphertext != "sk_live_secret"
        assert _decrypt(ciphertext) == "sk_live_secret"


class TestGatewaySecret:

    def test_environment_fallback(self, monkeypatch):
        monkeypatch.setenv("PAYSTACK_SECRET_KEY", "sk_env")
        assert get_gateway_secret() == "sk_env"
        assert get_gateway_status() == {"status": "configured", "source": "environment"}

    def test_unconfigured(self):
        assert get_gateway_secret() == ""
        assert get_gateway_status()["status"] == "unconfigured"

    def test_saved_secret_is_encrypted_and_preferred(self, monkeypatch):
        monkeypatch.setenv("PAYSTACK_SECRET_KEY", "sk_env")
        with patch("bundlepay.services.paystack_client.PaystackClient.verify_connectivity", return_value=False):
            result = save_gateway_secret("  sk_stored  ")

        assert result["status"] == "failed"
        assert get_config("paystack_secret_key") != "sk_stored"
        assert get_gateway_secret() == "sk_stored"
        assert get_gateway_status() == {"status": "failed", "source": "database"}

    def test_undecryptable_secret_falls_back(self, monkeypatch):
        monkeypatch.setenv("PAYSTACK_SECRET_KEY", "sk_env")
        set_config("paystack_secret_key", "garbage")
        assert get_gateway_secret() == "sk_env"

    def test_empty_secret_rejected(self):
        with pytest.raises(PlatformConfigError):
            save_gateway_secret("")

    def test_settings(self, monkeypatch):
        monkeypatch.setenv("APP_URL", "https://example.test/")
        monkeypatch.setenv("GATEWAY_TIMEOUT", "not-a-number")
        settings = get_gateway_settings()
        assert settings["app_url"] == "https://example.test"
        assert settings["timeout"] == 10.0
        assert settings["base_url"] == "https://api.paystack.co"


class TestWithdrawalPolicy:

    def test_default_is_own(self):
        assert get_withdrawal_policy() == POOLING_OWN

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("WITHDRAWAL_POOLING", "Pooled")
        assert get_withdrawal_policy() == POOLING_POOLED

    def test_stored_overrides_environment(self, monkeypatch):
        monkeypatch.setenv("WITHDRAWAL_POOLING", "pooled")
        set_withdrawal_policy("own")
        assert get_withdrawal_policy() == POOLING_OWN

    def test_unknown_stored_value_reads_as_own(self):
        set_config("withdrawal_pooling", "shared")
        assert get_withdrawal_policy() == POOLING_OWN

    def test_set_unknown_rejected(self):
        with pytest.raises(PlatformConfigError):
            set_withdrawal_policy("shared")
