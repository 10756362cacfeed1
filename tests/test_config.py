"""Tests for environment-driven configuration."""

import importlib

import pytest

import app.core.config


@pytest.fixture
def reload_config(monkeypatch):
    """Reload app.core.config under a patched environment, restore afterwards."""
    def _reload(**env):
        for name, value in env.items():
            if value is None:
                monkeypatch.delenv(name, raising=False)
            else:
                monkeypatch.setenv(name, value)
        return importlib.reload(app.core.config)

    yield _reload
    monkeypatch.undo()
    importlib.reload(app.core.config)


class TestDefaults:
    def test_normative_constants(self):
        assert app.core.config.CMAC_LENGTH_BYTES == 16
        assert app.core.config.GROTH16_PROOF_LENGTH_BYTES == 256
        assert app.core.config.MIN_PUBLIC_INPUTS == 2
        assert app.core.config.TAG_UID_LENGTHS == frozenset({4, 7, 10})

    def test_rate_limit_defaults(self, reload_config):
        config = reload_config(TLB_RATE_LIMIT_MAX_REQUESTS=None, TLB_RATE_LIMIT_WINDOW_MS=None)
        assert config.RATE_LIMIT_MAX_REQUESTS == 100
        assert config.RATE_LIMIT_WINDOW_MS == 60_000

    def test_cors_default_any_origin(self, reload_config):
        config = reload_config(TLB_CORS_ALLOWED_ORIGINS=None)
        assert config.CORS_ALLOWED_ORIGINS == ["*"]


class TestOverrides:
    def test_rate_limit_override(self, reload_config):
        config = reload_config(TLB_RATE_LIMIT_MAX_REQUESTS="5", TLB_RATE_LIMIT_WINDOW_MS="1000")
        assert config.RATE_LIMIT_MAX_REQUESTS == 5
        assert config.RATE_LIMIT_WINDOW_MS == 1000

    def test_trusted_roots_parsed(self, reload_config):
        config = reload_config(TLB_TRUSTED_ROOTS=" 0xaa, 0xbb,,0xaa ")
        assert config.TRUSTED_ROOTS == frozenset({"0xaa", "0xbb"})

    def test_master_key_hex(self, reload_config):
        config = reload_config(TLB_TAG_MASTER_KEY="0x00112233445566778899AABBCCDDEEFF")
        assert config.TAG_MASTER_KEY == bytes.fromhex("00112233445566778899AABBCCDDEEFF")

    @pytest.mark.parametrize("value", ["", "   ", "not-hex"])
    def test_master_key_unusable(self, reload_config, value):
        config = reload_config(TLB_TAG_MASTER_KEY=value)
        assert config.TAG_MASTER_KEY is None

    def test_diversification_inputs_default_empty(self, reload_config):
        config = reload_config(TLB_TAG_AID=None, TLB_TAG_SYSTEM_ID=None)
        assert config.TAG_DIVERSIFICATION_AID == b""
        assert config.TAG_SYSTEM_IDENTIFIER == b""

    def test_admin_flag(self, reload_config):
        assert reload_config(TLB_ADMIN_ENDPOINT_ENABLED="FALSE").ADMIN_ENDPOINT_ENABLED is False
        assert reload_config(TLB_ADMIN_ENDPOINT_ENABLED="true").ADMIN_ENDPOINT_ENABLED is True

    def test_cors_origins(self, reload_config):
        config = reload_config(TLB_CORS_ALLOWED_ORIGINS="https://a.example, https://b.example")
        assert config.CORS_ALLOWED_ORIGINS == ["https://a.example", "https://b.example"]
