"""Tests for imagekv.core.config — configuration management.

Tests cover:
- Default values for the configuration fields.
- Environment variable overrides via the IMAGEKV_ prefix.
- Pydantic validation constraints (port range, backend literals, etc.).
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from imagekv.core.config import DEFAULT_EXPIRATION_SECONDS, DEFAULT_MODEL_ID, ImageKVConfig


class TestConfigDefaults:
    """Verify that ImageKVConfig provides sensible defaults."""

    def test_default_model(self):
        cfg = ImageKVConfig(_env_file=None)
        assert cfg.model_id == DEFAULT_MODEL_ID == "@cf/stabilityai/stable-diffusion-xl-base-1.0"

    def test_default_expiration_is_thirty_days(self):
        cfg = ImageKVConfig(_env_file=None)
        assert cfg.expiration_seconds == DEFAULT_EXPIRATION_SECONDS == 30 * 24 * 60 * 60
        assert cfg.ttl_seconds == DEFAULT_EXPIRATION_SECONDS

    def test_default_security_headers(self):
        cfg = ImageKVConfig(_env_file=None)
        assert cfg.frame_options == "DENY"
        assert cfg.referrer_policy == "no-referrer"
        assert cfg.content_security_policy == "default-src 'self'; img-src 'self' data:"

    def test_default_backends(self):
        cfg = ImageKVConfig(_env_file=None)
        assert cfg.inference_backend == "cloudflare"
        assert cfg.store_backend == "memory"
        assert cfg.cloudflare_account_id is None

    def test_default_response_mode(self):
        cfg = ImageKVConfig(_env_file=None)
        assert cfg.response_mode == "full"
        assert cfg.preview_length == 30

    def test_default_server(self):
        cfg = ImageKVConfig(_env_file=None)
        assert cfg.server_port == 8787
        assert cfg.cors_max_age == 86400


class TestConfigEnvironment:
    """Verify IMAGEKV_ environment overrides."""

    def test_scalar_override(self, monkeypatch):
        monkeypatch.setenv("IMAGEKV_MODEL_ID", "@cf/bytedance/stable-diffusion-xl-lightning")
        monkeypatch.setenv("IMAGEKV_NUM_STEPS", "8")
        cfg = ImageKVConfig(_env_file=None)
        assert cfg.model_id == "@cf/bytedance/stable-diffusion-xl-lightning"
        assert cfg.num_steps == 8

    def test_case_insensitive(self, monkeypatch):
        monkeypatch.setenv("imagekv_response_mode", "preview")
        cfg = ImageKVConfig(_env_file=None)
        assert cfg.response_mode == "preview"

    def test_origins_from_json(self, monkeypatch):
        monkeypatch.setenv("IMAGEKV_ALLOWED_ORIGINS", '["https://a.example", "https://b.example"]')
        cfg = ImageKVConfig(_env_file=None)
        assert cfg.allowed_origins == ["https://a.example", "https://b.example"]

    def test_env_file(self, temp_dir, monkeypatch):
        monkeypatch.delenv("IMAGEKV_STORE_BACKEND", raising=False)
        env_file = temp_dir / ".env"
        env_file.write_text("IMAGEKV_STORE_BACKEND=json\n")
        cfg = ImageKVConfig(_env_file=env_file)
        assert cfg.store_backend == "json"


class TestConfigValidation:
    """Verify field constraints."""

    def test_zero_expiration_means_forever(self):
        cfg = ImageKVConfig(_env_file=None, expiration_seconds=0)
        assert cfg.ttl_seconds is None

    def test_none_expiration(self):
        cfg = ImageKVConfig(_env_file=None, expiration_seconds=None)
        assert cfg.ttl_seconds is None

    def test_negative_expiration_rejected(self):
        with pytest.raises(ValidationError):
            ImageKVConfig(_env_file=None, expiration_seconds=-1)

    @pytest.mark.parametrize("port", [80, 70000])
    def test_port_range(self, port):
        with pytest.raises(ValidationError):
            ImageKVConfig(_env_file=None, server_port=port)

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValidationError):
            ImageKVConfig(_env_file=None, store_backend="redis")

    def test_unknown_response_mode_rejected(self):
        with pytest.raises(ValidationError):
            ImageKVConfig(_env_file=None, response_mode="thumbnail")
