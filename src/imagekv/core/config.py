"""Configuration management for imagekv.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the IMAGEKV_ prefix,
allowing deployments to differ only in configuration (allowed origins, header
policy, model identifier, tuning constants) without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (IMAGEKV_* prefix)
2. .env file in the working directory
3. Default values defined in ImageKVConfig

Example .env file:
    IMAGEKV_INFERENCE_BACKEND=cloudflare
    IMAGEKV_STORE_BACKEND=cloudflare
    IMAGEKV_CLOUDFLARE_ACCOUNT_ID=0123456789abcdef
    IMAGEKV_CLOUDFLARE_API_TOKEN=...
    IMAGEKV_KV_NAMESPACE_ID=...
    IMAGEKV_ALLOWED_ORIGINS='["https://example.com"]'

No Global Instance
------------------
This module does not create a configuration instance at import.  The server
factory :func:`imagekv.api.main.create_app` builds an ``ImageKVConfig`` when
none is passed, and tests construct their own with ``_env_file=None``.

Usage Example
-------------
    from imagekv.core.config import ImageKVConfig

    config = ImageKVConfig(store_backend="json", store_path="data/images.json")
    print(config.model_id)
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MODEL_ID = "@cf/stabilityai/stable-diffusion-xl-base-1.0"

# 30 days.
DEFAULT_EXPIRATION_SECONDS = 2_592_000


class ImageKVConfig(BaseSettings):
    """Main configuration for the imagekv service.

    Attributes
    ----------
    HTTP policy:
        allowed_origins : list[str]
            CORS allow-list of caller origins
        cors_max_age : int
            Seconds browsers may cache a preflight response
        content_security_policy : str
            Value of the ``Content-Security-Policy`` header
        referrer_policy : str
            Value of the ``Referrer-Policy`` header
        frame_options : str
            Value of the ``X-Frame-Options`` header

    Inference:
        model_id : str
            Model identifier passed to the inference runner
        num_steps : int
            Diffusion step count (fixed, never user-controlled)
        guidance : float
            Guidance scale (fixed, never user-controlled)
        style_template : str
            Static style/quality text appended to every prompt
        negative_prompt : str
            Static negative-prompt suffix appended to every prompt
        inference_backend : Literal["cloudflare", "placeholder"]
            Which runner ``create_app`` builds by default

    Storage:
        store_backend : Literal["memory", "json", "cloudflare"]
            Which key-value store ``create_app`` builds by default
        store_path : Path
            JSON file used by the ``json`` store backend
        expiration_seconds : int | None
            Lifetime of stored images; ``None`` or 0 keeps them indefinitely

    Responses:
        response_mode : Literal["full", "preview"]
            Whether ``POST /generate`` returns the full image or a preview
        preview_length : int
            Number of characters kept in a preview

    Cloudflare:
        cloudflare_account_id, cloudflare_api_token : str | None
            Credentials shared by the Workers AI runner and the KV store
        cloudflare_api_base : str
            REST API base URL
        kv_namespace_id : str | None
            Workers KV namespace holding the images
        request_timeout : float
            httpx timeout in seconds for remote backends

    Server:
        server_host, server_port, log_level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="IMAGEKV_",
        case_sensitive=False,
    )

    # HTTP policy
    allowed_origins: list[str] = Field(
        default=["https://mojohand.producerprotocol.pro"],
        description="Origins allowed to call the API from a browser",
    )
    cors_max_age: int = Field(default=86400, ge=0)
    content_security_policy: str = Field(default="default-src 'self'; img-src 'self' data:")
    referrer_policy: str = Field(default="no-referrer")
    frame_options: str = Field(default="DENY")

    # Inference
    model_id: str = Field(
        default=DEFAULT_MODEL_ID,
        description="Model identifier passed to the inference runner",
    )
    num_steps: int = Field(default=20, ge=1, le=50)
    guidance: float = Field(default=7.5, ge=0.0)
    style_template: str = Field(
        default="",
        description="Static style/quality text appended to every prompt",
    )
    negative_prompt: str = Field(
        default="",
        description="Static negative-prompt suffix appended to every prompt",
    )
    inference_backend: Literal["cloudflare", "placeholder"] = Field(default="cloudflare")

    # Storage
    store_backend: Literal["memory", "json", "cloudflare"] = Field(default="memory")
    store_path: Path = Field(
        default=Path("data/images.json"),
        description="JSON file used by the json store backend",
    )
    expiration_seconds: int | None = Field(
        default=DEFAULT_EXPIRATION_SECONDS,
        ge=0,
        description="Lifetime of stored images in seconds (None or 0 = forever)",
    )

    # Responses
    response_mode: Literal["full", "preview"] = Field(default="full")
    preview_length: int = Field(default=30, ge=1)

    # Cloudflare
    cloudflare_account_id: str | None = None
    cloudflare_api_token: str | None = None
    cloudflare_api_base: str = Field(default="https://api.cloudflare.com/client/v4")
    kv_namespace_id: str | None = None
    request_timeout: float = Field(default=120.0, gt=0)

    # Server
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=8787, ge=1024, le=65535)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    @property
    def ttl_seconds(self) -> int | None:
        """Expiration to pass to the store, normalising 0 to ``None``."""
        return self.expiration_seconds or None
