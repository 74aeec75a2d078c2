"""Configuration loading for the upload pipeline."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import fields
from pathlib import Path

import keyring

from clinfiles.models import UploadConfig

logger = logging.getLogger(__name__)

SERVICE_NAME = "clinfiles-api"
KEY_NAME = "api_token"
TOKEN_ENV_VAR = "CLINFILES_API_TOKEN"
URL_ENV_VAR = "CLINFILES_API_URL"
DEFAULT_CONFIG_PATH = Path("config/upload_config.json")


def resolve_api_token() -> tuple[str | None, str | None]:
    """Find the backend API token and say where it came from.

    Returns:
        ``(token, source)`` where source is ``"keyring"`` or the env var
        name, or ``(None, None)`` when neither has one.
    """
    token = keyring.get_password(SERVICE_NAME, KEY_NAME)
    if token:
        return token, "keyring"
    token = os.environ.get(TOKEN_ENV_VAR)
    if token:
        return token, TOKEN_ENV_VAR
    return None, None


def get_api_token() -> str | None:
    """Get the backend API token: system keyring first, then env var.

    ``None`` means the backend is called without a bearer token.
    """
    return resolve_api_token()[0]


def load_upload_config(config_path: Path | None = None) -> UploadConfig:
    """Load upload configuration from JSON, falling back to defaults.

    Reads ``config/upload_config.json`` when *config_path* is ``None``.  A
    missing file yields the defaults.  Unrecognised keys are ignored.
    ``CLINFILES_API_URL`` overrides the base URL; the API token comes from
    the keyring (service ``clinfiles-api``) or ``CLINFILES_API_TOKEN``
    unless the file sets one.

    Args:
        config_path: Optional explicit path to the JSON file.

    Raises:
        FileNotFoundError: If an explicit *config_path* does not exist.
        ValueError: If the file is not a JSON object or a limit is invalid.
    """
    explicit = config_path is not None
    path = config_path if config_path is not None else DEFAULT_CONFIG_PATH

    data: dict = {}
    if path.exists():
        with open(path) as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a JSON object")
    elif explicit:
        raise FileNotFoundError(str(path))

    field_names = {f.name for f in fields(UploadConfig)}
    unknown = sorted(set(data) - field_names)
    if unknown:
        logger.warning("Ignoring unknown config keys in %s: %s", path, ", ".join(unknown))
    kwargs = {k: v for k, v in data.items() if k in field_names}

    config = UploadConfig(**kwargs)

    env_url = os.environ.get(URL_ENV_VAR)
    if env_url:
        config.api_base_url = env_url
    if config.api_token is None:
        config.api_token = get_api_token()

    _validate(config)
    return config


def _validate(config: UploadConfig) -> None:
    if config.max_pending_files < 1:
        raise ValueError("max_pending_files must be at least 1")
    if config.max_concurrent_uploads < 1:
        raise ValueError("max_concurrent_uploads must be at least 1")
    if config.max_retries < 0:
        raise ValueError("max_retries must not be negative")
    if config.success_delay_seconds < 0 or config.failure_delay_seconds < 0:
        raise ValueError("pacing delays must not be negative")
