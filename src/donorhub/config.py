"""Configuration loading and bearer-token storage."""

from __future__ import annotations

import json
import os
from pathlib import Path

import keyring

from donorhub.models import UploadConfig

SERVICE_NAME = "donorhub"
KEY_NAME = "auth_token"
TOKEN_ENV_VAR = "DONORHUB_TOKEN"


def get_auth_token() -> str:
    """Get the origin bearer token: system keyring first, then DONORHUB_TOKEN.

    Returns:
        Token string.

    Raises:
        RuntimeError: If no token found anywhere, with actionable instructions.
    """
    token = keyring.get_password(SERVICE_NAME, KEY_NAME)
    if token:
        return token

    token = os.environ.get(TOKEN_ENV_VAR)
    if token:
        return token

    raise RuntimeError(
        "Auth token not found.\n"
        "Set it with: donorhub config set-token YOUR_TOKEN\n"
        f"Or: export {TOKEN_ENV_VAR}=your-token"
    )


def set_auth_token(token: str) -> None:
    """Store *token* in the system keyring (service: donorhub)."""
    if not token or not token.strip():
        raise ValueError("Auth token cannot be empty")
    keyring.set_password(SERVICE_NAME, KEY_NAME, token.strip())


def load_upload_config(config_path: Path | None = None) -> UploadConfig:
    """Load upload pipeline configuration from JSON, falling back to defaults.

    Reads from ``config/upload_config.json`` when *config_path* is ``None``.
    If the file does not exist, returns an ``UploadConfig`` with defaults.
    Unknown keys are ignored.  The token is never read from this file.

    Args:
        config_path: Optional explicit path to upload_config.json.

    Returns:
        UploadConfig populated from the file.
    """
    if config_path is None:
        config_path = Path("config/upload_config.json")

    data: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            data = json.load(f)

    # Only recognised fields
    field_names = set(UploadConfig.__dataclass_fields__)
    kwargs = {k: v for k, v in data.items() if k in field_names}
    return UploadConfig(**kwargs)
