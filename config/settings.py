from __future__ import annotations
import json
import os
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.collision import CollisionStrategy

# Resolve project root and absolute path to .env regardless of CWD
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
ENV_FILE = os.path.join(PROJECT_ROOT, ".env")


class Settings(BaseSettings):
    """
    Central configuration for the Box filesystem.

    Values are loaded from environment variables and optionally from a local .env file
    (not committed). Identifiers default to None so that importing this module never
    fails; the credential manager rejects missing values when it is built.
    """

    # Box JWT app identity
    BOX_CLIENT_ID: str | None = None
    BOX_CLIENT_SECRET: str | None = None
    BOX_ENTERPRISE_ID: str | None = None
    # Act as this user instead of the enterprise service account
    BOX_USER_ID: str | None = None

    # PEM content or a path to a PEM file
    BOX_PRIVATE_KEY: str | None = None
    BOX_PRIVATE_KEY_PASSWORD: str | None = None
    BOX_KEY_ID: str | None = None

    BOX_AUTH_URL: str = "https://api.box.com/oauth2/token"
    BOX_API_URL: str = "https://api.box.com/2.0"
    BOX_UPLOAD_URL: str = "https://upload.box.com/api/2.0"

    BOX_ASSERTION_TTL_SECONDS: int = 60
    BOX_TOKEN_SAFETY_MARGIN_SECONDS: int = 60
    BOX_HTTP_TIMEOUT_SECONDS: float = 60.0

    BOX_COLLISION_STRATEGY: CollisionStrategy = CollisionStrategy.RENAME
    BOX_MAX_RENAME_ATTEMPTS: int = 1000
    BOX_ROOT_FOLDER_ID: str = "0"

    LOG_LEVEL: str = "INFO"

    # ignore unknown env keys so they don't raise ValidationError
    model_config = SettingsConfigDict(env_file=ENV_FILE, env_file_encoding="utf-8", extra="ignore")

    @field_validator("BOX_COLLISION_STRATEGY", mode="before")
    @classmethod
    def _parse_strategy(cls, value: Any) -> CollisionStrategy:
        return CollisionStrategy.parse(value)


def settings_from_app_config(config_file: str, **overrides: Any) -> Settings:
    """Build Settings from the JSON file downloaded from the Box Developer Console.

    Keyword overrides win over values found in the file.
    """
    if not os.path.exists(config_file):
        raise FileNotFoundError(f"Box app config file not found: {config_file}")
    with open(config_file, "r", encoding="utf-8") as f:
        data = json.load(f)

    app_settings = data.get("boxAppSettings", {})
    app_auth = app_settings.get("appAuth", {})
    values: dict[str, Any] = {
        "BOX_CLIENT_ID": app_settings.get("clientID"),
        "BOX_CLIENT_SECRET": app_settings.get("clientSecret"),
        "BOX_ENTERPRISE_ID": data.get("enterpriseID"),
        "BOX_PRIVATE_KEY": app_auth.get("privateKey"),
        "BOX_PRIVATE_KEY_PASSWORD": app_auth.get("passphrase"),
        "BOX_KEY_ID": app_auth.get("publicKeyID"),
    }
    values = {k: v for k, v in values.items() if v}
    values.update(overrides)
    return Settings(**values)


settings = Settings()
