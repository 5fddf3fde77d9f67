from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from config.settings import Settings, settings_from_app_config
from connectors.box.auth import CredentialManager
from core.collision import CollisionStrategy
from core.errors import InvalidConfiguration


def test_defaults_match_box_endpoints(monkeypatch):
    for key in ("BOX_API_URL", "BOX_UPLOAD_URL", "BOX_AUTH_URL", "BOX_ROOT_FOLDER_ID", "BOX_COLLISION_STRATEGY"):
        monkeypatch.delenv(key, raising=False)
    s = Settings(_env_file=None)
    assert s.BOX_API_URL == "https://api.box.com/2.0"
    assert s.BOX_UPLOAD_URL == "https://upload.box.com/api/2.0"
    assert s.BOX_AUTH_URL == "https://api.box.com/oauth2/token"
    assert s.BOX_ROOT_FOLDER_ID == "0"
    assert s.BOX_COLLISION_STRATEGY is CollisionStrategy.RENAME
    assert s.BOX_ASSERTION_TTL_SECONDS == 60


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("BOX_COLLISION_STRATEGY", "SKIP")
    monkeypatch.setenv("BOX_ROOT_FOLDER_ID", "12345")
    s = Settings(_env_file=None)
    assert s.BOX_COLLISION_STRATEGY is CollisionStrategy.SKIP
    assert s.BOX_ROOT_FOLDER_ID == "12345"


def test_unknown_strategy_rejected(monkeypatch):
    monkeypatch.setenv("BOX_COLLISION_STRATEGY", "merge")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_app_config_file(tmp_path, rsa_pem):
    config_file = tmp_path / "box_config.json"
    config_file.write_text(json.dumps({
        "boxAppSettings": {
            "clientID": "cid",
            "clientSecret": "secret",
            "appAuth": {"publicKeyID": "kid", "privateKey": rsa_pem, "passphrase": ""},
        },
        "enterpriseID": "ent-1",
    }))

    s = settings_from_app_config(str(config_file), BOX_ROOT_FOLDER_ID="77", _env_file=None)

    assert s.BOX_CLIENT_ID == "cid"
    assert s.BOX_KEY_ID == "kid"
    assert s.BOX_ENTERPRISE_ID == "ent-1"
    assert s.BOX_PRIVATE_KEY_PASSWORD is None
    assert s.BOX_ROOT_FOLDER_ID == "77"
    manager = CredentialManager.from_settings(s)
    assert manager.subject == "ent-1"
    assert manager.key_id == "kid"


def test_app_config_file_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        settings_from_app_config(str(tmp_path / "nope.json"))


def test_credential_manager_rejects_empty_settings():
    with pytest.raises(InvalidConfiguration):
        CredentialManager.from_settings(Settings(_env_file=None, BOX_CLIENT_ID=None))
