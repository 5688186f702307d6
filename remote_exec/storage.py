from __future__ import annotations

import json
import logging
from pathlib import Path

from platformdirs import user_config_dir
from pydantic import ValidationError

from .config import APP_NAME, Settings
from .encryption import decrypt_secret, encrypt_secret, is_encrypted
from .models import Server

logger = logging.getLogger(__name__)

SECRET_FIELDS = ("password", "sudo_password")


def get_config_paths() -> tuple[Path, Path, Path]:
    cfg_dir = Path(user_config_dir(APP_NAME, appauthor=False))
    cfg_dir.mkdir(parents=True, exist_ok=True)
    return cfg_dir, cfg_dir / "servers.json", cfg_dir / "settings.json"


def load_settings() -> Settings:
    """Load settings, falling back to defaults when missing or invalid."""
    _, _, settings_file = get_config_paths()
    if not settings_file.exists():
        return Settings()
    try:
        return Settings.model_validate_json(settings_file.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        logger.warning("Ignoring unreadable settings %s: %s", settings_file, e)
        return Settings()


def save_settings(settings: Settings) -> None:
    cfg_dir, _, settings_file = get_config_paths()
    cfg_dir.mkdir(parents=True, exist_ok=True)
    settings_file.write_text(settings.model_dump_json(indent=2), encoding="utf-8")


def is_encryption_enabled() -> bool:
    return load_settings().encryption_enabled


def _convert_secrets(server: Server, encrypt: bool) -> Server:
    converted = server.model_copy(deep=True)
    for field_name in SECRET_FIELDS:
        value = getattr(converted, field_name)
        if not value or is_encrypted(value) == encrypt:
            continue
        try:
            setattr(converted, field_name, encrypt_secret(value) if encrypt else decrypt_secret(value))
        except (RuntimeError, ValueError) as e:
            # Leave the value as stored
            logger.warning("Cannot %s %s of %s: %s", "encrypt" if encrypt else "decrypt", field_name, server.name, e)
    return converted


def load_servers() -> list[Server]:
    """Load servers, decrypting secrets if encryption is enabled."""
    _, cfg_file, _ = get_config_paths()
    if not cfg_file.exists():
        save_servers([])
        return []
    data = json.loads(cfg_file.read_text(encoding="utf-8") or "{}")
    servers = [Server.model_validate(item) for item in data.get("servers", [])]
    if is_encryption_enabled():
        servers = [_convert_secrets(s, encrypt=False) for s in servers]
    return servers


def save_servers(servers: list[Server]) -> None:
    """Save servers, encrypting secrets if encryption is enabled."""
    cfg_dir, cfg_file, _ = get_config_paths()
    if is_encryption_enabled():
        servers = [_convert_secrets(s, encrypt=True) for s in servers]
    payload = {
        "version": 1,
        "servers": [s.model_dump() for s in servers],
    }
    cfg_dir.mkdir(parents=True, exist_ok=True)
    cfg_file.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")


def upsert_server(server: Server) -> None:
    """Insert or replace a server by name."""
    by_name = {s.name: s for s in load_servers()}
    by_name[server.name] = server
    save_servers(list(by_name.values()))


def remove_server(name: str) -> bool:
    """Remove a server by name. Returns True if removed."""
    servers = load_servers()
    remaining = [s for s in servers if s.name != name]
    if len(remaining) == len(servers):
        return False
    save_servers(remaining)
    return True


def find_server(query: str) -> Server | None:
    """Find a server by exact name, case-insensitive name or unique partial name."""
    servers = load_servers()
    for s in servers:
        if s.name == query:
            return s
    matches = [s for s in servers if s.name.lower() == query.lower()]
    if len(matches) == 1:
        return matches[0]
    contains = [s for s in servers if query.lower() in s.name.lower()]
    if len(contains) == 1:
        return contains[0]
    return None
