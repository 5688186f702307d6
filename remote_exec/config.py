from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

APP_NAME = "remote-exec"

# Marker printed by sudo when it asks for a password
SUDO_PROMPT_MARKER = "[sudo] password for"
ID_SEPARATOR = "-"


class HostKeyPolicy(str, Enum):
    """How the identity of a dialed host is trusted."""

    ACCEPT_ANY = "accept-any"
    KNOWN_HOSTS = "known-hosts"


class PtySettings(BaseModel):
    term: str = "xterm"
    width: int = 80
    height: int = 40


class Settings(BaseModel):
    """Application settings stored in settings.json."""

    encryption_enabled: bool = False
    encryption_key_source: str | None = None
    connect_timeout: float = 10.0
    session_timeout: float | None = 10.0
    host_key_policy: HostKeyPolicy = HostKeyPolicy.KNOWN_HOSTS
    known_hosts_file: str | None = None
    pty: PtySettings = Field(default_factory=PtySettings)
