from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class CommandResult(BaseModel):
    """Captured outcome of one remote command."""

    model_config = ConfigDict(frozen=True)

    command: str
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    # False when the remote side never reported an exit status (exit_code is then 0)
    exit_status_received: bool = True

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class Server(BaseModel):
    """Remote host: identity, credentials and command history."""

    name: str = Field(frozen=True)
    address: str
    port: int = 22
    user: str
    password: str | None = None
    key_path: str | None = None
    sudo_password: str | None = None
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None
    history: list[CommandResult] = Field(default_factory=list, exclude=True)

    def full_address(self) -> str:
        return f"{self.address}:{self.port}"

    def display(self) -> str:
        """Return formatted server display string."""
        auth = "key" if self.key_path else ("pwd" if self.password else "---")
        return f"{self.name}  [{self.user}@{self.full_address()} | {auth}]"


class ResourceState(BaseModel):
    """Identity and content of one remote file.

    Exactly one of ``content`` / ``sensitive_content`` carries the file body.
    """

    id: str
    content: str = ""
    sensitive_content: SecretStr = SecretStr("")

    @property
    def value(self) -> str:
        return self.content or self.sensitive_content.get_secret_value()
