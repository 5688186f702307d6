from __future__ import annotations

from .models import CommandResult


class RemoteExecError(Exception):
    """Base class for remote execution failures."""


class RemoteConnectionError(RemoteExecError):
    """Dial, handshake or authentication failure."""

    def __init__(self, server_name: str, cause: object):
        self.server_name = server_name
        self.cause = cause
        super().__init__(f"unable to connect to {server_name}: {cause}")


class KeyFileError(RemoteConnectionError):
    """Private key could not be read or parsed."""


class SessionError(RemoteExecError):
    """A session could not be allocated on a live connection."""

    def __init__(self, server_name: str, cause: object):
        self.server_name = server_name
        self.cause = cause
        super().__init__(f"unable to open session on {server_name}: {cause}")


class NotFoundError(RemoteExecError):
    """No connection is registered for the server."""

    def __init__(self, server_name: str):
        self.server_name = server_name
        super().__init__(f"no connection found for server {server_name}")


class ExecutionError(RemoteExecError):
    """The transport failed while a command was running.

    ``result`` holds whatever was captured before the failure.
    """

    def __init__(self, result: CommandResult, cause: object):
        self.result = result
        self.cause = cause
        super().__init__(f"unable to execute {result.command!r}: {cause}")


class CommandError(RemoteExecError):
    """Remote command exited with a non-zero status."""

    def __init__(self, command: str, exit_code: int, stderr: str):
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"command failed with exit {exit_code}: {stderr.strip()}")
