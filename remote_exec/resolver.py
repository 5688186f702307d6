from __future__ import annotations

import logging
import shlex

from pydantic import SecretStr

from .config import ID_SEPARATOR
from .connections import ConnectionManager
from .errors import CommandError
from .executor import CommandExecutor
from .models import ResourceState, Server

logger = logging.getLogger(__name__)


def build_file_command(path: str, privileged: bool = False) -> str:
    """Build the one-shot ``stat`` + ``cat`` command for ``path``."""
    sudo = "sudo " if privileged else ""
    quoted = shlex.quote(path)
    return f"{sudo}stat -c '%i' {quoted}; {sudo}cat {quoted}"


def parse_file_output(stdout: str, address: str, sensitive: bool = False) -> ResourceState:
    """Split combined output into inode and content.

    Line 0 is the pty echo of the priming input, line 1 the inode and the
    rest is the file body.
    """
    lines = stdout.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    if len(lines) < 2:
        raise ValueError(f"expected an inode line, got {stdout!r}")

    inode = lines[1].strip()
    content = "\n".join(lines[2:])
    resource_id = f"{address}{ID_SEPARATOR}{inode}"

    if sensitive:
        return ResourceState(id=resource_id, sensitive_content=SecretStr(content))
    return ResourceState(id=resource_id, content=content)


class RemoteFileResolver:
    """Reads a remote file's identity and content in one round trip."""

    def __init__(self, connections: ConnectionManager, executor: CommandExecutor) -> None:
        self.connections = connections
        self.executor = executor

    def resolve(self, path: str, privileged: bool, sensitive: bool, server: Server) -> ResourceState:
        """Return the state of ``path`` on ``server``.

        Raises CommandError when the file is missing or unreadable.
        """
        self.connections.open(server)

        command = build_file_command(path, privileged)
        result = self.executor.execute(command, server)
        if result.exit_code != 0:
            raise CommandError(command, result.exit_code, result.stderr)

        try:
            state = parse_file_output(result.stdout, server.address, sensitive)
        except ValueError as e:
            raise CommandError(command, result.exit_code, result.stderr or str(e)) from e
        logger.debug("Resolved %s on %s as %s", path, server.name, state.id)
        return state
