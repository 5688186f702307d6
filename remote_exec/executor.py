from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import paramiko

from .config import SUDO_PROMPT_MARKER, PtySettings
from .connections import Connection, ConnectionManager
from .errors import ExecutionError, SessionError
from .models import CommandResult, Server

logger = logging.getLogger(__name__)

BUFFER_SIZE = 32768
NO_EXIT_STATUS = -1


def scrub_password_echo(stdout: str, password: str | None) -> str:
    """Remove the sudo prompt and the echoed priming password from output.

    With a prompt marker present, every line holding the marker or the password
    is dropped. Without one, only a first line holding the password is dropped.
    """
    lines = stdout.split("\n")
    if any(SUDO_PROMPT_MARKER in line for line in lines):
        lines = [
            line for line in lines if SUDO_PROMPT_MARKER not in line and not (password and password in line)
        ]
    elif password and lines and password in lines[0]:
        lines = lines[1:]
    return "\n".join(lines)


class CommandExecutor(ABC):
    """Runs a shell command on a server and returns its result."""

    @abstractmethod
    def execute(self, command: str, server: Server, sudo_password: str | None = None) -> CommandResult:
        """Run ``command`` on ``server``.

        ``sudo_password`` overrides ``server.sudo_password`` as the priming
        password for this call only.
        """


class SSHCommandExecutor(CommandExecutor):
    """Executes commands through a pty session on an open SSH connection.

    The priming password is written to stdin right after the command starts,
    so a sudo prompt inside the pty is answered without another round trip.
    """

    def __init__(
        self,
        connections: ConnectionManager,
        *,
        pty: PtySettings | None = None,
        session_timeout: float | None = 10.0,
        poll_interval: float = 0.1,
    ) -> None:
        self.connections = connections
        self.pty = pty or PtySettings()
        self.session_timeout = session_timeout
        self.poll_interval = poll_interval

    def execute(self, command: str, server: Server, sudo_password: str | None = None) -> CommandResult:
        connection = self.connections.get(server.name)
        priming = server.sudo_password if sudo_password is None else sudo_password

        with connection.lock:
            channel = self._open_session(connection)
            try:
                return self._run(channel, command, server, priming or "")
            finally:
                self._release(channel, server)

    def _open_session(self, connection: Connection) -> paramiko.Channel:
        transport = connection.client.get_transport()
        if transport is None or not transport.is_active():
            raise SessionError(connection.name, "connection is closed")
        try:
            return transport.open_session(timeout=self.session_timeout)
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise SessionError(connection.name, e) from e

    def _run(self, channel: paramiko.Channel, command: str, server: Server, priming: str) -> CommandResult:
        stdout_chunks: list[bytes] = []
        stderr_chunks: list[bytes] = []
        exit_status = NO_EXIT_STATUS
        error: Exception | None = None

        logger.debug("Running %r on %s", command, server.name)
        try:
            channel.get_pty(term=self.pty.term, width=self.pty.width, height=self.pty.height)
            channel.exec_command(command)
            self._prime(channel, priming, server)
            self._drain(channel, stdout_chunks, stderr_chunks)

            if channel.exit_status_ready():
                exit_status = channel.recv_exit_status()
            elif not channel.get_transport().is_active():
                raise EOFError("connection lost before the command finished")
        except (paramiko.SSHException, OSError, EOFError) as e:
            error = e

        stdout = b"".join(stdout_chunks).decode("utf-8", errors="replace").replace("\r\n", "\n")
        stderr = b"".join(stderr_chunks).decode("utf-8", errors="replace").replace("\r\n", "\n")

        result = CommandResult(
            command=command,
            stdout=scrub_password_echo(stdout, priming),
            stderr=stderr,
            exit_code=exit_status if exit_status != NO_EXIT_STATUS else 0,
            exit_status_received=exit_status != NO_EXIT_STATUS,
        )
        server.history.append(result)

        if error is not None:
            logger.error("Command on %s failed: %s", server.name, error)
            raise ExecutionError(result, error) from error
        logger.debug("Command on %s exited with %d", server.name, result.exit_code)
        return result

    def _prime(self, channel: paramiko.Channel, priming: str, server: Server) -> None:
        try:
            channel.sendall(f"{priming}\n".encode())
            channel.shutdown_write()
        except (paramiko.SSHException, OSError, EOFError) as e:
            if not channel.closed:
                raise
            # The command finished before reading stdin
            logger.debug("Skipped priming write on %s: %s", server.name, e)

    def _drain(self, channel: paramiko.Channel, stdout: list[bytes], stderr: list[bytes]) -> None:
        while True:
            # Completion is sampled before reading: output sent ahead of the exit status is already buffered
            done = channel.exit_status_ready() or channel.closed
            while channel.recv_ready():
                stdout.append(channel.recv(BUFFER_SIZE))
            while channel.recv_stderr_ready():
                stderr.append(channel.recv_stderr(BUFFER_SIZE))
            if done:
                return
            channel.status_event.wait(self.poll_interval)

    def _release(self, channel: paramiko.Channel, server: Server) -> None:
        try:
            channel.close()
        except EOFError:
            pass
        except (paramiko.SSHException, OSError) as e:
            logger.warning("Failed to close session on %s: %s", server.name, e)
