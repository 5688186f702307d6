from __future__ import annotations

import io
import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

import paramiko

from .config import HostKeyPolicy
from .errors import KeyFileError, NotFoundError, RemoteConnectionError, RemoteExecError
from .filesystem import read_file
from .models import Server

logger = logging.getLogger(__name__)

KEY_CLASSES: tuple[type[paramiko.PKey], ...] = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)


@dataclass
class Connection:
    """A server paired with its authenticated SSH client."""

    server: Server
    client: paramiko.SSHClient
    # Held by the executor for the duration of one command
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def name(self) -> str:
        return self.server.name


def parse_private_key(data: bytes) -> paramiko.PKey:
    """Parse PEM/OpenSSH private key material into a signing key."""
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise paramiko.SSHException(f"private key is not text: {e}") from e

    failures = []
    for key_class in KEY_CLASSES:
        try:
            return key_class.from_private_key(io.StringIO(text))
        except (paramiko.SSHException, ValueError) as e:
            failures.append(f"{key_class.__name__}: {e}")
    raise paramiko.SSHException("unsupported private key (" + "; ".join(failures) + ")")


class ConnectionManager:
    """Registry of live SSH connections, at most one per server name.

    ``host_keys`` decides whether dialed hosts are checked against known_hosts
    or accepted blindly.
    """

    def __init__(
        self,
        host_keys: HostKeyPolicy,
        *,
        connect_timeout: float = 10.0,
        known_hosts_file: str | None = None,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ) -> None:
        self.host_keys = HostKeyPolicy(host_keys)
        self.connect_timeout = connect_timeout
        self.known_hosts_file = known_hosts_file
        self._client_factory = client_factory
        self._connections: dict[str, Connection] = {}
        self._dial_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def open(self, server: Server) -> Connection:
        """Return the connection for ``server``, dialing it if needed."""
        with self._lock:
            existing = self._connections.get(server.name)
            if existing is not None:
                logger.debug("Reusing connection to %s", server.name)
                return existing
            dial_lock = self._dial_locks.setdefault(server.name, threading.Lock())

        # Dial outside the registry lock; the per-name lock stops duplicate dials
        with dial_lock:
            with self._lock:
                existing = self._connections.get(server.name)
            if existing is not None:
                return existing

            client = self._dial(server)
            connection = Connection(server=server, client=client)
            with self._lock:
                self._connections[server.name] = connection
                # Registered names never reach the dial locks again; failed dials keep theirs for retries
                del self._dial_locks[server.name]
            logger.info("Connected to %s (%s@%s)", server.name, server.user, server.full_address())
            return connection

    def open_all(self, servers: Iterable[Server]) -> dict[str, RemoteExecError]:
        """Best-effort bulk open. Returns failures by server name."""
        failures: dict[str, RemoteExecError] = {}
        for server in servers:
            if server.name in failures or server.name in self.list():
                continue
            try:
                self.open(server)
            except RemoteExecError as e:
                logger.warning("Skipping %s: %s", server.name, e)
                failures[server.name] = e
        return failures

    def get(self, name: str) -> Connection:
        with self._lock:
            connection = self._connections.get(name)
        if connection is None:
            raise NotFoundError(name)
        return connection

    def close(self, connection: Connection) -> None:
        """Close the transport. The registry entry is kept."""
        connection.client.close()
        logger.info("Closed connection to %s", connection.name)

    def list(self) -> dict[str, Connection]:
        with self._lock:
            return dict(self._connections)

    def _load_key(self, server: Server) -> paramiko.PKey:
        try:
            data = read_file(server.key_path)
        except OSError as e:
            raise KeyFileError(server.name, f"cannot read private key {server.key_path}: {e}") from e
        try:
            return parse_private_key(data)
        except paramiko.SSHException as e:
            raise KeyFileError(server.name, f"cannot parse private key {server.key_path}: {e}") from e

    def _configure_host_keys(self, client: paramiko.SSHClient, server: Server) -> None:
        if self.host_keys is HostKeyPolicy.ACCEPT_ANY:
            logger.warning("Host key of %s is not verified", server.name)
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            return

        client.load_system_host_keys()
        if self.known_hosts_file:
            client.load_host_keys(str(Path(self.known_hosts_file).expanduser()))
        client.set_missing_host_key_policy(paramiko.RejectPolicy())

    def _dial(self, server: Server) -> paramiko.SSHClient:
        if not server.password and not server.key_path:
            raise RemoteConnectionError(server.name, "no password or private key configured")

        pkey = self._load_key(server) if server.key_path else None
        client = self._client_factory()
        try:
            self._configure_host_keys(client, server)
            client.connect(
                hostname=server.address,
                port=server.port,
                username=server.user,
                password=server.password,
                pkey=pkey,
                timeout=self.connect_timeout,
                allow_agent=False,
                look_for_keys=False,
            )
        except (paramiko.SSHException, OSError) as e:
            client.close()
            logger.error("Connection to %s failed: %s", server.name, e)
            raise RemoteConnectionError(server.name, e) from e
        return client
