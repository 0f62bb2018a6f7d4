"""SSH connection management"""

import logging
import os
import socket
import threading
from typing import Any, Dict, Optional

import paramiko
from paramiko import AutoAddPolicy, MissingHostKeyPolicy, SSHClient

from bucket_manager.core.errors import (
    AuthMethodError,
    DialError,
    HostKeyError,
    NoAuthMethodError,
)
from .base import BaseConnectionManager, SSHHost

logger = logging.getLogger(__name__)

DIAL_TIMEOUT = 10
DEFAULT_KNOWN_HOSTS = "~/.ssh/known_hosts"


class _StrictHostKeyPolicy(MissingHostKeyPolicy):
    """Reject hosts that are missing from known_hosts"""

    def missing_host_key(self, client, hostname, key):
        raise HostKeyError(f"host {hostname} is not present in known_hosts ({key.get_name()} key offered)")


class SSHManager(BaseConnectionManager):
    """Keeps one live SSH connection per configured host

    Sessions opened by callers multiplex over the cached connection. The
    client map is guarded by a single lock that is never held across a dial.
    """

    def __init__(self, known_hosts: Optional[str] = None, timeout: int = DIAL_TIMEOUT):
        """Initialize SSH manager

        Args:
            known_hosts: Path to the known hosts file (default: ~/.ssh/known_hosts)
            timeout: Dial timeout in seconds
        """
        self.known_hosts = os.path.expanduser(known_hosts or DEFAULT_KNOWN_HOSTS)
        self.timeout = timeout
        self.clients: Dict[str, SSHClient] = {}
        self.clients_lock = threading.Lock()

    @staticmethod
    def _is_alive(client: SSHClient) -> bool:
        """Send a keepalive packet over the client's transport"""
        transport = client.get_transport()
        if transport is None or not transport.is_active():
            return False
        try:
            transport.send_ignore()
        except (paramiko.SSHException, OSError, EOFError) as e:
            logger.debug(f"Keepalive failed: {e}")
            return False
        return True

    def get_client(self, host: SSHHost) -> SSHClient:
        """Get or create the SSH client for a host

        Args:
            host: Remote host configuration

        Returns:
            Connected SSH client

        Raises:
            AuthMethodError: Authentication methods could not be prepared
            HostKeyError: Host identity could not be verified
            DialError: Connection or handshake failed
        """
        with self.clients_lock:
            client = self.clients.get(host.name)

        if client is not None:
            if self._is_alive(client):
                return client
            logger.info(f"Cached SSH connection to {host.name} is stale, reconnecting")
            with self.clients_lock:
                if self.clients.get(host.name) is client:
                    del self.clients[host.name]
            self._close_client(host.name, client)

        new_client = self._dial(host)

        with self.clients_lock:
            existing = self.clients.get(host.name)
            if existing is None:
                self.clients[host.name] = new_client
                return new_client

        # Another caller inserted a connection while we were dialing
        logger.debug(f"Discarding redundant SSH connection to {host.name}")
        self._close_client(host.name, new_client)
        return existing

    def _auth_options(self, host: SSHHost) -> Dict[str, Any]:
        """Assemble authentication options in order: key file, agent, password

        Args:
            host: Remote host configuration

        Returns:
            Keyword arguments for SSHClient.connect()
        """
        options: Dict[str, Any] = {"look_for_keys": False, "allow_agent": False}
        methods = []

        if host.key_path:
            key_path = os.path.expanduser(host.key_path)
            try:
                options["pkey"] = paramiko.PKey.from_path(key_path)
                methods.append(f"key: {key_path}")
            except paramiko.PasswordRequiredException:
                logger.warning(
                    f"Private key {key_path} is encrypted and passphrases are not supported, skipping key"
                )
            except (OSError, paramiko.SSHException, ValueError) as e:
                raise AuthMethodError(f"failed to load private key file {key_path}: {e}") from e

        if self._agent_available():
            options["allow_agent"] = True
            methods.append("SSH agent")

        if host.password:
            options["password"] = host.password
            methods.append("password")

        if not methods:
            raise NoAuthMethodError(
                f"no suitable authentication method found for {host.name} (key, agent, or password required)"
            )

        logger.debug(f"Auth methods for {host.name} (in priority order): {' → '.join(methods)}")
        return options

    @staticmethod
    def _agent_available() -> bool:
        """Check that SSH_AUTH_SOCK is set and the agent socket accepts connections"""
        sock_path = os.environ.get("SSH_AUTH_SOCK")
        if not sock_path:
            return False
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.connect(sock_path)
        except OSError as e:
            logger.debug(f"SSH agent at {sock_path} is not reachable: {e}")
            return False
        finally:
            sock.close()
        return True

    def _configure_host_keys(self, client: SSHClient) -> None:
        """Load known hosts, or accept any host key when the file is missing"""
        if not os.path.exists(self.known_hosts):
            logger.warning(
                f"known_hosts file ({self.known_hosts}) not found. Host keys will not be verified."
            )
            client.set_missing_host_key_policy(AutoAddPolicy())
            return

        try:
            client.load_host_keys(self.known_hosts)
        except (OSError, paramiko.SSHException, ValueError) as e:
            raise HostKeyError(f"failed to load or parse known_hosts file {self.known_hosts}: {e}") from e
        client.set_missing_host_key_policy(_StrictHostKeyPolicy())

    def _dial(self, host: SSHHost) -> SSHClient:
        """Open a new connection to the host (blocking network round trip)"""
        options = self._auth_options(host)
        client = SSHClient()
        self._configure_host_keys(client)

        address = f"{host.hostname}:{host.port}"
        logger.debug(f"Connecting to {host.name} ({address})")
        try:
            client.connect(
                hostname=host.hostname,
                port=host.port,
                username=host.user,
                timeout=self.timeout,
                **options,
            )
        except HostKeyError:
            client.close()
            raise
        except paramiko.BadHostKeyException as e:
            client.close()
            raise HostKeyError(f"host key verification failed for {host.name} ({address}): {e}") from e
        except paramiko.AuthenticationException as e:
            client.close()
            raise DialError(f"authentication failed for {host.name} ({address}): {e}") from e
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise DialError(f"failed to dial ssh host {host.name} ({address}): {e}") from e

        logger.info(f"Connected to {host.name} ({address})")
        return client

    @staticmethod
    def _close_client(host_name: str, client: SSHClient) -> None:
        try:
            client.close()
        except Exception as e:
            logger.warning(f"Error closing SSH connection for {host_name}: {e}")

    def close(self, host_name: str) -> None:
        """Close the SSH connection to one host"""
        with self.clients_lock:
            client = self.clients.pop(host_name, None)
        if client is not None:
            self._close_client(host_name, client)
            logger.debug(f"Closed SSH connection to {host_name}")

    def close_all(self) -> None:
        """Close all SSH connections"""
        with self.clients_lock:
            clients = list(self.clients.items())
            self.clients.clear()

        for name, client in clients:
            self._close_client(name, client)
        if clients:
            logger.info(f"Closed {len(clients)} SSH connection(s)")
