"""Remote host configuration and the connection manager interface"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import paramiko

DEFAULT_SSH_PORT = 22


class SSHHost:
    """Represents a configured remote SSH host"""

    def __init__(self, name: str, hostname: str, user: str, port: int = DEFAULT_SSH_PORT,
                 key_path: Optional[str] = None, password: Optional[str] = None,
                 remote_root: Optional[str] = None, disabled: bool = False):
        """Initialize remote host

        Args:
            name: Unique host name used in stack identifiers ("server1:app")
            hostname: Server address (IP or DNS name)
            user: Username for authentication
            port: SSH port (default: 22)
            key_path: Optional path to a private key file
            password: Optional plaintext password (discouraged)
            remote_root: Optional directory holding stacks on the remote host
            disabled: Skip this host during discovery and host-wide actions
        """
        self.name = name
        self.hostname = hostname
        self.user = user
        self.port = port or DEFAULT_SSH_PORT
        self.key_path = key_path or None
        self.password = password or None
        self.remote_root = remote_root or None
        self.disabled = disabled

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SSHHost":
        """Build a host from its YAML mapping"""
        return cls(
            name=data.get("name", ""),
            hostname=data.get("hostname", ""),
            user=data.get("user", ""),
            port=data.get("port") or DEFAULT_SSH_PORT,
            key_path=data.get("key_path"),
            password=data.get("password"),
            remote_root=data.get("remote_root"),
            disabled=bool(data.get("disabled", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize back to the YAML mapping, omitting empty optional fields"""
        data: Dict[str, Any] = {
            "name": self.name,
            "hostname": self.hostname,
            "user": self.user,
        }
        if self.port != DEFAULT_SSH_PORT:
            data["port"] = self.port
        if self.key_path:
            data["key_path"] = self.key_path
        if self.password:
            data["password"] = self.password
        if self.remote_root:
            data["remote_root"] = self.remote_root
        if self.disabled:
            data["disabled"] = True
        return data

    def __repr__(self) -> str:
        return f"SSHHost(name={self.name!r}, hostname={self.hostname!r}, port={self.port})"


class BaseConnectionManager(ABC):
    """Abstract base for SSH connection managers"""

    @abstractmethod
    def get_client(self, host: SSHHost) -> paramiko.SSHClient:
        """Return a live client for the host, dialing it if needed

        Args:
            host: Remote host configuration

        Returns:
            Connected SSH client owned by the manager
        """
        pass

    @abstractmethod
    def close(self, host_name: str) -> None:
        """Close the connection to one host"""
        pass

    @abstractmethod
    def close_all(self) -> None:
        """Close every managed connection"""
        pass
