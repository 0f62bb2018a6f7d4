"""Stack and host target value types"""

from dataclasses import dataclass
from typing import Optional

from bucket_manager.transport.base import SSHHost
from bucket_manager.transport.shell import join_remote_path

LOCAL = "local"


@dataclass(frozen=True)
class Stack:
    """A discovered compose project: a directory holding a compose file

    For local stacks ``path`` is absolute. For remote stacks it is relative to
    ``absolute_remote_root``, the root resolved on the host at discovery time.
    """

    name: str
    path: str
    server_name: str = LOCAL
    is_remote: bool = False
    host_config: Optional[SSHHost] = None
    absolute_remote_root: str = ""

    @property
    def identifier(self) -> str:
        """Bare name for local stacks, "server:name" for remote ones"""
        if not self.is_remote:
            return self.name
        return f"{self.server_name}:{self.name}"

    @property
    def remote_path(self) -> str:
        """Absolute directory of a remote stack on its host"""
        if not self.is_remote:
            raise ValueError(f"stack {self.identifier} is local")
        return join_remote_path(self.absolute_remote_root, self.path)

    @property
    def target(self) -> "HostTarget":
        """Host this stack lives on"""
        return HostTarget(server_name=self.server_name, is_remote=self.is_remote,
                          host_config=self.host_config)

    def __str__(self) -> str:
        return self.identifier


@dataclass(frozen=True)
class HostTarget:
    """The local machine or one configured remote, for host-level actions"""

    server_name: str = LOCAL
    is_remote: bool = False
    host_config: Optional[SSHHost] = None

    @classmethod
    def local(cls) -> "HostTarget":
        return cls()

    @classmethod
    def remote(cls, host: SSHHost) -> "HostTarget":
        return cls(server_name=host.name, is_remote=True, host_config=host)
