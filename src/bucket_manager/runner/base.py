"""Command steps and the abstract runner interface"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from bucket_manager.core.errors import CommandExecutionError
from bucket_manager.core.stack import HostTarget, Stack
from bucket_manager.transport.base import SSHHost
from .sinks import OutputSink


@dataclass(frozen=True)
class CommandStep:
    """One command run inside a stack's directory"""

    name: str
    command: str
    args: List[str] = field(default_factory=list)
    stack: Optional[Stack] = None

    @property
    def description(self) -> str:
        return f"step '{self.name}' for stack {self.stack.identifier}"

    @property
    def is_remote(self) -> bool:
        return self.stack.is_remote

    @property
    def host_config(self) -> Optional[SSHHost]:
        return self.stack.host_config

    @property
    def local_dir(self) -> Optional[str]:
        return None if self.stack.is_remote else self.stack.path

    @property
    def remote_dir(self) -> Optional[str]:
        if not self.stack.is_remote:
            return None
        if not self.stack.absolute_remote_root:
            raise CommandExecutionError(
                self.description,
                reason=f"absolute remote root is empty for remote stack {self.stack.identifier}",
            )
        return self.stack.remote_path


@dataclass(frozen=True)
class HostCommandStep:
    """One command run on a host, outside any stack directory"""

    name: str
    command: str
    args: List[str] = field(default_factory=list)
    target: HostTarget = field(default_factory=HostTarget)

    @property
    def description(self) -> str:
        return f"step '{self.name}' for host {self.target.server_name}"

    @property
    def is_remote(self) -> bool:
        return self.target.is_remote

    @property
    def host_config(self) -> Optional[SSHHost]:
        return self.target.host_config

    @property
    def local_dir(self) -> Optional[str]:
        return None

    @property
    def remote_dir(self) -> Optional[str]:
        return None


@dataclass
class CommandResult:
    """Captured result of a short-lived command"""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def output(self) -> str:
        """stdout followed by stderr"""
        return self.stdout + self.stderr


class BaseRunner(ABC):
    """Abstract base for command runners (local process or remote session)"""

    @abstractmethod
    def stream(self, step, sink: OutputSink) -> None:
        """Run a step, feeding its output to the sink

        Args:
            step: CommandStep or HostCommandStep
            sink: Destination for stdout/stderr

        Raises:
            CommandExecutionError: The command could not start or exited non-zero
        """
        pass

    @abstractmethod
    def capture(self, step) -> CommandResult:
        """Run a step to completion and capture its output

        Args:
            step: CommandStep or HostCommandStep

        Returns:
            CommandResult holding the exit code and output

        Raises:
            CommandExecutionError: The command could not be started
        """
        pass
