"""Abstract base class for compose runtimes"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from bucket_manager.core.stack import HostTarget, Stack
from bucket_manager.runner.base import CommandStep, HostCommandStep


class StackStatus(str, Enum):
    """Aggregate run state of a stack"""

    UP = "UP"
    DOWN = "DOWN"
    PARTIAL = "PARTIAL"
    ERROR = "ERROR"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ContainerState:
    """One container as reported by the compose ps command"""

    name: str = ""
    command: str = ""
    service: str = ""
    status: str = ""
    ports: str = ""


@dataclass
class StackRuntimeInfo:
    """Result of a status probe"""

    stack: Stack
    status: StackStatus = StackStatus.UNKNOWN
    containers: List[ContainerState] = field(default_factory=list)
    error: Optional[Exception] = None


class BaseRuntime(ABC):
    """Abstract base for compose runtime implementations"""

    @abstractmethod
    def up_sequence(self, stack: Stack) -> List[CommandStep]:
        """Pull images then start containers detached"""
        pass

    @abstractmethod
    def pull_sequence(self, stack: Stack) -> List[CommandStep]:
        """Pull images"""
        pass

    @abstractmethod
    def down_sequence(self, stack: Stack) -> List[CommandStep]:
        """Stop containers"""
        pass

    @abstractmethod
    def refresh_sequence(self, stack: Stack) -> List[CommandStep]:
        """Pull, stop and start again; prune the system for local stacks"""
        pass

    @abstractmethod
    def prune_host_step(self, target: HostTarget) -> HostCommandStep:
        """Prune unused resources on a host"""
        pass

    @abstractmethod
    def get_stack_status(self, stack: Stack) -> StackRuntimeInfo:
        """Probe a stack's containers and aggregate their state

        Args:
            stack: Stack to probe

        Returns:
            StackRuntimeInfo; never raises for probe failures
        """
        pass
