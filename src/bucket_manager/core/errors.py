"""Exceptions raised by bucket-manager operations"""

from typing import List, Optional, Union


class BucketManagerError(Exception):
    """Base exception for bucket-manager operations"""


class ConfigError(BucketManagerError):
    """Configuration loading or validation failed"""


class LocalRootNotFoundError(ConfigError):
    """No local root is configured and none of the default locations exist"""


class ConnectionManagerError(BucketManagerError):
    """SSH connection could not be established"""


class AuthMethodError(ConnectionManagerError):
    """Authentication methods for a host could not be prepared"""


class NoAuthMethodError(AuthMethodError):
    """No usable authentication method (key, agent or password) was found"""


class DialError(ConnectionManagerError):
    """Network dial or SSH handshake failed"""


class HostKeyError(ConnectionManagerError):
    """Host identity could not be verified"""


class DiscoveryError(BucketManagerError):
    """Stack discovery failed for a single host"""

    def __init__(self, host_name: str, cause: Union[Exception, str]):
        self.host_name = host_name
        self.cause = cause
        if host_name == "local":
            message = f"local discovery failed: {cause}"
        else:
            message = f"remote discovery failed for {host_name}: {cause}"
        super().__init__(message)


class IdentifierError(BucketManagerError):
    """A stack identifier could not be resolved to a single stack"""


class InvalidIdentifierError(IdentifierError):
    """Identifier does not follow the 'stack' or 'host:stack' grammar"""


class StackNotFoundError(IdentifierError):
    """No discovered stack matches the identifier"""


class AmbiguousStackError(IdentifierError):
    """Several discovered stacks match a bare stack name"""

    def __init__(self, name: str, candidates: List[str]):
        self.name = name
        self.candidates = list(candidates)
        super().__init__(
            f"stack name '{name}' is ambiguous, please specify one of: {', '.join(self.candidates)}"
        )


class CommandExecutionError(BucketManagerError):
    """A local or remote command failed to start or exited non-zero"""

    def __init__(self, description: str, exit_code: Optional[int] = None,
                 output: str = "", reason: Optional[str] = None):
        self.description = description
        self.exit_code = exit_code
        self.output = output
        if exit_code is not None:
            message = f"{description} exited with status {exit_code}"
        else:
            message = f"{description} failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class SequenceStepError(BucketManagerError):
    """A step of a command sequence failed, aborting the rest of the sequence"""

    def __init__(self, step_name: str, cause: Exception):
        self.step_name = step_name
        self.cause = cause
        super().__init__(f"step '{step_name}' failed: {cause}")


class StatusProbeError(BucketManagerError):
    """Status probe failed for a reason other than the stack being down"""
