"""Configuration management"""

import logging
import os
from typing import Any, Dict, List, Optional

import yaml

from bucket_manager.core.errors import ConfigError
from bucket_manager.transport.base import SSHHost

logger = logging.getLogger(__name__)

APP_NAME = "bucket-manager"
LOCAL_HOST_NAME = "local"
DEFAULT_COMPOSE_CMD = "podman"
SUPPORTED_COMPOSE_CMDS = ("podman", "docker")


def default_config_path() -> str:
    """Return ~/.config/bucket-manager/config.yaml (honours XDG_CONFIG_HOME)"""
    config_home = os.environ.get("XDG_CONFIG_HOME") or os.path.expanduser("~/.config")
    return os.path.join(config_home, APP_NAME, "config.yaml")


def resolve_path(path: str) -> str:
    """Expand a leading "~/" to the user's home directory"""
    if path.startswith("~/") or path == "~":
        return os.path.expanduser(path)
    return path


class Config:
    """Configuration manager for bucket-manager"""

    def __init__(self, config_file: Optional[str] = None):
        """Load configuration from YAML file

        Args:
            config_file: Path to configuration YAML file (default: user config dir)
        """
        self.config_file = config_file or default_config_path()
        self.data: Dict[str, Any] = {}
        self.load()

    def load(self) -> None:
        """Load configuration from file; a missing file yields an empty configuration"""
        if not os.path.exists(self.config_file):
            logger.debug(f"Configuration file not found: {self.config_file}, using defaults")
            self.data = {}
            return

        try:
            with open(self.config_file, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse configuration file: {e}")
            raise ConfigError(f"failed to parse config file {self.config_file}: {e}") from e
        except OSError as e:
            raise ConfigError(f"failed to read config file {self.config_file}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"config file {self.config_file} must contain a mapping")

        self.data = data
        logger.debug(f"Loaded configuration from {self.config_file}")

    @property
    def local_root(self) -> Optional[str]:
        """Get the configured local stack root override, if any"""
        return self.data.get("local_root") or None

    @property
    def runtime_config(self) -> Dict[str, Any]:
        """Get runtime configuration

        Returns:
            Runtime config dict
        """
        return self.data.get("runtime") or {"cmd": DEFAULT_COMPOSE_CMD}

    @property
    def compose_cmd(self) -> str:
        """Get the compose front-end binary (default: podman)"""
        return self.runtime_config.get("cmd") or DEFAULT_COMPOSE_CMD

    @property
    def ssh_hosts(self) -> List[SSHHost]:
        """Get all configured remote hosts, disabled ones included

        Returns:
            List of SSHHost instances in configuration order
        """
        hosts = []
        for entry in self.data.get("ssh_hosts") or []:
            if not isinstance(entry, dict):
                logger.warning(f"Ignoring malformed ssh_hosts entry: {entry!r}")
                continue
            hosts.append(SSHHost.from_dict(entry))
        return hosts

    @property
    def enabled_hosts(self) -> List[SSHHost]:
        """Get remote hosts that are not disabled"""
        return [host for host in self.ssh_hosts if not host.disabled]

    def get_host(self, name: str) -> Optional[SSHHost]:
        """Find a configured remote host by name"""
        for host in self.ssh_hosts:
            if host.name == name:
                return host
        return None

    def validate(self) -> List[str]:
        """Validate configuration

        Returns:
            List of problems found (empty when the configuration is valid)
        """
        problems = []
        seen = set()

        for index, host in enumerate(self.ssh_hosts):
            label = host.name or f"#{index + 1}"
            if not host.name:
                problems.append(f"ssh host {label}: name is required")
            elif host.name == LOCAL_HOST_NAME:
                problems.append(f"ssh host {label}: '{LOCAL_HOST_NAME}' is a reserved name")
            elif host.name in seen:
                problems.append(f"ssh host {label}: duplicate name")
            seen.add(host.name)

            if ":" in (host.name or ""):
                problems.append(f"ssh host {label}: name must not contain ':'")
            if not host.hostname:
                problems.append(f"ssh host {label}: hostname is required")
            if not host.user:
                problems.append(f"ssh host {label}: user is required")
            if not isinstance(host.port, int) or not 0 < host.port < 65536:
                problems.append(f"ssh host {label}: invalid port {host.port!r}")

        for problem in problems:
            logger.error(problem)
        return problems

    def set_hosts(self, hosts: List[SSHHost]) -> None:
        """Replace the configured remote hosts"""
        self.data["ssh_hosts"] = [host.to_dict() for host in hosts]

    def set_local_root(self, path: str) -> None:
        """Set the local stack root override; an empty path restores the defaults

        Raises:
            ConfigError: Path is neither absolute nor "~/"-relative
        """
        if path and not (path.startswith("/") or path.startswith("~/")):
            raise ConfigError("path must be absolute or start with '~/'")
        if path:
            self.data["local_root"] = path
        else:
            self.data.pop("local_root", None)

    def set_compose_cmd(self, cmd: str) -> None:
        """Set the compose front-end binary

        Raises:
            ConfigError: Not one of the supported runtimes
        """
        cmd = cmd.lower()
        if cmd not in SUPPORTED_COMPOSE_CMDS:
            raise ConfigError(f"runtime must be one of: {', '.join(SUPPORTED_COMPOSE_CMDS)}")
        runtime = dict(self.data.get("runtime") or {})
        runtime["cmd"] = cmd
        self.data["runtime"] = runtime

    def save(self) -> None:
        """Write configuration back to its file (mode 0640)"""
        config_dir = os.path.dirname(self.config_file)
        try:
            if config_dir:
                os.makedirs(config_dir, mode=0o750, exist_ok=True)
            with open(self.config_file, "w") as f:
                yaml.safe_dump(self.data, f, default_flow_style=False, sort_keys=False)
            os.chmod(self.config_file, 0o640)
        except OSError as e:
            raise ConfigError(f"failed to write config file {self.config_file}: {e}") from e
        logger.info(f"Saved configuration to {self.config_file}")
