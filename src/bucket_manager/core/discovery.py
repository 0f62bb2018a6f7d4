"""Compose stack discovery on the local machine and remote hosts"""

import logging
import os
import posixpath
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterator, List, Optional, Tuple

from bucket_manager.core.config import LOCAL_HOST_NAME, Config, resolve_path
from bucket_manager.core.errors import (
    BucketManagerError,
    CommandExecutionError,
    ConfigError,
    DiscoveryError,
    IdentifierError,
    LocalRootNotFoundError,
    StackNotFoundError,
)
from bucket_manager.core.resolver import find_stack_by_identifier, parse_identifier
from bucket_manager.core.stack import Stack
from bucket_manager.runner.executor import CommandExecutor
from bucket_manager.transport.base import SSHHost
from bucket_manager.transport.shell import quote_arg_for_shell

logger = logging.getLogger(__name__)

MAX_CONCURRENT_DISCOVERIES = 8

COMPOSE_FILES = (
    "compose.yaml",
    "compose.yml",
    "docker-compose.yaml",
    "docker-compose.yml",
)

DEFAULT_LOCAL_ROOTS = ("~/bucket", "~/compose-bucket")
DEFAULT_REMOTE_ROOTS = ("~/bucket", "~/compose-bucket")

# Directories (one level below the root) holding a compose file, one per line
REMOTE_FIND_TEMPLATE = (
    "find {root} -maxdepth 2 \\( -name 'compose.y*ml' -o -name 'docker-compose.y*ml' \\)"
    " -printf '%h\\n' | sort -u"
)

# (host name, stacks found, failure) for one discovery task
HostResult = Tuple[str, List[Stack], Optional[BucketManagerError]]


class StackDiscovery:
    """Finds compose stacks locally and across configured SSH hosts"""

    def __init__(self, config: Config, executor: CommandExecutor,
                 max_workers: int = MAX_CONCURRENT_DISCOVERIES):
        """Initialize discovery

        Args:
            config: Loaded configuration (local root override, remote hosts)
            executor: Executor used to run remote discovery commands
            max_workers: Maximum number of hosts queried at once
        """
        self.config = config
        self.executor = executor
        self.max_workers = max_workers

    def get_compose_root_directory(self) -> str:
        """Find the local stack root: the configured override, else a default

        Returns:
            Absolute path of the local root

        Raises:
            ConfigError: The configured local_root does not exist or is not a directory
            LocalRootNotFoundError: Nothing configured and no default exists
        """
        configured = self.config.local_root
        if configured:
            path = resolve_path(configured)
            if not os.path.exists(path):
                raise ConfigError(f"configured local_root '{configured}' is invalid: {path} does not exist")
            if not os.path.isdir(path):
                raise ConfigError(f"configured local_root '{configured}' is not a directory")
            logger.debug(f"Using configured local root directory {path}")
            return path

        for candidate in DEFAULT_LOCAL_ROOTS:
            path = resolve_path(candidate)
            if os.path.isdir(path):
                logger.debug(f"Using default local root directory {path}")
                return path

        raise LocalRootNotFoundError(
            "could not find a valid local stack root directory "
            f"(checked config 'local_root' and defaults: {', '.join(DEFAULT_LOCAL_ROOTS)})"
        )

    def find_local_stacks(self, root_dir: str) -> List[Stack]:
        """List immediate subdirectories of root_dir that hold a compose file

        Raises:
            DiscoveryError: The root directory could not be read
        """
        try:
            entries = sorted(os.scandir(root_dir), key=lambda entry: entry.name)
        except OSError as e:
            raise DiscoveryError(LOCAL_HOST_NAME, f"failed to read local root directory {root_dir}: {e}") from e

        stacks = []
        for entry in entries:
            if not entry.is_dir():
                continue
            if any(os.path.isfile(os.path.join(entry.path, name)) for name in COMPOSE_FILES):
                stacks.append(Stack(name=entry.name, path=os.path.abspath(entry.path)))
        return stacks

    def _discover_local(self) -> List[Stack]:
        """Local stacks, or none when no local root exists at all"""
        try:
            root_dir = self.get_compose_root_directory()
        except LocalRootNotFoundError as e:
            logger.debug(f"No local root directory configured or found: {e}")
            return []
        except ConfigError as e:
            raise DiscoveryError(LOCAL_HOST_NAME, e) from e
        return self.find_local_stacks(root_dir)

    def _resolve_remote_root(self, host: SSHHost) -> str:
        """Resolve the host's stack root to a canonical absolute path with cd && pwd"""
        candidates = [host.remote_root] if host.remote_root else list(DEFAULT_REMOTE_ROOTS)

        for candidate in candidates:
            command = f"cd {quote_arg_for_shell(candidate)} && pwd"
            try:
                result = self.executor.capture_remote(host, command, f"remote root resolution on {host.name}")
            except CommandExecutionError as e:
                raise DiscoveryError(host.name, e) from e

            if result.exit_code == 0:
                absolute_root = result.stdout.strip()
                if not absolute_root:
                    raise DiscoveryError(
                        host.name, f"resolved remote root path is empty (resolved from '{candidate}')"
                    )
                logger.debug(f"Remote root for {host.name}: {candidate} -> {absolute_root}")
                return absolute_root

            if host.remote_root:
                raise DiscoveryError(
                    host.name,
                    f"failed to resolve configured remote root path '{candidate}' "
                    f"(exit status {result.exit_code}): {result.output.strip()}",
                )

        raise DiscoveryError(
            host.name,
            "remote_root not configured, and default fallbacks "
            f"({', '.join(DEFAULT_REMOTE_ROOTS)}) could not be resolved",
        )

    def find_remote_stacks(self, host: SSHHost) -> List[Stack]:
        """Find stacks below the host's remote root

        Raises:
            DiscoveryError: Connection, root resolution or find failed
        """
        absolute_root = self._resolve_remote_root(host)
        command = REMOTE_FIND_TEMPLATE.format(root=quote_arg_for_shell(absolute_root))
        try:
            result = self.executor.capture_remote(host, command, f"stack discovery on {host.name}")
        except CommandExecutionError as e:
            raise DiscoveryError(host.name, e) from e

        if result.exit_code != 0:
            raise DiscoveryError(
                host.name,
                f"remote find command failed (exit status {result.exit_code}): {result.output.strip()}",
            )

        stacks = []
        seen = set()
        for full_path in result.stdout.splitlines():
            full_path = full_path.strip()
            if not full_path or full_path in seen:
                continue
            seen.add(full_path)

            relative_path = posixpath.relpath(full_path, absolute_root)
            name = posixpath.basename(relative_path)
            if name in ("", ".", "/") or relative_path.startswith(".."):
                continue

            stacks.append(Stack(
                name=name,
                path=relative_path,
                server_name=host.name,
                is_remote=True,
                host_config=host,
                absolute_remote_root=absolute_root,
            ))
        return stacks

    def _fan_out(self, tasks: List[Tuple[str, Callable[[], List[Stack]]]]) -> Iterator[HostResult]:
        """Run discovery tasks concurrently, yielding each host's result as it completes

        A failing host never cancels or delays the others. The pool is shut
        down (every task finished) before the iterator is exhausted.
        """
        if not tasks:
            return

        def worker(host_name: str, task: Callable[[], List[Stack]]) -> HostResult:
            try:
                return host_name, task(), None
            except DiscoveryError as e:
                return host_name, [], e
            except BucketManagerError as e:
                return host_name, [], DiscoveryError(host_name, e)

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(tasks))) as pool:
            futures = [pool.submit(worker, name, task) for name, task in tasks]
            for future in as_completed(futures):
                host_name, stacks, error = future.result()
                if error is not None:
                    logger.error(str(error))
                else:
                    logger.info(f"Discovery on {host_name} found {len(stacks)} stack(s)")
                yield host_name, stacks, error

    def _all_tasks(self) -> List[Tuple[str, Callable[[], List[Stack]]]]:
        tasks: List[Tuple[str, Callable[[], List[Stack]]]] = [(LOCAL_HOST_NAME, self._discover_local)]
        for host in self.config.enabled_hosts:
            tasks.append((host.name, lambda h=host: self.find_remote_stacks(h)))
        return tasks

    def stream_all(self) -> Iterator[HostResult]:
        """Discover the local root and every enabled remote host concurrently

        Yields:
            (host name, stacks, error) per host, in completion order
        """
        return self._fan_out(self._all_tasks())

    def discover_all(self) -> Tuple[List[Stack], List[DiscoveryError]]:
        """Discover stacks everywhere

        Returns:
            Tuple of (every stack found, one DiscoveryError per failed host)
        """
        stacks: List[Stack] = []
        errors: List[DiscoveryError] = []
        for _, host_stacks, error in self.stream_all():
            stacks.extend(host_stacks)
            if error is not None:
                errors.append(error)
        return stacks, errors

    def discover_host(self, host_name: str) -> List[Stack]:
        """Discover stacks on one host ("local" or a configured remote name)

        Raises:
            ConfigError: Unknown host name or invalid local root
            DiscoveryError: Discovery on the host failed
        """
        if host_name == LOCAL_HOST_NAME:
            return self.find_local_stacks(self.get_compose_root_directory())

        host = self.config.get_host(host_name)
        if host is None:
            raise ConfigError(f"remote host '{host_name}' not found in configuration")
        return self.find_remote_stacks(host)

    def discover_targets(self, identifier: str = "") -> Tuple[List[Stack], List[BucketManagerError]]:
        """Discover only what an identifier needs

        Forms: "" (everything), "name", "server:name", "server:" (all of a
        server's stacks). A bare name is looked up locally first and only
        broadcast to every enabled remote when it is not found locally.

        Returns:
            Tuple of (matching stacks, collected errors)
        """
        identifier = identifier.strip()
        if not identifier:
            stacks, errors = self.discover_all()
            return stacks, list(errors)

        name: Optional[str]
        try:
            if identifier.endswith(":"):
                server = identifier[:-1].strip()
                name = None
                if not server:
                    raise IdentifierError(f"invalid identifier format: '{identifier}'. Cannot be just ':'")
            else:
                server, name = parse_identifier(identifier)
        except IdentifierError as e:
            return [], [e]

        stacks: List[Stack] = []
        errors: List[BucketManagerError] = []

        if server in (None, LOCAL_HOST_NAME):
            try:
                stacks.extend(self._discover_local())
            except DiscoveryError as e:
                errors.append(e)

        if server not in (None, LOCAL_HOST_NAME):
            host = self.config.get_host(server)
            if host is None:
                errors.append(ConfigError(f"remote host '{server}' not found in configuration"))
            elif host.disabled:
                errors.append(ConfigError(f"remote host '{server}' is disabled"))
            else:
                for _, host_stacks, error in self._fan_out([(host.name, lambda: self.find_remote_stacks(host))]):
                    stacks.extend(host_stacks)
                    if error is not None:
                        errors.append(error)

        if server is None and not any(s.name == name for s in stacks):
            tasks = [
                (host.name, lambda h=host: self.find_remote_stacks(h))
                for host in self.config.enabled_hosts
            ]
            for _, host_stacks, error in self._fan_out(tasks):
                stacks.extend(s for s in host_stacks if s.name == name)
                if error is not None:
                    errors.append(error)

        matches = [
            s for s in stacks
            if (name is None or s.name == name) and (server is None or s.server_name == server)
        ]
        # Remote results arrive in completion order; report them in configuration order
        host_order = {host.name: index for index, host in enumerate(self.config.ssh_hosts)}
        matches.sort(key=lambda s: -1 if not s.is_remote else host_order.get(s.server_name, len(host_order)))

        if server is None and len(matches) > 1:
            try:
                matches = [find_stack_by_identifier(matches, identifier)]
            except IdentifierError as e:
                return [], errors + [e]
        elif not matches and not errors:
            if name is None:
                return [], [StackNotFoundError(f"no stacks found on '{server}'")]
            return [], [StackNotFoundError(f"stack '{identifier}' not found")]

        return matches, errors
