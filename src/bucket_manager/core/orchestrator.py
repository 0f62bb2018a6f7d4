"""Main orchestration logic: the API front ends drive"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from bucket_manager.core.config import LOCAL_HOST_NAME, Config
from bucket_manager.core.discovery import MAX_CONCURRENT_DISCOVERIES, HostResult, StackDiscovery
from bucket_manager.core.errors import (
    BucketManagerError,
    ConfigError,
    DiscoveryError,
    StackNotFoundError,
)
from bucket_manager.core.resolver import find_stack_by_identifier
from bucket_manager.core.stack import HostTarget, Stack
from bucket_manager.runner.executor import CommandExecutor, CommandStream
from bucket_manager.runner.sinks import BufferSink, OutputSink, PassthroughSink
from bucket_manager.runtime.base import StackRuntimeInfo
from bucket_manager.runtime.compose import HOST_ACTIONS, STACK_ACTIONS, ComposeRuntime
from bucket_manager.transport.ssh import SSHManager

logger = logging.getLogger(__name__)

MAX_CONCURRENT_STATUS_CHECKS = 16


class Orchestrator:
    """Ties discovery, execution and status probing together"""

    def __init__(self, config: Config, ssh_manager: Optional[SSHManager] = None,
                 executor: Optional[CommandExecutor] = None,
                 runtime: Optional[ComposeRuntime] = None,
                 max_concurrent_discoveries: int = MAX_CONCURRENT_DISCOVERIES,
                 max_concurrent_status_checks: int = MAX_CONCURRENT_STATUS_CHECKS):
        """Initialize orchestrator

        Args:
            config: Configuration instance
            ssh_manager: Shared connection manager (default: new SSHManager)
            executor: Command executor (default: built on ssh_manager)
            runtime: Compose runtime (default: configured compose binary)
            max_concurrent_discoveries: Maximum hosts discovered at once
            max_concurrent_status_checks: Maximum stacks probed at once
        """
        self.config = config
        self.ssh_manager = ssh_manager or SSHManager()
        self.executor = executor or CommandExecutor(self.ssh_manager)
        self.runtime = runtime or ComposeRuntime(self.executor, compose_cmd=config.compose_cmd)
        self.discovery = StackDiscovery(config, self.executor, max_workers=max_concurrent_discoveries)
        self.max_concurrent_status_checks = max_concurrent_status_checks

    def __enter__(self) -> "Orchestrator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """Close every pooled SSH connection"""
        self.ssh_manager.close_all()

    # Discovery

    def discover_all(self) -> Tuple[List[Stack], List[DiscoveryError]]:
        return self.discovery.discover_all()

    def stream_discovery(self) -> Iterator[HostResult]:
        return self.discovery.stream_all()

    def discover_host(self, host_name: str) -> List[Stack]:
        return self.discovery.discover_host(host_name)

    def discover_targets(self, identifier: str = "") -> Tuple[List[Stack], List[BucketManagerError]]:
        return self.discovery.discover_targets(identifier)

    def resolve(self, stacks: Iterable[Stack], identifier: str) -> Stack:
        return find_stack_by_identifier(stacks, identifier)

    def locate(self, identifier: str) -> Stack:
        """Discover just enough to resolve one identifier to one stack

        Host failures that do not prevent a unique match are logged and
        ignored.

        Raises:
            IdentifierError: Malformed, unknown or ambiguous identifier
            BucketManagerError: No match, and discovery reported a failure
        """
        stacks, errors = self.discover_targets(identifier)
        if len(stacks) == 1:
            for error in errors:
                logger.warning(f"Ignoring discovery failure while locating {identifier}: {error}")
            return stacks[0]
        if errors:
            raise errors[0]
        if not stacks:
            raise StackNotFoundError(f"stack '{identifier}' not found")
        return self.resolve(stacks, identifier)

    # Stack actions

    def build_sequence(self, stack: Stack, action: str):
        if action not in STACK_ACTIONS:
            raise ValueError(f"unknown stack action '{action}', expected one of: {', '.join(STACK_ACTIONS)}")
        return self.runtime.sequence(action, stack)

    def run_sequence(self, stack: Stack, action: str, sink: Optional[OutputSink] = None,
                     on_step: Optional[Callable] = None) -> None:
        """Run an action's steps against a stack and block until done

        Args:
            stack: Target stack
            action: "up", "down", "pull" or "refresh"
            sink: Output destination (default: the terminal)
            on_step: Optional callback invoked with (index, step) before each step

        Raises:
            SequenceStepError: A step failed; later steps did not run
        """
        steps = self.build_sequence(stack, action)
        logger.info(f"Running {action} on {stack.identifier} ({len(steps)} step(s))")
        self.executor.run_sequence(steps, sink or PassthroughSink(), on_step=on_step)
        logger.info(f"Finished {action} on {stack.identifier}")

    def stream_sequence(self, stack: Stack, action: str, cli_mode: bool = False) -> CommandStream:
        """Start an action in the background; output lines carry their step name"""
        return self.executor.stream_sequence(self.build_sequence(stack, action), cli_mode=cli_mode)

    # Host actions

    def resolve_host_targets(self, names: Iterable[str] = ()) -> List[HostTarget]:
        """Map host names to targets; no names means local plus every enabled remote

        Disabled hosts named explicitly are skipped with a warning.

        Raises:
            ConfigError: A name is not "local" and not a configured host
        """
        names = list(names)
        if not names:
            return [HostTarget.local()] + [HostTarget.remote(host) for host in self.config.enabled_hosts]

        targets = []
        seen = set()
        for name in names:
            if name in seen:
                continue
            seen.add(name)
            if name == LOCAL_HOST_NAME:
                targets.append(HostTarget.local())
                continue
            host = self.config.get_host(name)
            if host is None:
                raise ConfigError(f"remote host '{name}' not found in configuration")
            if host.disabled:
                logger.warning(f"Skipping disabled host '{name}'")
                continue
            targets.append(HostTarget.remote(host))
        return targets

    def run_host_action(self, action: str, targets: List[HostTarget],
                        cli_mode: bool = False) -> Dict[str, Optional[Exception]]:
        """Run a host-level action on several hosts concurrently

        Args:
            action: Host action name ("prune")
            targets: Hosts to act on
            cli_mode: Pass output straight to the terminal

        Returns:
            Mapping of host name to its failure (None on success)
        """
        if action not in HOST_ACTIONS:
            raise ValueError(f"unknown host action '{action}', expected one of: {', '.join(HOST_ACTIONS)}")
        if not targets:
            return {}

        def host_worker(target: HostTarget):
            """Worker function for threaded host actions"""
            step = self.runtime.host_step(action, target)
            logger.info(f"Running {action} on {target.server_name}")
            sink = PassthroughSink() if cli_mode else BufferSink()
            try:
                self.executor.run_step(step, sink)
                logger.info(f"{action} completed on {target.server_name}")
                return target.server_name, None
            except BucketManagerError as e:
                logger.error(f"{action} failed on {target.server_name}: {e}")
                return target.server_name, e

        results: Dict[str, Optional[Exception]] = {}
        with ThreadPoolExecutor(max_workers=min(MAX_CONCURRENT_DISCOVERIES, len(targets))) as pool:
            future_to_target = {pool.submit(host_worker, target): target for target in targets}
            for future in as_completed(future_to_target):
                name, error = future.result()
                results[name] = error
        return results

    def stream_host_action(self, action: str, target: HostTarget, cli_mode: bool = False) -> CommandStream:
        """Start a host-level action on one host in the background"""
        return self.executor.stream_step(self.runtime.host_step(action, target), cli_mode=cli_mode)

    # Status

    def get_status(self, stack: Stack) -> StackRuntimeInfo:
        return self.runtime.get_stack_status(stack)

    def iter_statuses(self, stacks: List[Stack]) -> Iterator[StackRuntimeInfo]:
        """Probe stacks concurrently, yielding results in completion order"""
        if not stacks:
            return
        workers = min(self.max_concurrent_status_checks, len(stacks))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self.get_status, stack) for stack in stacks]
            for future in as_completed(futures):
                yield future.result()

    def get_statuses(self, stacks: List[Stack]) -> List[StackRuntimeInfo]:
        return list(self.iter_statuses(stacks))
