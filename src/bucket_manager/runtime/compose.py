"""Compose runtime: lifecycle sequences and status probing"""

import json
import logging
from typing import Any, Dict, List, Optional

from bucket_manager.core.errors import CommandExecutionError, StatusProbeError
from bucket_manager.core.stack import HostTarget, Stack
from bucket_manager.runner.base import CommandStep, HostCommandStep
from bucket_manager.runner.executor import CommandExecutor
from .base import BaseRuntime, ContainerState, StackRuntimeInfo, StackStatus

logger = logging.getLogger(__name__)

STACK_ACTIONS = ("up", "down", "pull", "refresh")
HOST_ACTIONS = ("prune",)

STATUS_ARGS = ["compose", "ps", "--format", "json", "-a"]

# Substrings marking a container as running (case-insensitive)
RUNNING_SUBSTRINGS = ("running", "healthy")
RUNNING_PREFIXES = ("up",)

# (where, phrase): probe failures matching any entry mean the stack is down,
# not broken. "error" is the failure message, "output" the captured output.
DOWN_PATTERNS = (
    ("error", "exited with status"),
    ("output", "no containers found"),
    ("output", "no such file or directory"),
)

NO_CONTAINERS_HINT = "no containers found"


def is_running(status: str) -> bool:
    """Return True if a raw container status string means the container is up"""
    lowered = status.lower()
    return any(s in lowered for s in RUNNING_SUBSTRINGS) or lowered.startswith(RUNNING_PREFIXES)


def aggregate_status(containers: List[ContainerState]) -> StackStatus:
    """Derive a stack's aggregate status from its containers

    Zero containers is DOWN; all running is UP; none running is DOWN;
    anything in between is PARTIAL.
    """
    if not containers:
        return StackStatus.DOWN

    running = sum(1 for c in containers if is_running(c.status))
    if running == len(containers):
        return StackStatus.UP
    if running == 0:
        return StackStatus.DOWN
    return StackStatus.PARTIAL


def classify_probe_failure(error: Exception, output: str = "") -> Optional[StackStatus]:
    """Classify a failed status probe

    Args:
        error: Failure raised or reported by the probe command
        output: Output captured from the probe command

    Returns:
        StackStatus.DOWN when the failure only means the stack is not running,
        None when it is a real error
    """
    haystacks = {"error": str(error).lower(), "output": output.lower()}
    for where, phrase in DOWN_PATTERNS:
        if phrase in haystacks[where]:
            logger.debug(f"Probe failure matched down pattern {phrase!r} in {where}")
            return StackStatus.DOWN
    return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return " ".join(str(v) for v in value)
    return json.dumps(value)


def container_from_record(record: Dict[str, Any]) -> ContainerState:
    """Build a ContainerState from one decoded JSON record"""
    return ContainerState(
        name=_as_text(record.get("Name") or record.get("Names")),
        command=_as_text(record.get("Command")),
        service=_as_text(record.get("Service")),
        status=_as_text(record.get("Status") or record.get("State")),
        ports=_as_text(record.get("Ports")),
    )


def parse_container_status_output(output: str, context: str = "") -> List[ContainerState]:
    """Parse JSON-lines output of the compose ps command

    Every non-blank line is decoded independently; a line holding a JSON
    array contributes each element. A bad line does not stop the others
    from being parsed, but the first failure is raised at the end unless
    the output (or ``context``, typically stderr) says there are no containers.

    Raises:
        StatusProbeError: A line could not be decoded
    """
    containers = []
    first_error = None

    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            decoded = json.loads(line)
        except ValueError as e:
            if first_error is None:
                first_error = f"failed to decode container status JSON line: {e}\nLine: {line}"
            continue

        records = decoded if isinstance(decoded, list) else [decoded]
        for record in records:
            if isinstance(record, dict):
                containers.append(container_from_record(record))
            elif first_error is None:
                first_error = f"unexpected container status record: {line}"

    if first_error is not None:
        if NO_CONTAINERS_HINT in (output + context).lower():
            return []
        raise StatusProbeError(first_error)

    return containers


class ComposeRuntime(BaseRuntime):
    """Compose runtime driven through the compose front end (podman/docker)"""

    def __init__(self, executor: CommandExecutor, compose_cmd: str = "podman"):
        """Initialize compose runtime

        Args:
            executor: Executor used for status probes
            compose_cmd: Compose front-end binary (default: 'podman')
        """
        self.executor = executor
        self.compose_cmd = compose_cmd

    def _step(self, name: str, stack: Stack, *args: str) -> CommandStep:
        return CommandStep(name=name, command=self.compose_cmd, args=list(args), stack=stack)

    def up_sequence(self, stack: Stack) -> List[CommandStep]:
        return [
            self._step("Pull Images", stack, "compose", "pull"),
            self._step("Start Containers", stack, "compose", "up", "-d"),
        ]

    def pull_sequence(self, stack: Stack) -> List[CommandStep]:
        return [self._step("Pull Images", stack, "compose", "pull")]

    def down_sequence(self, stack: Stack) -> List[CommandStep]:
        return [self._step("Stop Containers", stack, "compose", "down")]

    def refresh_sequence(self, stack: Stack) -> List[CommandStep]:
        steps = [
            self._step("Pull Images", stack, "compose", "pull"),
            self._step("Stop Containers", stack, "compose", "down"),
            self._step("Start Containers", stack, "compose", "up", "-d"),
        ]
        if not stack.is_remote:
            steps.append(self._step("Prune Local System", stack, "system", "prune", "-af"))
        return steps

    def prune_host_step(self, target: HostTarget) -> HostCommandStep:
        return HostCommandStep(
            name="Prune System",
            command=self.compose_cmd,
            args=["system", "prune", "-af"],
            target=target,
        )

    def sequence(self, action: str, stack: Stack) -> List[CommandStep]:
        """Build the named sequence ("up", "down", "pull" or "refresh") for a stack"""
        builders = {
            "up": self.up_sequence,
            "down": self.down_sequence,
            "pull": self.pull_sequence,
            "refresh": self.refresh_sequence,
        }
        if action not in builders:
            raise ValueError(f"unknown stack action '{action}'")
        return builders[action](stack)

    def host_step(self, action: str, target: HostTarget) -> HostCommandStep:
        """Build the named host-level step ("prune") for a target"""
        if action != "prune":
            raise ValueError(f"unknown host action '{action}'")
        return self.prune_host_step(target)

    def get_stack_status(self, stack: Stack) -> StackRuntimeInfo:
        info = StackRuntimeInfo(stack=stack)
        step = CommandStep(name="Status", command=self.compose_cmd, args=list(STATUS_ARGS), stack=stack)
        description = f"status check for stack {stack.identifier}"

        failure = None
        output = ""
        try:
            result = self.executor.capture(step)
        except CommandExecutionError as e:
            failure = e
        else:
            output = result.output
            if result.exit_code != 0:
                exit_code = result.exit_code if result.exit_code > 0 else None
                failure = CommandExecutionError(description, exit_code=exit_code, output=output)

        if failure is not None:
            if classify_probe_failure(failure, output) == StackStatus.DOWN:
                info.status = StackStatus.DOWN
                return info

            message = f"failed to run {description}: {failure}"
            if output.strip():
                message = f"{message}: {output.strip()}"
            logger.error(message)
            info.status = StackStatus.ERROR
            info.error = StatusProbeError(message)
            return info

        if not result.stdout.strip():
            info.status = StackStatus.DOWN
            return info

        try:
            info.containers = parse_container_status_output(result.stdout, context=result.stderr)
        except StatusProbeError as e:
            info.status = StackStatus.ERROR
            info.error = e
            return info

        info.status = aggregate_status(info.containers)
        return info
