"""Host command executor: one entry point for local and remote steps"""

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Callable, Iterator, Optional, Sequence

from bucket_manager.core.errors import CommandExecutionError, SequenceStepError
from bucket_manager.transport.base import BaseConnectionManager, SSHHost
from .base import BaseRunner, CommandResult
from .local import LocalRunner
from .sinks import ChannelSink, OutputLine, OutputSink, PassthroughSink
from .ssh import SSHRunner

logger = logging.getLogger(__name__)

_END = object()


class CommandStream:
    """Output of a command running in the background plus its terminal error

    Iterating yields OutputLine values until every producer has finished.
    """

    def __init__(self):
        self.lines: "queue.Queue" = queue.Queue()
        self.done: Future = Future()

    def __iter__(self) -> Iterator[OutputLine]:
        while True:
            item = self.lines.get()
            if item is _END:
                return
            yield item

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until the command finishes, re-raising its failure"""
        self.done.result(timeout)

    def error(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        """Block until the command finishes and return its failure, if any"""
        return self.done.exception(timeout)

    def _run(self, work: Callable[[OutputSink], None], sink: OutputSink) -> None:
        try:
            work(sink)
        except Exception as e:
            self.done.set_exception(e)
        else:
            self.done.set_result(None)
        finally:
            self.lines.put(_END)

    @classmethod
    def start(cls, work: Callable[[OutputSink], None], cli_mode: bool = False) -> "CommandStream":
        """Run work(sink) on a background thread

        Args:
            work: Callable executing the command against the given sink
            cli_mode: Write straight to the terminal instead of the queue

        Returns:
            The started stream
        """
        stream = cls()
        sink = PassthroughSink() if cli_mode else ChannelSink(stream.lines)
        threading.Thread(target=stream._run, args=(work, sink), daemon=True).start()
        return stream


class CommandExecutor:
    """Executes command steps locally or on remote hosts"""

    def __init__(self, ssh_manager: BaseConnectionManager, local_runner: Optional[BaseRunner] = None,
                 remote_runner: Optional[SSHRunner] = None):
        """Initialize executor

        Args:
            ssh_manager: Connection manager used for remote steps
            local_runner: Runner for local steps (default: LocalRunner)
            remote_runner: Runner for remote steps (default: SSHRunner)
        """
        self.ssh_manager = ssh_manager
        self.local_runner = local_runner or LocalRunner()
        self.remote_runner = remote_runner or SSHRunner(ssh_manager)

    def _runner_for(self, step) -> BaseRunner:
        if not step.is_remote:
            return self.local_runner
        if step.host_config is None:
            raise CommandExecutionError(step.description, reason="internal error: host config is missing")
        return self.remote_runner

    def run_step(self, step, sink: OutputSink) -> None:
        """Run one step to completion, streaming its output into the sink

        Raises:
            CommandExecutionError: The step could not start or exited non-zero
        """
        self._runner_for(step).stream(step, sink)

    def capture(self, step) -> CommandResult:
        """Run one step and capture its output without raising on non-zero exit"""
        return self._runner_for(step).capture(step)

    def capture_remote(self, host: SSHHost, command: str, description: str) -> CommandResult:
        """Run a raw, pre-quoted command line on a remote host and capture its output"""
        return self.remote_runner.capture_command(host, command, description)

    def stream_step(self, step, cli_mode: bool = False) -> CommandStream:
        """Start one step in the background

        Args:
            step: CommandStep or HostCommandStep
            cli_mode: Pass output straight to the terminal

        Returns:
            CommandStream carrying output lines and the terminal error
        """
        return CommandStream.start(lambda sink: self.run_step(step, sink), cli_mode=cli_mode)

    def run_sequence(self, steps: Sequence, sink: OutputSink,
                     on_step: Optional[Callable[[int, object], None]] = None) -> None:
        """Run steps strictly in order, stopping at the first failure

        Args:
            steps: Ordered command steps
            sink: Destination for output of every step
            on_step: Optional callback invoked with (index, step) before each step

        Raises:
            SequenceStepError: A step failed; later steps were not started
        """
        for index, step in enumerate(steps, 1):
            logger.debug(f"Step {index}/{len(steps)} starting: {step.description}")
            if on_step is not None:
                on_step(index, step)
            try:
                self.run_step(step, sink.for_step(step.name))
            except CommandExecutionError as e:
                logger.error(f"Step {index}/{len(steps)} failed: {e}")
                raise SequenceStepError(step.name, e) from e
            logger.debug(f"Step {index}/{len(steps)} completed: {step.description}")

    def stream_sequence(self, steps: Sequence, cli_mode: bool = False) -> CommandStream:
        """Start a sequence in the background; output lines carry their step name"""
        return CommandStream.start(lambda sink: self.run_sequence(steps, sink), cli_mode=cli_mode)
