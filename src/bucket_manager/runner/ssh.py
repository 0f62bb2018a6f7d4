"""Remote command execution over SSH"""

import logging
import threading

import paramiko

from bucket_manager.core.errors import CommandExecutionError, ConnectionManagerError
from bucket_manager.transport.base import BaseConnectionManager, SSHHost
from bucket_manager.transport.shell import build_remote_command
from .base import BaseRunner, CommandResult
from .sinks import BufferSink, OutputSink, pump

logger = logging.getLogger(__name__)

PTY_TERM = "xterm-256color"
PTY_WIDTH = 80
PTY_HEIGHT = 40


class SSHRunner(BaseRunner):
    """Runs steps in sessions multiplexed over the managed SSH connections"""

    def __init__(self, ssh_manager: BaseConnectionManager):
        """Initialize SSH runner

        Args:
            ssh_manager: Connection manager owning the SSH clients
        """
        self.ssh_manager = ssh_manager

    def _open_session(self, host: SSHHost, description: str) -> paramiko.Channel:
        try:
            client = self.ssh_manager.get_client(host)
        except ConnectionManagerError as e:
            raise CommandExecutionError(description, reason=f"failed to get ssh client: {e}") from e

        transport = client.get_transport()
        if transport is None:
            raise CommandExecutionError(description, reason="ssh connection has no transport")
        try:
            return transport.open_session()
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise CommandExecutionError(description, reason=f"failed to create ssh session: {e}") from e

    def execute(self, host: SSHHost, command: str, description: str, sink: OutputSink,
                pty: bool = False) -> int:
        """Run a raw command line on a host, streaming output into the sink

        Args:
            host: Remote host configuration
            command: Shell command line, already quoted
            description: Human-readable description for errors
            sink: Destination for stdout/stderr
            pty: Request a pseudo-terminal first (failure is only logged)

        Returns:
            Exit status reported by the remote side, -1 if none was sent

        Raises:
            CommandExecutionError: Connection, session or start failure
        """
        channel = self._open_session(host, description)
        try:
            if pty:
                try:
                    channel.get_pty(term=PTY_TERM, width=PTY_WIDTH, height=PTY_HEIGHT)
                except (paramiko.SSHException, OSError) as e:
                    logger.warning(f"Failed to request pty for {description} (continuing): {e}")

            logger.debug(f"Executing on {host.name}: {command}")
            try:
                channel.exec_command(command)
            except (paramiko.SSHException, OSError, EOFError) as e:
                raise CommandExecutionError(description, reason=f"failed to start remote command: {e}") from e

            readers = [
                threading.Thread(target=pump, args=(channel.recv, sink, False), daemon=True),
                threading.Thread(target=pump, args=(channel.recv_stderr, sink, True), daemon=True),
            ]
            for reader in readers:
                reader.start()

            exit_status = channel.recv_exit_status()

            for reader in readers:
                reader.join()
        finally:
            channel.close()

        logger.debug(f"Remote command on {host.name} completed with exit status {exit_status}")
        return exit_status

    def stream(self, step, sink: OutputSink) -> None:
        command = build_remote_command(step.command, step.args, step.remote_dir)
        exit_status = self.execute(step.host_config, command, step.description, sink, pty=sink.wants_pty)
        if exit_status == -1:
            raise CommandExecutionError(step.description, reason="remote side closed without an exit status")
        if exit_status != 0:
            raise CommandExecutionError(step.description, exit_code=exit_status)

    def capture(self, step) -> CommandResult:
        command = build_remote_command(step.command, step.args, step.remote_dir)
        return self.capture_command(step.host_config, command, step.description)

    def capture_command(self, host: SSHHost, command: str, description: str) -> CommandResult:
        """Run a raw command line on a host and capture its output"""
        sink = BufferSink()
        exit_status = self.execute(host, command, description, sink)
        return CommandResult(
            exit_code=exit_status,
            stdout=sink.stdout.decode("utf-8", errors="replace"),
            stderr=sink.stderr.decode("utf-8", errors="replace"),
        )
