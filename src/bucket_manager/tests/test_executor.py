"""Tests for local and remote command execution"""

import io
import queue
from unittest.mock import MagicMock

import pytest

from bucket_manager.core.errors import CommandExecutionError, ConnectionManagerError, SequenceStepError
from bucket_manager.core.stack import HostTarget, Stack
from bucket_manager.runner.base import BaseRunner, CommandResult, CommandStep, HostCommandStep
from bucket_manager.runner.executor import CommandExecutor
from bucket_manager.runner.local import LocalRunner
from bucket_manager.runner.sinks import BufferSink, ChannelSink, OutputLine, PassthroughSink
from bucket_manager.runner.ssh import SSHRunner


def sh_step(stack, script, name="Script"):
    return CommandStep(name=name, command="sh", args=["-c", script], stack=stack)


class RecordingRunner(BaseRunner):
    """Runner that records steps and fails the ones named in fail_on"""

    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.started = []

    def stream(self, step, sink):
        self.started.append(step.name)
        sink.write(f"{step.name}\n".encode(), False)
        if step.name in self.fail_on:
            raise CommandExecutionError(step.description, exit_code=1)

    def capture(self, step):
        return CommandResult(exit_code=0)


class TestLocalRunner:
    """Test LocalRunner against real POSIX commands"""

    def test_stream_into_channel(self, local_stack):
        """Test that stdout and stderr arrive as tagged output lines"""
        lines = queue.Queue()
        LocalRunner().stream(sh_step(local_stack, "printf out; printf err >&2"), ChannelSink(lines))

        received = []
        while not lines.empty():
            received.append(lines.get())
        assert OutputLine("out", False) in received
        assert OutputLine("err", True) in received

    def test_runs_in_stack_directory(self, local_stack):
        """Test that the working directory is the stack directory"""
        sink = BufferSink()
        LocalRunner().stream(sh_step(local_stack, "pwd"), sink)
        assert sink.stdout.decode().strip() == local_stack.path

    def test_non_zero_exit(self, local_stack):
        """Test that a non-zero exit raises with the exit code"""
        with pytest.raises(CommandExecutionError) as exc_info:
            LocalRunner().stream(sh_step(local_stack, "exit 3"), BufferSink())
        assert exc_info.value.exit_code == 3
        assert "exited with status 3" in str(exc_info.value)

    def test_missing_binary(self, local_stack):
        """Test that a command that cannot start raises without an exit code"""
        step = CommandStep(name="Missing", command="definitely-not-a-real-binary", stack=local_stack)
        with pytest.raises(CommandExecutionError, match="failed to start") as exc_info:
            LocalRunner().stream(step, BufferSink())
        assert exc_info.value.exit_code is None

    def test_passthrough_with_injected_streams(self, local_stack):
        """Test that a passthrough sink with injected streams copies bytes verbatim"""
        stdout, stderr = io.BytesIO(), io.BytesIO()
        sink = PassthroughSink(stdout=stdout, stderr=stderr)
        assert sink.inherits_terminal is False

        LocalRunner().stream(sh_step(local_stack, "printf '\\033[31mred\\033[0m'; printf e >&2"), sink)
        assert stdout.getvalue() == b"\x1b[31mred\x1b[0m"
        assert stderr.getvalue() == b"e"

    def test_capture(self, local_stack):
        """Test that capture returns output and exit code without raising"""
        result = LocalRunner().capture(sh_step(local_stack, "printf data; exit 4"))
        assert result.exit_code == 4
        assert result.stdout == "data"


class TestSSHRunner:
    """Test SSHRunner with a mocked channel"""

    def test_stream_builds_quoted_command(self, mock_ssh_manager, mock_channel, remote_stack):
        """Test that the remote command cds into the stack directory"""
        runner = SSHRunner(mock_ssh_manager)
        sink = BufferSink()
        step = CommandStep(name="Start Containers", command="podman", args=["compose", "up", "-d"],
                           stack=remote_stack)

        runner.stream(step, sink)

        mock_channel.exec_command.assert_called_once_with(
            "cd '/srv/stacks/app' && podman 'compose' 'up' '-d'"
        )
        mock_channel.get_pty.assert_not_called()
        mock_channel.close.assert_called_once()
        assert bytes(sink.stdout) == b"hello\n"

    def test_passthrough_requests_pty(self, mock_ssh_manager, mock_channel, remote_stack):
        """Test that terminal output requests a pseudo-terminal"""
        runner = SSHRunner(mock_ssh_manager)
        sink = PassthroughSink(stdout=io.BytesIO(), stderr=io.BytesIO())

        runner.stream(CommandStep(name="Pull", command="podman", args=["compose", "pull"],
                                  stack=remote_stack), sink)

        mock_channel.get_pty.assert_called_once_with(term="xterm-256color", width=80, height=40)

    def test_pty_failure_is_not_fatal(self, mock_ssh_manager, mock_channel, remote_stack):
        """Test that a refused pty request only logs a warning"""
        import paramiko
        mock_channel.get_pty.side_effect = paramiko.SSHException("no pty")
        sink = PassthroughSink(stdout=io.BytesIO(), stderr=io.BytesIO())

        SSHRunner(mock_ssh_manager).stream(
            CommandStep(name="Pull", command="podman", args=["compose", "pull"], stack=remote_stack), sink
        )
        mock_channel.exec_command.assert_called_once()

    def test_non_zero_exit(self, mock_ssh_manager, mock_channel, remote_stack):
        """Test that a remote non-zero exit status raises with its code"""
        mock_channel.recv_exit_status.return_value = 2
        with pytest.raises(CommandExecutionError) as exc_info:
            SSHRunner(mock_ssh_manager).stream(
                CommandStep(name="Down", command="podman", args=["compose", "down"], stack=remote_stack),
                BufferSink(),
            )
        assert exc_info.value.exit_code == 2

    def test_missing_exit_status(self, mock_ssh_manager, mock_channel, remote_stack):
        """Test that a session closed without exit status is a failure without a code"""
        mock_channel.recv_exit_status.return_value = -1
        with pytest.raises(CommandExecutionError, match="without an exit status") as exc_info:
            SSHRunner(mock_ssh_manager).stream(
                CommandStep(name="Down", command="podman", args=["compose", "down"], stack=remote_stack),
                BufferSink(),
            )
        assert exc_info.value.exit_code is None

    def test_connection_failure(self, mock_ssh_manager, remote_stack):
        """Test that a connection failure surfaces as a command execution error"""
        mock_ssh_manager.get_client.side_effect = ConnectionManagerError("unreachable")
        with pytest.raises(CommandExecutionError, match="failed to get ssh client"):
            SSHRunner(mock_ssh_manager).capture(
                CommandStep(name="Status", command="podman", args=["compose", "ps"], stack=remote_stack)
            )

    def test_capture_command(self, mock_ssh_manager, mock_channel, ssh_host):
        """Test capturing a raw command"""
        mock_channel.recv_stderr.side_effect = [b"warn", b""]
        result = SSHRunner(mock_ssh_manager).capture_command(ssh_host, "cd '/srv' && pwd", "root")
        assert result.exit_code == 0
        assert result.stdout == "hello\n"
        assert result.stderr == "warn"
        mock_channel.exec_command.assert_called_once_with("cd '/srv' && pwd")

    def test_host_step_runs_without_cd(self, mock_ssh_manager, mock_channel, ssh_host):
        """Test that host-level steps run outside any directory"""
        step = HostCommandStep(name="Prune System", command="podman", args=["system", "prune", "-af"],
                               target=HostTarget.remote(ssh_host))
        SSHRunner(mock_ssh_manager).stream(step, BufferSink())
        mock_channel.exec_command.assert_called_once_with("podman 'system' 'prune' '-af'")


class TestCommandExecutor:
    """Test CommandExecutor dispatch, streams and sequences"""

    def test_stream_step_local(self, local_stack):
        """Test that a streamed local step yields output then finishes cleanly"""
        executor = CommandExecutor(MagicMock())
        stream = executor.stream_step(sh_step(local_stack, "printf 'a\\nb\\n'"))

        output = "".join(line.line for line in stream if not line.is_error)
        assert output == "a\nb\n"
        assert stream.error(timeout=5) is None

    def test_stream_step_failure(self, local_stack):
        """Test that the terminal error of a failed step is reported"""
        executor = CommandExecutor(MagicMock())
        stream = executor.stream_step(sh_step(local_stack, "printf x; exit 5"))

        assert [line.line for line in stream] == ["x"]
        error = stream.error(timeout=5)
        assert isinstance(error, CommandExecutionError)
        assert error.exit_code == 5

    def test_sequence_aborts_at_failing_step(self, local_stack):
        """Test that step 3 never starts when step 2 fails"""
        runner = RecordingRunner(fail_on={"two"})
        executor = CommandExecutor(MagicMock(), local_runner=runner)
        steps = [CommandStep(name=name, command="true", stack=local_stack) for name in ("one", "two", "three")]

        with pytest.raises(SequenceStepError) as exc_info:
            executor.run_sequence(steps, BufferSink())

        assert runner.started == ["one", "two"]
        assert exc_info.value.step_name == "two"
        assert isinstance(exc_info.value.cause, CommandExecutionError)

    def test_stream_sequence_tags_steps(self, local_stack):
        """Test that streamed sequence output carries the step name"""
        runner = RecordingRunner()
        executor = CommandExecutor(MagicMock(), local_runner=runner)
        steps = [CommandStep(name=name, command="true", stack=local_stack) for name in ("Pull", "Start")]

        stream = executor.stream_sequence(steps)
        lines = list(stream)

        assert [(line.step, line.line) for line in lines] == [("Pull", "Pull\n"), ("Start", "Start\n")]
        assert stream.error(timeout=5) is None

    def test_on_step_callback(self, local_stack):
        """Test that the step callback sees each step before it runs"""
        executor = CommandExecutor(MagicMock(), local_runner=RecordingRunner())
        steps = [CommandStep(name=name, command="true", stack=local_stack) for name in ("a", "b")]
        seen = []

        executor.run_sequence(steps, BufferSink(), on_step=lambda index, step: seen.append((index, step.name)))
        assert seen == [(1, "a"), (2, "b")]

    def test_remote_step_without_host_config(self):
        """Test that a remote step missing its host configuration is rejected"""
        stack = Stack(name="app", path="app", server_name="ghost", is_remote=True,
                      absolute_remote_root="/srv")
        executor = CommandExecutor(MagicMock())
        with pytest.raises(CommandExecutionError, match="host config is missing"):
            executor.run_step(CommandStep(name="Up", command="podman", stack=stack), BufferSink())

    def test_remote_step_uses_remote_runner(self, remote_stack):
        """Test dispatch of remote steps"""
        remote_runner = MagicMock()
        executor = CommandExecutor(MagicMock(), local_runner=RecordingRunner(), remote_runner=remote_runner)
        step = CommandStep(name="Up", command="podman", stack=remote_stack)
        sink = BufferSink()

        executor.run_step(step, sink)
        remote_runner.stream.assert_called_once_with(step, sink)


class TestChannelSinkDecoding:
    """Test incremental decoding in the channel sink"""

    def test_split_multibyte_sequence(self):
        """Test that a character split across chunks arrives whole"""
        lines = queue.Queue()
        sink = ChannelSink(lines)
        sink.write(b"\xe2\x82", False)
        sink.write(b"\xac!", False)
        sink.finish(False)
        assert lines.get_nowait() == OutputLine("\u20ac!", False)
        assert lines.empty()

    def test_trailing_incomplete_sequence_survives(self, local_stack):
        """Test that an incomplete trailing sequence is flushed as a replacement character"""
        executor = CommandExecutor(MagicMock())
        stream = executor.stream_step(sh_step(local_stack, "printf 'abc\\342\\202'"))

        output = "".join(line.line for line in stream if not line.is_error)
        assert output == "abc\ufffd"
        assert stream.error(timeout=5) is None


class TestRemoteStepWithoutRoot:
    """Test remote steps whose stack has no resolved root"""

    def test_sequence_wraps_missing_root(self, ssh_host):
        """Test that a missing remote root fails the step like any other command error"""
        stack = Stack(name="app", path="app", server_name="server1", is_remote=True, host_config=ssh_host)
        executor = CommandExecutor(MagicMock())
        step = CommandStep(name="Start Containers", command="podman", args=["compose", "up", "-d"], stack=stack)

        with pytest.raises(SequenceStepError) as exc_info:
            executor.run_sequence([step], BufferSink())

        assert isinstance(exc_info.value.cause, CommandExecutionError)
        assert "absolute remote root is empty" in str(exc_info.value)
