"""Local command execution"""

import logging
import subprocess
import threading

from bucket_manager.core.errors import CommandExecutionError
from .base import BaseRunner, CommandResult
from .sinks import OutputSink, pump

logger = logging.getLogger(__name__)


class LocalRunner(BaseRunner):
    """Runs steps as child processes of this machine"""

    def stream(self, step, sink: OutputSink) -> None:
        description = f"local {step.description}"
        argv = [step.command] + list(step.args)
        logger.debug(f"Executing locally in {step.local_dir or '.'}: {' '.join(argv)}")

        if sink.inherits_terminal:
            try:
                process = subprocess.Popen(argv, cwd=step.local_dir)
            except OSError as e:
                raise CommandExecutionError(description, reason=f"failed to start: {e}") from e
            return_code = process.wait()
        else:
            try:
                process = subprocess.Popen(
                    argv,
                    cwd=step.local_dir,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                )
            except OSError as e:
                raise CommandExecutionError(description, reason=f"failed to start: {e}") from e

            readers = [
                threading.Thread(target=pump, args=(process.stdout.read1, sink, False), daemon=True),
                threading.Thread(target=pump, args=(process.stderr.read1, sink, True), daemon=True),
            ]
            for reader in readers:
                reader.start()

            return_code = process.wait()

            # Drain both pipes after the process exits
            for reader in readers:
                reader.join()
            process.stdout.close()
            process.stderr.close()

        self._check(description, return_code)

    @staticmethod
    def _check(description: str, return_code: int) -> None:
        if return_code == 0:
            return
        if return_code < 0:
            raise CommandExecutionError(description, reason=f"terminated by signal {-return_code}")
        raise CommandExecutionError(description, exit_code=return_code)

    def capture(self, step) -> CommandResult:
        description = f"local {step.description}"
        argv = [step.command] + list(step.args)
        logger.debug(f"Capturing locally in {step.local_dir or '.'}: {' '.join(argv)}")
        try:
            result = subprocess.run(
                argv,
                cwd=step.local_dir,
                capture_output=True,
                check=False,
            )
        except OSError as e:
            raise CommandExecutionError(description, reason=f"failed to start: {e}") from e

        return CommandResult(
            exit_code=result.returncode,
            stdout=result.stdout.decode("utf-8", errors="replace"),
            stderr=result.stderr.decode("utf-8", errors="replace"),
        )
