"""Output sinks for command streams

A sink receives raw chunks from a command's stdout and stderr. Chunks are not
line buffered so control sequences and partial lines survive intact.
"""

import codecs
import logging
import queue
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO, Callable, Optional

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 1024


@dataclass(frozen=True)
class OutputLine:
    """A chunk of command output tagged with its stream of origin"""

    line: str
    is_error: bool = False
    step: Optional[str] = None


class OutputSink(ABC):
    """Destination for command output"""

    #: Connect a local child process straight to this process's terminal
    inherits_terminal = False
    #: Ask remote sessions for a pseudo-terminal (colour output)
    wants_pty = False

    @abstractmethod
    def write(self, data: bytes, is_error: bool) -> None:
        """Receive a raw chunk read from stdout (is_error=False) or stderr"""
        pass

    def finish(self, is_error: bool) -> None:
        """Called once when the stdout (is_error=False) or stderr stream reaches EOF"""
        pass

    def for_step(self, step_name: str) -> "OutputSink":
        """Sink to use for one step of a sequence"""
        return self


class PassthroughSink(OutputSink):
    """Writes output byte-for-byte to the local terminal"""

    wants_pty = True

    def __init__(self, stdout: Optional[BinaryIO] = None, stderr: Optional[BinaryIO] = None):
        # Local children inherit the real terminal only when no streams are injected
        self.inherits_terminal = stdout is None and stderr is None
        self.stdout = stdout if stdout is not None else sys.stdout.buffer
        self.stderr = stderr if stderr is not None else sys.stderr.buffer

    def write(self, data: bytes, is_error: bool) -> None:
        stream = self.stderr if is_error else self.stdout
        stream.write(data)
        stream.flush()


class ChannelSink(OutputSink):
    """Pushes OutputLine values onto a shared queue for a programmatic consumer"""

    def __init__(self, lines: "queue.Queue", step: Optional[str] = None):
        self.lines = lines
        self.step = step
        self._decoders = {
            False: codecs.getincrementaldecoder("utf-8")(errors="replace"),
            True: codecs.getincrementaldecoder("utf-8")(errors="replace"),
        }

    def write(self, data: bytes, is_error: bool) -> None:
        text = self._decoders[is_error].decode(data)
        if text:
            self.lines.put(OutputLine(text, is_error, self.step))

    def finish(self, is_error: bool) -> None:
        # Flush a trailing incomplete multibyte sequence as U+FFFD
        text = self._decoders[is_error].decode(b"", final=True)
        if text:
            self.lines.put(OutputLine(text, is_error, self.step))

    def for_step(self, step_name: str) -> "ChannelSink":
        return ChannelSink(self.lines, step=step_name)


class BufferSink(OutputSink):
    """Accumulates output in memory"""

    def __init__(self):
        self.stdout = bytearray()
        self.stderr = bytearray()

    def write(self, data: bytes, is_error: bool) -> None:
        if is_error:
            self.stderr.extend(data)
        else:
            self.stdout.extend(data)


def pump(read: Callable[[int], bytes], sink: OutputSink, is_error: bool) -> None:
    """Copy raw chunks from a blocking read callable into a sink until EOF

    Args:
        read: Callable returning up to n bytes, or b"" at end of stream
        sink: Destination sink
        is_error: True when reading stderr
    """
    while True:
        try:
            chunk = read(READ_CHUNK_SIZE)
        except (OSError, ValueError, EOFError) as e:
            logger.debug(f"Pipe read error (stderr={is_error}): {e}")
            break
        if not chunk:
            break
        sink.write(chunk, is_error)
    sink.finish(is_error)
