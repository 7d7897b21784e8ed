import os
import shlex
import subprocess
import time
from io import BytesIO
from pathlib import Path
from typing import Callable
from typing import Final
from typing import IO
from typing import Mapping
from typing import Self
from typing import Sequence

from loguru import logger

from imbue.throwaway_sshd.data_types import FrozenModel
from imbue.throwaway_sshd.errors import ProcessError
from imbue.throwaway_sshd.errors import ProcessSetupError
from imbue.throwaway_sshd.errors import ProcessTimeoutError
from imbue.throwaway_sshd.event_utils import ReadOnlyEvent

_READ_SIZE: Final[int] = 2**20

DEFAULT_POLL_SECONDS: Final[float] = 0.01


class FinishedProcess(FrozenModel):
    """Represents a completed process with its output and exit status."""

    returncode: int | None = None
    stdout: str
    stderr: str
    command: tuple[str, ...]
    is_timed_out: bool = False
    is_output_already_logged: bool

    def check(self) -> Self:
        if self.is_timed_out:
            raise ProcessTimeoutError(
                command=self.command,
                stdout=self.stdout,
                stderr=self.stderr,
                is_output_already_logged=self.is_output_already_logged,
            )
        if self.returncode != 0:
            raise ProcessError(
                command=self.command,
                returncode=self.returncode,
                stdout=self.stdout,
                stderr=self.stderr,
                is_output_already_logged=self.is_output_already_logged,
            )
        return self


class PartialOutputContainer:
    """Accumulates raw output and reassembles complete lines from arbitrary read chunks."""

    def __init__(
        self,
        on_complete_line: Callable[[str], None] | None = None,
    ) -> None:
        self.buffer: BytesIO = BytesIO()
        self.in_progress_line: bytearray = bytearray()
        self.on_complete_line = on_complete_line

    def write(self, output: bytes) -> None:
        self.buffer.write(output)
        on_complete_line = self.on_complete_line
        if on_complete_line is None:
            return

        for line in output.splitlines(keepends=True):
            self.in_progress_line.extend(line)
            if line.endswith((b"\n", b"\r")):
                on_complete_line(self.in_progress_line.decode("utf-8", errors="replace"))
                self.in_progress_line.clear()

    def flush_incomplete_line(self) -> None:
        """Hand over a trailing line that never got its newline."""
        if self.in_progress_line and self.on_complete_line is not None:
            self.on_complete_line(self.in_progress_line.decode("utf-8", errors="replace"))
        self.in_progress_line.clear()

    def get_complete_output(self) -> bytes:
        return self.buffer.getvalue()


class OutputGatherer:
    """Reads whatever is currently available from a set of non-blocking pipes."""

    def __init__(self, streams: Sequence[tuple[IO[bytes], PartialOutputContainer]]) -> None:
        self._streams = tuple(streams)
        self._is_closed = [False] * len(self._streams)

    @classmethod
    def build(cls, streams: Sequence[tuple[IO[bytes] | None, PartialOutputContainer]]) -> Self:
        checked_streams = []
        for stream, container in streams:
            assert stream is not None, "Process must be started with piped output"
            os.set_blocking(stream.fileno(), False)
            checked_streams.append((stream, container))
        return cls(checked_streams)

    @property
    def is_end_of_stream(self) -> bool:
        return all(self._is_closed)

    def gather_output(self) -> bool:
        """Drain every pipe of what is readable right now.

        Returns True once every pipe has reached end-of-stream.
        """
        for index, (stream, container) in enumerate(self._streams):
            if self._is_closed[index]:
                continue
            while True:
                try:
                    chunk = stream.read(_READ_SIZE)
                except BlockingIOError:
                    chunk = None
                if chunk is None:
                    break
                if chunk == b"":
                    self._is_closed[index] = True
                    break
                container.write(chunk)
                if len(chunk) < _READ_SIZE:
                    break
        return self.is_end_of_stream

    def flush_incomplete_lines(self) -> None:
        for _, container in self._streams:
            container.flush_incomplete_line()


def _shutdown_popen(process: subprocess.Popen[bytes], shutdown_timeout_sec: float) -> int | None:
    logger.debug("Aborting command (via sigterm to {})...", process.pid)
    process.terminate()
    try:
        process.wait(timeout=shutdown_timeout_sec)
        return process.returncode
    except subprocess.TimeoutExpired:
        logger.warning("Process didn't die within {} seconds of SIGTERM", shutdown_timeout_sec)
        process.kill()
        try:
            process.wait(timeout=2)
            return process.returncode
        except subprocess.TimeoutExpired:
            logger.error("Process didn't die after kill()")
            return None


def _is_timeout(timeout_time: float | None) -> bool:
    if timeout_time is None:
        return False
    return time.monotonic() > timeout_time


class ProcessRunner:
    """Runs helper commands and drains long-running processes, logging every output line.

    This is the single place where the package touches child-process pipes: `chmod`, `id` and
    `hostname` go through `run`/`stdout`, and the sshd output stream goes through `drain`.
    """

    def __init__(
        self,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        poll_seconds: float = DEFAULT_POLL_SECONDS,
        shutdown_timeout_seconds: float = 5.0,
    ) -> None:
        self._cwd = cwd
        self._env = env
        self._poll_seconds = poll_seconds
        self._shutdown_timeout_seconds = shutdown_timeout_seconds

    def run(
        self,
        command: Sequence[str],
        timeout: float | None = None,
        is_checked: bool = True,
    ) -> FinishedProcess:
        """Run a command to completion and return its output."""
        command_tuple = tuple(command)
        command_as_string = " ".join(shlex.quote(arg) for arg in command_tuple)
        logger.debug("Running command: {}", command_as_string)
        try:
            process = subprocess.Popen(
                command_tuple,
                cwd=self._cwd,
                bufsize=0,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self._env,
            )
        except (OSError, ValueError) as e:
            raise ProcessSetupError(
                command=command_tuple,
                stdout="",
                stderr=str(e),
                is_output_already_logged=False,
            ) from e

        program = Path(command_tuple[0]).name
        stdout_container = PartialOutputContainer(
            on_complete_line=lambda line: logger.debug("{} >> {}", program, line.rstrip())
        )
        stderr_container = PartialOutputContainer(
            on_complete_line=lambda line: logger.debug("{} !> {}", program, line.rstrip())
        )
        gatherer = OutputGatherer.build([(process.stdout, stdout_container), (process.stderr, stderr_container)])

        timeout_time = time.monotonic() + timeout if timeout is not None else None
        is_timed_out = False
        while True:
            exit_code = process.poll()
            gatherer.gather_output()
            if exit_code is not None:
                break
            if _is_timeout(timeout_time):
                is_timed_out = True
                exit_code = _shutdown_popen(process, self._shutdown_timeout_seconds)
                break
            time.sleep(self._poll_seconds)

        gatherer.gather_output()
        gatherer.flush_incomplete_lines()
        for stream in (process.stdout, process.stderr):
            if stream is not None:
                stream.close()

        result = FinishedProcess(
            returncode=exit_code,
            stdout=stdout_container.get_complete_output().decode("utf-8", errors="replace"),
            stderr=stderr_container.get_complete_output().decode("utf-8", errors="replace"),
            command=command_tuple,
            is_timed_out=is_timed_out,
            is_output_already_logged=True,
        )
        if is_checked:
            result.check()
        return result

    def stdout(self, command: Sequence[str], timeout: float | None = None) -> str:
        """Run a command and return its standard output, raising ProcessError on failure."""
        return self.run(command, timeout=timeout, is_checked=True).stdout

    def drain(
        self,
        process: subprocess.Popen[bytes],
        on_line: Callable[[str], None] | None = None,
        shutdown_event: ReadOnlyEvent | None = None,
        on_shutdown: Callable[[], None] | None = None,
    ) -> int | None:
        """Consume the output of an already running process until it exits or its pipe closes.

        When `shutdown_event` fires, `on_shutdown` is called once and draining continues until the
        process is gone, so that its last words still reach `on_line`.
        """
        container = PartialOutputContainer(on_complete_line=on_line)
        gatherer = OutputGatherer.build([(process.stdout, container)])
        is_shutdown_handled = False
        while True:
            exit_code = process.poll()
            is_end_of_stream = gatherer.gather_output()
            if exit_code is not None or is_end_of_stream:
                break
            if shutdown_event is not None and not is_shutdown_handled:
                if shutdown_event.wait(self._poll_seconds):
                    is_shutdown_handled = True
                    if on_shutdown is not None:
                        on_shutdown()
            else:
                time.sleep(self._poll_seconds)

        gatherer.gather_output()
        gatherer.flush_incomplete_lines()
        if process.stdout is not None:
            process.stdout.close()
        return process.poll()
