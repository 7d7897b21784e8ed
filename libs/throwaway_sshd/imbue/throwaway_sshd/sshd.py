"""A throwaway sshd for testing SSH clients.

Usage:

    with Sshd(tmp_path).start() as sshd:
        client.connect(sshd.host(), port=sshd.port(), username=sshd.login(), pkey=load(sshd.key()))

Construction stages the bundled keys into the working directory, reserves a port and spawns
sshd. start() supervises it: a thread drains the daemon's output, an interpreter-exit callback
stops it if nobody else does, and the returned lease stops it when its block exits.
"""

import atexit
import os
import subprocess
from collections import deque
from contextlib import AbstractContextManager
from pathlib import Path
from queue import Full
from queue import Queue
from threading import Event
from threading import Lock
from typing import Any

from loguru import logger

from imbue.throwaway_sshd.bundled_keys import read_bundled_text
from imbue.throwaway_sshd.config import SshdConfig
from imbue.throwaway_sshd.config import load_config_from_env
from imbue.throwaway_sshd.data_types import SshdConnectionInfo
from imbue.throwaway_sshd.data_types import StagedCredentials
from imbue.throwaway_sshd.errors import HelperCommandError
from imbue.throwaway_sshd.errors import InvalidSshdStateError
from imbue.throwaway_sshd.errors import ProcessError
from imbue.throwaway_sshd.errors import SshdNotReadyError
from imbue.throwaway_sshd.event_utils import CompoundEvent
from imbue.throwaway_sshd.event_utils import ReadOnlyEvent
from imbue.throwaway_sshd.launcher import build_sshd_command
from imbue.throwaway_sshd.launcher import spawn_sshd
from imbue.throwaway_sshd.logging import log_span
from imbue.throwaway_sshd.polling import poll_until
from imbue.throwaway_sshd.ports import is_port_open
from imbue.throwaway_sshd.ports import reserve_port
from imbue.throwaway_sshd.primitives import BundledKey
from imbue.throwaway_sshd.primitives import Port
from imbue.throwaway_sshd.primitives import SshdState
from imbue.throwaway_sshd.staging import stage_credentials
from imbue.throwaway_sshd.subprocess_utils import ProcessRunner
from imbue.throwaway_sshd.thread_utils import ObservableThread


class SshdLease(AbstractContextManager):
    """Handle returned by Sshd.start(). Closing it stops the daemon."""

    def __init__(self, sshd: "Sshd") -> None:
        self._sshd = sshd

    @property
    def sshd(self) -> "Sshd":
        return self._sshd

    def __enter__(self) -> "Sshd":
        return self._sshd

    def __exit__(self, exc_type: type | None, exc_value: BaseException | None, traceback: Any) -> None:
        self.close()

    def close(self) -> None:
        self._sshd.stop()


class Sshd:
    """A real sshd process bound to an ephemeral port, logging in with the bundled test key.

    The working directory belongs to the caller; the daemon's key files and PID file are
    written into it and left there.
    """

    def __init__(
        self,
        home: Path,
        config: SshdConfig | None = None,
        runner: ProcessRunner | None = None,
        shutdown_event: ReadOnlyEvent | None = None,
        output_queue: Queue[str] | None = None,
    ) -> None:
        """Stage credentials, reserve a port and spawn sshd.

        Any failure propagates as an OSError subclass and leaves no daemon behind. The daemon
        may still be initializing when this returns.

        Setting the optional `shutdown_event` stops the daemon once start() has been called;
        one event can be shared by several instances. Daemon output lines are offered to the
        optional bounded `output_queue` and dropped when it is full.
        """
        self._config = config if config is not None else load_config_from_env()
        self._runner = runner if runner is not None else ProcessRunner()
        self._home = Path(home)
        self._output_queue = output_queue
        self._recent_lines: deque[str] = deque(maxlen=self._config.output_buffer_lines)
        self._output_lock = Lock()
        self._dropped_line_count = 0
        self._lock = Lock()
        self._state = SshdState.CONSTRUCTED
        self._stop_event = Event()
        self._shutdown_event: ReadOnlyEvent = (
            self._stop_event if shutdown_event is None else CompoundEvent([self._stop_event, shutdown_event])
        )
        self._drain_thread: ObservableThread | None = None

        with log_span("Launching throwaway sshd in {}", self._home):
            self._credentials = stage_credentials(self._home, self._runner)
            self._port: Port = reserve_port(self._config.bind_host)
            self._command = build_sshd_command(
                self._config.sshd_path,
                self._credentials,
                self._port,
                self._config.extra_options,
            )
            self._process: subprocess.Popen[bytes] = spawn_sshd(self._command, cwd=self._credentials.directory)

    def __repr__(self) -> str:
        return f"Sshd(home={str(self._home)!r}, port={int(self._port)}, state={self._state.value})"

    @property
    def state(self) -> SshdState:
        return self._state

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def credentials(self) -> StagedCredentials:
        return self._credentials

    @property
    def command(self) -> tuple[str, ...]:
        return self._command

    def home(self) -> Path:
        return self._home

    def port(self) -> int:
        """The daemon's TCP port, as a plain int that socket and SSH client APIs accept."""
        return int(self._port)

    def login(self) -> str:
        """Name of the user the daemon runs as, which is the account to log into."""
        return self._run_helper(["id", "-n", "-u"])

    def host(self) -> str:
        return self._run_helper(["hostname"])

    def key(self) -> str:
        """Private key (PEM text) accepted by the daemon."""
        return read_bundled_text(BundledKey.CLIENT_PRIVATE_KEY)

    def connection_info(self) -> SshdConnectionInfo:
        return SshdConnectionInfo(host=self.host(), port=self.port(), login=self.login(), private_key=self.key())

    def write_private_key(self, path: Path) -> Path:
        """Write the client key to `path` with mode 600, as ssh clients require."""
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as key_file:
            key_file.write(self.key())
        path.chmod(0o600)
        return path

    def _run_helper(self, command: list[str]) -> str:
        try:
            return self._runner.stdout(command).strip()
        except ProcessError as e:
            raise HelperCommandError(f"Helper command `{' '.join(command)}` failed: {e}") from e

    def is_alive(self) -> bool:
        return self._process.poll() is None

    def recent_output(self) -> str:
        """The last lines the daemon wrote, collected by the drain thread."""
        with self._output_lock:
            return "\n".join(self._recent_lines)

    @property
    def dropped_line_count(self) -> int:
        """Output lines that did not fit into the caller's queue."""
        return self._dropped_line_count

    def start(self) -> SshdLease:
        """Supervise the daemon and, unless configured otherwise, wait until it accepts connections.

        Raises SshdNotReadyError (after stopping the daemon) if it exits or stays unreachable
        for `startup_timeout_seconds`.
        """
        with self._lock:
            if self._state != SshdState.CONSTRUCTED:
                raise InvalidSshdStateError(f"Cannot start sshd on port {self._port}: it is {self._state.value}")
            self._state = SshdState.RUNNING
            self._drain_thread = ObservableThread(
                target=self._drain_output,
                name=f"sshd-drain-{self._port}",
            )
            self._drain_thread.start()
            atexit.register(self.stop)
        lease = SshdLease(self)

        if self._config.is_waiting_until_ready:
            try:
                self.wait_until_ready()
            except SshdNotReadyError:
                self.stop()
                raise
        logger.info("Throwaway sshd is running on port {} (PID {})", self._port, self._process.pid)
        return lease

    def wait_until_ready(self, timeout: float | None = None) -> None:
        """Block until the daemon accepts TCP connections on its port."""
        timeout = self._config.startup_timeout_seconds if timeout is None else timeout
        probe_host = self._config.bind_host or "127.0.0.1"
        poll_interval = self._config.poll_interval_seconds
        is_ready = poll_until(
            lambda: is_port_open(self._port, host=probe_host, timeout=poll_interval),
            timeout=timeout,
            poll_interval=poll_interval,
            abort_condition=lambda: not self.is_alive(),
        )
        if is_ready:
            return
        if not self.is_alive():
            self._wait_for_drain(timeout=1.0)
            raise SshdNotReadyError(
                self._port,
                f"sshd exited with code {self._process.returncode}",
                self.recent_output(),
            )
        raise SshdNotReadyError(
            self._port,
            f"port not accepting connections after {timeout} seconds",
            self.recent_output(),
        )

    def stop(self) -> None:
        """Ask the daemon to terminate without waiting for it to exit.

        Safe to call at any time and any number of times, including from the interpreter-exit
        callback; errors are logged and absorbed.
        """
        with self._lock:
            if self._state == SshdState.STOPPED:
                return
            self._state = SshdState.STOPPED
        self._stop_event.set()
        atexit.unregister(self.stop)
        try:
            self._process.terminate()
        except OSError as e:
            logger.warning("Failed to terminate sshd (PID {}): {}", self._process.pid, e)
            return
        logger.info("Stopped throwaway sshd on port {} (PID {})", self._port, self._process.pid)

    def wait(self, timeout: float | None = None) -> int | None:
        """Reap the daemon after stop(). Returns its exit code, or None if it is still running."""
        try:
            return self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def _wait_for_drain(self, timeout: float) -> None:
        thread = self._drain_thread
        if thread is None:
            return
        try:
            thread.join(timeout=timeout)
        except Exception as e:
            # The drain thread has already logged it at error level.
            logger.debug("sshd output drain on port {} failed: {}", self._port, e)

    def _drain_output(self) -> None:
        with logger.contextualize(sshd_port=int(self._port)):
            exit_code = self._runner.drain(
                self._process,
                on_line=self._on_output_line,
                shutdown_event=self._shutdown_event,
                on_shutdown=self.stop,
            )
            logger.debug("sshd output closed (exit code {})", exit_code)

    def _on_output_line(self, line: str) -> None:
        line = line.rstrip("\r\n")
        with self._output_lock:
            self._recent_lines.append(line)
        logger.debug("sshd: {}", line)
        if self._output_queue is not None:
            try:
                self._output_queue.put_nowait(line)
            except Full:
                self._dropped_line_count += 1
