import shutil
import sys
from io import StringIO
from pathlib import Path
from typing import Final

import paramiko
import pytest

from imbue.throwaway_sshd.polling import poll_until
from imbue.throwaway_sshd.ports import is_port_open

# Stands in for sshd in unit tests: listens on the -p port, greets every connection with an SSH
# banner and logs to stderr like `sshd -D -e` does.
_FAKE_SSHD_SOURCE: Final[str] = """\
import signal
import socket
import sys

port = int(sys.argv[sys.argv.index("-p") + 1])


def _terminate(signum, frame):
    print(f"Received signal {signum}; terminating.", file=sys.stderr, flush=True)
    sys.exit(255)


signal.signal(signal.SIGTERM, _terminate)
server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
server.bind(("", port))
server.listen(16)
print(f"Server listening on 0.0.0.0 port {port}.", file=sys.stderr, flush=True)
while True:
    connection, address = server.accept()
    print(f"Connection from {address[0]} port {address[1]}", file=sys.stderr, flush=True)
    try:
        connection.sendall(b"SSH-2.0-FakeSSH\\r\\n")
    except OSError:
        pass
    connection.close()
"""


def write_fake_sshd(directory: Path) -> Path:
    """Write an executable that behaves enough like `sshd -D -e` for lifecycle tests."""
    directory.mkdir(parents=True, exist_ok=True)
    source_path = directory / "fake_sshd.py"
    source_path.write_text(_FAKE_SSHD_SOURCE)
    wrapper_path = directory / "fake-sshd"
    wrapper_path.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{source_path}" "$@"\n')
    wrapper_path.chmod(0o755)
    return wrapper_path.absolute()


def write_failing_sshd(directory: Path, message: str, exit_code: int = 255) -> Path:
    """Write an executable that prints `message` to stderr and exits, like sshd on a bad config."""
    directory.mkdir(parents=True, exist_ok=True)
    wrapper_path = directory / "failing-sshd"
    wrapper_path.write_text(f"#!/bin/sh\necho '{message}' >&2\nexit {exit_code}\n")
    wrapper_path.chmod(0o755)
    return wrapper_path.absolute()


def require_sshd() -> Path:
    """Return the real sshd executable, skipping the current test when it is not installed."""
    sshd_path = shutil.which("sshd") or shutil.which("sshd", path="/usr/sbin:/usr/local/sbin")
    if sshd_path is None:
        pytest.skip("sshd not found - install openssh-server")
    # Assert needed for type narrowing since pytest.skip is typed as NoReturn
    assert sshd_path is not None
    return Path(sshd_path)


def wait_until_port_closed(port: int, timeout: float = 10.0, host: str = "127.0.0.1") -> bool:
    return poll_until(lambda: not is_port_open(port, host=host, timeout=0.5), timeout=timeout, poll_interval=0.1)


def open_ssh_client(host: str, port: int, login: str, private_key: str, timeout: float = 10.0) -> paramiko.SSHClient:
    """Log into an sshd with a PEM private key given as text."""
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    client.connect(
        hostname=host,
        port=int(port),
        username=login,
        pkey=paramiko.RSAKey.from_private_key(StringIO(private_key)),
        timeout=timeout,
        allow_agent=False,
        look_for_keys=False,
    )
    return client


def run_remote_command(client: paramiko.SSHClient, command: str, timeout: float = 10.0) -> tuple[int, str]:
    """Run a command over SSH and return (exit status, stdout)."""
    _, stdout, _ = client.exec_command(command, timeout=timeout)
    output = stdout.read().decode("utf-8", errors="replace")
    return stdout.channel.recv_exit_status(), output
