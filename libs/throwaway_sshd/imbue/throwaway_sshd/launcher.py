import shlex
import subprocess
from pathlib import Path
from typing import Sequence

from loguru import logger

from imbue.throwaway_sshd.data_types import StagedCredentials
from imbue.throwaway_sshd.errors import SshdSpawnError
from imbue.throwaway_sshd.primitives import Port


def build_sshd_command(
    sshd_path: Path,
    credentials: StagedCredentials,
    port: Port,
    extra_options: Sequence[str] = (),
) -> tuple[str, ...]:
    """Build the sshd command line.

    -D keeps sshd in the foreground so the spawned process is the daemon itself, and -e sends
    its log to stderr, where the drain thread picks it up. StrictModes and PAM are disabled
    because they reject throwaway keys living in a temporary directory.
    """
    command = [
        str(sshd_path),
        "-p",
        str(port),
        "-h",
        str(credentials.host_key_path),
        "-D",
        "-e",
        "-o",
        f"PidFile={credentials.pid_file_path}",
        "-o",
        "UsePAM=no",
        "-o",
        f"AuthorizedKeysFile={credentials.authorized_keys_path}",
        "-o",
        "StrictModes=no",
    ]
    for option in extra_options:
        command.extend(["-o", option])
    return tuple(command)


def spawn_sshd(command: Sequence[str], cwd: Path) -> subprocess.Popen[bytes]:
    """Start sshd without waiting for it to initialize.

    stdout and stderr share one unbuffered pipe which must be drained, or the daemon
    eventually blocks on a full pipe.
    """
    command_tuple = tuple(command)
    if not Path(command_tuple[0]).is_absolute():
        raise SshdSpawnError(command_tuple, "sshd refuses to re-exec itself unless started with an absolute path")
    try:
        process = subprocess.Popen(
            command_tuple,
            cwd=cwd,
            bufsize=0,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
    except (OSError, ValueError) as e:
        raise SshdSpawnError(command_tuple, str(e)) from e
    logger.info("Started sshd (PID {}): {}", process.pid, " ".join(shlex.quote(arg) for arg in command_tuple))
    return process
