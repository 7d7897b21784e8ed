import stat
from pathlib import Path
from typing import Final

from loguru import logger

from imbue.throwaway_sshd.bundled_keys import read_bundled_bytes
from imbue.throwaway_sshd.data_types import StagedCredentials
from imbue.throwaway_sshd.errors import BundledKeyError
from imbue.throwaway_sshd.errors import CredentialStagingError
from imbue.throwaway_sshd.errors import ProcessError
from imbue.throwaway_sshd.primitives import BundledKey
from imbue.throwaway_sshd.subprocess_utils import ProcessRunner

HOST_KEY_FILENAME: Final[str] = "host_rsa_key"
AUTHORIZED_KEYS_FILENAME: Final[str] = "authorized"
PID_FILENAME: Final[str] = "pid"

# Any of these bits makes sshd refuse the key files.
_GROUP_OR_OTHER_BITS: Final[int] = stat.S_IRWXG | stat.S_IRWXO


def _copy_bundled_key(key: BundledKey, destination: Path) -> None:
    try:
        destination.write_bytes(read_bundled_bytes(key))
    except BundledKeyError as e:
        raise CredentialStagingError(f"Cannot stage {destination.name}: {e}") from e
    except OSError as e:
        raise CredentialStagingError(f"Cannot write {destination}: {e}") from e


def _raise_if_too_permissive(path: Path) -> None:
    try:
        mode = path.stat().st_mode
    except OSError as e:
        raise CredentialStagingError(f"Cannot inspect {path}: {e}") from e
    if mode & _GROUP_OR_OTHER_BITS:
        raise CredentialStagingError(f"{path} is still accessible by group or others (mode {stat.filemode(mode)})")


def stage_credentials(directory: Path, runner: ProcessRunner) -> StagedCredentials:
    """Write the bundled host key and authorized keys into `directory`, readable by the owner only.

    Both files exist with mode 600 when this returns; sshd refuses to start otherwise.
    """
    if not directory.is_dir():
        raise CredentialStagingError(f"Working directory does not exist: {directory}")
    directory = directory.absolute()
    credentials = StagedCredentials(
        directory=directory,
        host_key_path=directory / HOST_KEY_FILENAME,
        authorized_keys_path=directory / AUTHORIZED_KEYS_FILENAME,
        pid_file_path=directory / PID_FILENAME,
    )

    _copy_bundled_key(BundledKey.HOST_PRIVATE_KEY, credentials.host_key_path)
    _copy_bundled_key(BundledKey.AUTHORIZED_KEYS, credentials.authorized_keys_path)

    try:
        runner.stdout(
            ["chmod", "600", str(credentials.authorized_keys_path), str(credentials.host_key_path)],
        )
    except ProcessError as e:
        raise CredentialStagingError(f"Cannot restrict permissions of staged keys: {e}") from e

    for path in (credentials.host_key_path, credentials.authorized_keys_path):
        _raise_if_too_permissive(path)

    logger.debug("Staged sshd credentials in {}", directory)
    return credentials
