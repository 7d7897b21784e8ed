import importlib.resources
from typing import Final
from typing import Mapping

from imbue.throwaway_sshd.errors import BundledKeyError
from imbue.throwaway_sshd.primitives import BundledKey

# File names inside the package's resources directory.
BUNDLED_KEY_FILENAMES: Final[Mapping[BundledKey, str]] = {
    BundledKey.HOST_PRIVATE_KEY: "ssh_host_rsa_key",
    BundledKey.AUTHORIZED_KEYS: "authorized_keys",
    BundledKey.CLIENT_PRIVATE_KEY: "id_rsa",
}


def read_bundled_bytes(key: BundledKey) -> bytes:
    """Load one of the fixed key files shipped with the package."""
    filename = BUNDLED_KEY_FILENAMES[key]
    resource = importlib.resources.files("imbue.throwaway_sshd") / "resources" / filename
    try:
        return resource.read_bytes()
    except OSError as e:
        raise BundledKeyError(filename) from e


def read_bundled_text(key: BundledKey) -> str:
    try:
        return read_bundled_bytes(key).decode("utf-8")
    except UnicodeDecodeError as e:
        raise BundledKeyError(BUNDLED_KEY_FILENAMES[key]) from e
