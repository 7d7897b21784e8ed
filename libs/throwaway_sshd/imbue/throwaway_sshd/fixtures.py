"""pytest fixtures for suites that need an SSH server to talk to.

Installed as a pytest plugin, so any suite with this package installed can request them:

    def test_upload(running_throwaway_sshd: Sshd) -> None:
        info = running_throwaway_sshd.connection_info()
        ...

Override `throwaway_sshd_config` in a conftest.py to change how the daemon is launched.
"""

from pathlib import Path
from typing import Generator

import pytest

from imbue.throwaway_sshd.config import SshdConfig
from imbue.throwaway_sshd.config import load_config_from_env
from imbue.throwaway_sshd.sshd import Sshd

_TEARDOWN_WAIT_SECONDS = 5.0


@pytest.fixture
def throwaway_sshd_config() -> SshdConfig:
    return load_config_from_env()


@pytest.fixture
def throwaway_sshd(tmp_path: Path, throwaway_sshd_config: SshdConfig) -> Generator[Sshd, None, None]:
    """A spawned but not yet started sshd in a fresh directory, stopped at teardown.

    Skips the test when the configured sshd executable does not exist.
    """
    if not throwaway_sshd_config.sshd_path.exists():
        pytest.skip(f"sshd not found at {throwaway_sshd_config.sshd_path} - install openssh-server")

    home = tmp_path / "throwaway_sshd"
    home.mkdir()
    sshd = Sshd(home, config=throwaway_sshd_config)
    try:
        yield sshd
    finally:
        sshd.stop()
        sshd.wait(timeout=_TEARDOWN_WAIT_SECONDS)


@pytest.fixture
def running_throwaway_sshd(throwaway_sshd: Sshd) -> Generator[Sshd, None, None]:
    """A started sshd that accepts connections."""
    with throwaway_sshd.start() as sshd:
        yield sshd
