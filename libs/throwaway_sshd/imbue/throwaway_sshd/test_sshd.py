"""End-to-end tests against the real sshd. Skipped when openssh-server is not installed."""

import subprocess
import sys
import textwrap
from pathlib import Path

import paramiko
import pytest

from imbue.throwaway_sshd.config import SshdConfig
from imbue.throwaway_sshd.sshd import Sshd
from imbue.throwaway_sshd.testing import open_ssh_client
from imbue.throwaway_sshd.testing import require_sshd
from imbue.throwaway_sshd.testing import run_remote_command
from imbue.throwaway_sshd.testing import wait_until_port_closed

# Root logins are refused by default, and container suites often run as root.
_TEST_SSHD_OPTIONS = ("PermitRootLogin=yes", "PasswordAuthentication=no")


@pytest.fixture
def real_sshd_config() -> SshdConfig:
    return SshdConfig(sshd_path=require_sshd(), extra_options=_TEST_SSHD_OPTIONS, startup_timeout_seconds=20.0)


@pytest.mark.integration
@pytest.mark.timeout(60)
def test_client_logs_in_runs_a_command_and_is_refused_after_stop(tmp_path: Path, real_sshd_config: SshdConfig) -> None:
    sshd = Sshd(tmp_path, config=real_sshd_config)
    try:
        sshd.start()
        client = open_ssh_client(sshd.host(), sshd.port(), sshd.login(), sshd.key())
        try:
            exit_status, output = run_remote_command(client, "echo connected && true")
        finally:
            client.close()
        assert exit_status == 0
        assert output.strip() == "connected"
        assert wait_until_port_closed(sshd.port(), timeout=0.5) is False
    finally:
        sshd.stop()

    assert wait_until_port_closed(sshd.port(), timeout=10.0)
    with pytest.raises((paramiko.SSHException, OSError)):
        open_ssh_client(sshd.host(), sshd.port(), sshd.login(), sshd.key(), timeout=5.0)


@pytest.mark.integration
@pytest.mark.timeout(60)
def test_connection_info_is_enough_to_log_in(tmp_path: Path, real_sshd_config: SshdConfig) -> None:
    with Sshd(tmp_path, config=real_sshd_config).start() as sshd:
        info = sshd.connection_info()
        client = open_ssh_client(info.host, info.port, info.login, info.private_key)
        try:
            exit_status, output = run_remote_command(client, "id -n -u")
        finally:
            client.close()

    assert exit_status == 0
    assert output.strip() == info.login


@pytest.mark.integration
@pytest.mark.timeout(60)
def test_sshd_is_stopped_when_the_owning_interpreter_exits(tmp_path: Path, real_sshd_config: SshdConfig) -> None:
    script = textwrap.dedent(
        f"""
        from pathlib import Path
        from imbue.throwaway_sshd.config import SshdConfig
        from imbue.throwaway_sshd.sshd import Sshd

        config = SshdConfig(
            sshd_path=Path({str(real_sshd_config.sshd_path)!r}),
            extra_options={real_sshd_config.extra_options!r},
            startup_timeout_seconds=20.0,
        )
        sshd = Sshd(Path({str(tmp_path)!r}), config=config)
        sshd.start()
        print(sshd.port(), flush=True)
        """
    )

    result = subprocess.run([sys.executable, "-c", script], capture_output=True, text=True, timeout=45)

    assert result.returncode == 0, result.stderr
    assert wait_until_port_closed(int(result.stdout.strip()), timeout=10.0)
