from pathlib import Path

import pytest
from pydantic import ValidationError

from imbue.throwaway_sshd import config as config_module
from imbue.throwaway_sshd.config import FALLBACK_SSHD_PATH
from imbue.throwaway_sshd.config import SshdConfig
from imbue.throwaway_sshd.config import find_sshd_executable
from imbue.throwaway_sshd.config import load_config_from_env


def test_defaults_wait_until_ready_and_bind_all_interfaces() -> None:
    config = SshdConfig(sshd_path=Path("/usr/sbin/sshd"))
    assert config.bind_host == ""
    assert config.extra_options == ()
    assert config.is_waiting_until_ready is True
    assert config.startup_timeout_seconds == 10.0


def test_config_is_frozen() -> None:
    config = SshdConfig(sshd_path=Path("/usr/sbin/sshd"))
    with pytest.raises(ValidationError):
        config.bind_host = "127.0.0.1"  # type: ignore[misc]


def test_config_rejects_unknown_fields() -> None:
    with pytest.raises(ValidationError):
        SshdConfig(sshd_path=Path("/usr/sbin/sshd"), port=22)  # type: ignore[call-arg]


def test_config_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValidationError):
        SshdConfig(sshd_path=Path("/usr/sbin/sshd"), startup_timeout_seconds=0)


def test_find_sshd_executable_falls_back_when_not_on_path(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config_module.shutil, "which", lambda name: None)
    assert find_sshd_executable() == FALLBACK_SSHD_PATH


def test_find_sshd_executable_prefers_path(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config_module.shutil, "which", lambda name: "/opt/openssh/sbin/sshd")
    assert find_sshd_executable() == Path("/opt/openssh/sbin/sshd")


def test_load_config_from_env_without_overrides_returns_base() -> None:
    base = SshdConfig(sshd_path=Path("/usr/sbin/sshd"))
    assert load_config_from_env({}, base=base) is base


def test_load_config_from_env_applies_every_override() -> None:
    base = SshdConfig(sshd_path=Path("/usr/sbin/sshd"))
    environ = {
        "THROWAWAY_SSHD_PATH": "/opt/sshd",
        "THROWAWAY_SSHD_BIND_HOST": " 127.0.0.1 ",
        "THROWAWAY_SSHD_EXTRA_OPTIONS": "LogLevel=DEBUG3, PasswordAuthentication=no,",
        "THROWAWAY_SSHD_WAIT_UNTIL_READY": "no",
        "THROWAWAY_SSHD_STARTUP_TIMEOUT": "2.5",
        "UNRELATED": "ignored",
    }

    config = load_config_from_env(environ, base=base)

    assert config.sshd_path == Path("/opt/sshd")
    assert config.bind_host == "127.0.0.1"
    assert config.extra_options == ("LogLevel=DEBUG3", "PasswordAuthentication=no")
    assert config.is_waiting_until_ready is False
    assert config.startup_timeout_seconds == 2.5


def test_load_config_from_env_rejects_bad_boolean() -> None:
    with pytest.raises(ValueError, match="THROWAWAY_SSHD_WAIT_UNTIL_READY"):
        load_config_from_env({"THROWAWAY_SSHD_WAIT_UNTIL_READY": "maybe"})


def test_load_config_from_env_rejects_bad_timeout() -> None:
    with pytest.raises(ValidationError):
        load_config_from_env({"THROWAWAY_SSHD_STARTUP_TIMEOUT": "soon"})
