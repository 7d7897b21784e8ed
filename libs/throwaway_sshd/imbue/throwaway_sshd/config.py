import os
import shutil
from pathlib import Path
from typing import Any
from typing import Final
from typing import Mapping

from pydantic import Field

from imbue.throwaway_sshd.data_types import FrozenModel

ENV_PREFIX: Final[str] = "THROWAWAY_SSHD_"

FALLBACK_SSHD_PATH: Final[Path] = Path("/usr/sbin/sshd")

_TRUE_STRINGS: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSE_STRINGS: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})


def find_sshd_executable() -> Path:
    """Locate sshd on PATH, falling back to the usual Linux location."""
    found = shutil.which("sshd")
    if found is not None:
        return Path(found)
    return FALLBACK_SSHD_PATH


class SshdConfig(FrozenModel):
    """How a throwaway sshd is launched and supervised."""

    sshd_path: Path = Field(
        default_factory=find_sshd_executable,
        description="sshd executable to launch",
    )
    bind_host: str = Field(
        default="",
        description="Address used when reserving the port (empty means all interfaces, like sshd itself)",
    )
    extra_options: tuple[str, ...] = Field(
        default=(),
        description="Additional Key=Value options passed to sshd with -o",
    )
    is_waiting_until_ready: bool = Field(
        default=True,
        description="Make start() block until the port accepts connections",
    )
    startup_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="How long start() waits for the port to accept connections",
    )
    poll_interval_seconds: float = Field(
        default=0.1,
        gt=0,
        description="Interval between readiness probes",
    )
    output_buffer_lines: int = Field(
        default=200,
        gt=0,
        description="Number of recent daemon output lines kept for diagnostics",
    )


def _parse_bool(name: str, value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in _TRUE_STRINGS:
        return True
    if normalized in _FALSE_STRINGS:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def load_config_from_env(
    environ: Mapping[str, str] | None = None,
    base: SshdConfig | None = None,
) -> SshdConfig:
    """Apply THROWAWAY_SSHD_* environment variable overrides on top of `base`.

    Recognized variables:
        THROWAWAY_SSHD_PATH: sshd executable
        THROWAWAY_SSHD_BIND_HOST: address used for port reservation
        THROWAWAY_SSHD_EXTRA_OPTIONS: comma separated Key=Value sshd options
        THROWAWAY_SSHD_WAIT_UNTIL_READY: whether start() waits for the port
        THROWAWAY_SSHD_STARTUP_TIMEOUT: readiness timeout in seconds
    """
    environ = os.environ if environ is None else environ
    base = base or SshdConfig()
    updates: dict[str, Any] = {}

    sshd_path = environ.get(f"{ENV_PREFIX}PATH")
    if sshd_path:
        updates["sshd_path"] = Path(sshd_path)

    bind_host = environ.get(f"{ENV_PREFIX}BIND_HOST")
    if bind_host is not None:
        updates["bind_host"] = bind_host.strip()

    extra_options = environ.get(f"{ENV_PREFIX}EXTRA_OPTIONS")
    if extra_options:
        updates["extra_options"] = tuple(option.strip() for option in extra_options.split(",") if option.strip())

    wait_until_ready = environ.get(f"{ENV_PREFIX}WAIT_UNTIL_READY")
    if wait_until_ready:
        updates["is_waiting_until_ready"] = _parse_bool(f"{ENV_PREFIX}WAIT_UNTIL_READY", wait_until_ready)

    startup_timeout = environ.get(f"{ENV_PREFIX}STARTUP_TIMEOUT")
    if startup_timeout:
        updates["startup_timeout_seconds"] = startup_timeout

    if not updates:
        return base
    # Re-validate instead of model_copy so that string values get coerced and checked.
    return SshdConfig.model_validate({**base.model_dump(), **updates})
