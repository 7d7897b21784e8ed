"""Shared pytest conftest hooks.

Usage in a conftest.py:
    from imbue.throwaway_sshd.conftest_hooks import register_conftest_hooks
    register_conftest_hooks(globals())

The module-level guard makes repeated registration (root and nested conftest.py files) a no-op.

Environment variables:
- THROWAWAY_SSHD_LOG_LEVEL: level of the stderr log sink installed at session start (default: DEBUG).
"""

import os
from typing import Final

import pytest

from imbue.throwaway_sshd.logging import setup_logging

_SHARED_MARKERS: Final[list[str]] = [
    "integration: marks tests that launch the real sshd. Skipped when openssh-server is not installed",
    "acceptance: marks tests as requiring network access or other external services",
]

_LOG_LEVEL_ENV_VAR: Final[str] = "THROWAWAY_SSHD_LOG_LEVEL"

_registered: bool = False


@pytest.hookimpl(tryfirst=True)
def _pytest_configure(config: pytest.Config) -> None:
    for marker in _SHARED_MARKERS:
        config.addinivalue_line("markers", marker)


def _pytest_sessionstart(session: pytest.Session) -> None:
    setup_logging(os.environ.get(_LOG_LEVEL_ENV_VAR, "DEBUG"))


def register_conftest_hooks(namespace: dict) -> None:
    """Register the common conftest hooks into the given namespace (typically globals()).

    The first conftest.py to call this function gets the hooks. Subsequent calls are no-ops.
    """
    global _registered
    if _registered:
        return
    _registered = True

    namespace["pytest_configure"] = _pytest_configure
    namespace["pytest_sessionstart"] = _pytest_sessionstart
