"""Root conftest: shared markers and session logging for every suite in the repository."""

from imbue.throwaway_sshd.conftest_hooks import register_conftest_hooks

register_conftest_hooks(globals())
