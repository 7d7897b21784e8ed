import threading
from typing import Any
from typing import Callable

from loguru import logger


class ObservableThread(threading.Thread):
    """Daemon thread that records the exception its target raised instead of losing it.

    Exceptions listed in `silenced_exceptions` are recorded without being logged.
    """

    def __init__(
        self,
        target: Callable[..., Any],
        args: tuple = (),
        kwargs: dict | None = None,
        name: str | None = None,
        daemon: bool = True,
        silenced_exceptions: tuple[type[BaseException], ...] = (),
    ) -> None:
        super().__init__(name=name, daemon=daemon)
        self._target = target
        self._target_name = getattr(target, "__name__", None)
        self._args = args
        self._kwargs = kwargs or {}
        self._exception: BaseException | None = None
        self._silenced_exceptions = silenced_exceptions

    @property
    def target_name(self) -> str | None:
        return self._target_name

    @property
    def exception(self) -> BaseException | None:
        return self._exception

    def run(self) -> None:
        try:
            super().run()
        except BaseException as e:
            self._exception = e
            if isinstance(e, self._silenced_exceptions):
                return
            logger.opt(exception=e).error(
                "Error in thread '{}' with target '{}'",
                self.name,
                self.target_name,
            )

    def join(self, timeout: float | None = None) -> None:
        """Wait for the thread and re-raise whatever its target raised."""
        super().join(timeout)
        self.maybe_raise()

    def maybe_raise(self) -> None:
        if self._exception is not None:
            raise self._exception
