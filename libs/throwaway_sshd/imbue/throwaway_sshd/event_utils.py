import time
from typing import Final
from typing import Protocol
from typing import Sequence

_COMPOUND_WAIT_POLL_SECONDS: Final[float] = 0.01


class ReadOnlyEvent(Protocol):
    """The read side of threading.Event."""

    def is_set(self) -> bool: ...

    def wait(self, timeout: float | None = None) -> bool: ...


class CompoundEvent:
    """An event that counts as set as soon as any of its children is set.

    Used to combine an instance's own stop event with a cancellation event owned by the caller,
    so that one caller event can stop several daemons at once.
    """

    def __init__(self, events: Sequence[ReadOnlyEvent]) -> None:
        self._events = tuple(events)

    def is_set(self) -> bool:
        return any(event.is_set() for event in self._events)

    def wait(self, timeout: float | None = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.is_set():
            if deadline is None:
                poll_seconds = _COMPOUND_WAIT_POLL_SECONDS
            else:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                poll_seconds = min(_COMPOUND_WAIT_POLL_SECONDS, remaining)
            # Waiting on the first child keeps the common single-event case responsive.
            self._events[0].wait(poll_seconds)
        return True
