import time
from collections.abc import Callable


def poll_until(
    condition: Callable[[], bool],
    timeout: float = 5.0,
    poll_interval: float = 0.1,
    abort_condition: Callable[[], bool] | None = None,
) -> bool:
    """Poll until a condition becomes true, the timeout expires or `abort_condition` holds.

    Returns True if the condition was met, False otherwise.
    """
    start_time = time.monotonic()
    while True:
        if condition():
            return True
        if abort_condition is not None and abort_condition():
            return False
        if time.monotonic() - start_time >= timeout:
            return False
        time.sleep(poll_interval)
