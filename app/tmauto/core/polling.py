"""Time-bounded polling.

All waiting in tmauto is a loop of "check, sleep, check again" with a hard
ceiling. The sleep function is injectable so callers and tests can run the
same loop without blocking.
"""

import time
from collections.abc import Callable

Sleeper = Callable[[float], None]
Clock = Callable[[], float]


def poll_until(
    condition: Callable[[], bool],
    *,
    interval: float,
    ceiling: float,
    sleep: Sleeper = time.sleep,
) -> bool:
    """Poll ``condition`` until it holds or ``ceiling`` seconds have been waited.

    The condition is checked before the first sleep and after every sleep.
    Waited time is accumulated from the intervals slept, not from the wall
    clock, so the number of checks is deterministic.

    Args:
        condition: Callable returning True when waiting should stop.
        interval: Seconds to sleep between checks.
        ceiling: Maximum total seconds to sleep.
        sleep: Sleep function.

    Returns:
        True if the condition held, False if the ceiling was reached first.
    """
    waited = 0.0
    while True:
        if condition():
            return True
        if waited >= ceiling:
            return False
        sleep(interval)
        waited += interval
