"""Shared helpers for poll_loop and ci_wait.

Both loop engines sleep between samples in small ticks so a stop request is
honoured within a second instead of after a full poll interval.
"""

import time
from typing import Callable

from prw_core.paths import configure_logger

_log = configure_logger("prw.loop_shared")

# How often to check stop requests while sleeping between samples (seconds)
TICK_INTERVAL = 1.0

StopCheck = Callable[[], bool]


def should_stop(state, stop_check: StopCheck | None = None) -> bool:
    """True if the state's stop flag is set or *stop_check* says so."""
    if getattr(state, "stop_requested", False):
        return True
    return bool(stop_check and stop_check())


def sleep_checking_stop(seconds: float, state=None,
                        stop_check: StopCheck | None = None,
                        tick: float = TICK_INTERVAL,
                        sleep: Callable[[float], None] = time.sleep) -> bool:
    """Sleep for *seconds*, checking for a stop request every tick.

    Returns True if the full duration elapsed, False if stopping was
    requested part way through.
    """
    remaining = float(seconds)
    while remaining > 0:
        step = min(tick, remaining)
        sleep(step)
        remaining -= step
        if should_stop(state, stop_check):
            _log.debug("loop_shared: sleep interrupted with %.1fs left", remaining)
            return False
    return True
