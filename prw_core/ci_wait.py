"""Wait for a PR's CI checks to finish.

Results:
  PASS     -- All checks passed or were skipped (or none are configured).
  FAIL     -- At least one check failed; the payload lists them.
  PENDING  -- Checks still running (only returned with ``no_wait``).
  TIMEOUT  -- Checks did not finish within the budget.
  CANCELLED -- A stop was requested.

A PR with no checks is given a short grace window in case checks are still
being registered, then treated as passing.
"""

import time
from dataclasses import dataclass, field
from typing import Callable

from prw_core.gate import check_summary
from prw_core.gh_ops import MalformedResponseError, PrHandle, TransientFetchError
from prw_core.loop_shared import StopCheck, should_stop, sleep_checking_stop
from prw_core.paths import configure_logger
from prw_core.poll_loop import DEFAULT_MAX_MALFORMED
from prw_core.sampler import StateSampler
from prw_core.snapshot import CHECK_FAIL, Snapshot

_log = configure_logger("prw.ci_wait")

CI_PASS = "PASS"
CI_FAIL = "FAIL"
CI_PENDING = "PENDING"
CI_NO_CHECKS = "NO_CHECKS"
CI_TIMEOUT = "TIMEOUT"
CI_CANCELLED = "CANCELLED"

DEFAULT_INTERVAL = 30
DEFAULT_TIMEOUT = 15 * 60
# Seconds to keep waiting for checks to appear before assuming there are none
NO_CHECKS_GRACE = 120

NO_CHECKS_MESSAGE = "No CI checks configured"


@dataclass
class CiWaitResult:
    status: str
    payload: dict = field(default_factory=dict)
    samples: int = 0
    elapsed: float = 0.0


def classify_checks(snapshot: Snapshot) -> str:
    """Reduce a snapshot's checks to PASS, FAIL, PENDING or NO_CHECKS."""
    if not snapshot.ci_checks:
        return CI_NO_CHECKS
    summary = check_summary(snapshot)
    if summary["failed"]:
        return CI_FAIL
    if summary["pending"]:
        return CI_PENDING
    return CI_PASS


def ci_payload(status: str, snapshot: Snapshot | None, message: str | None = None) -> dict:
    payload: dict = {"status": status.lower()}
    if message:
        payload["message"] = message
    if snapshot is None or not snapshot.ci_checks:
        return payload
    summary = check_summary(snapshot)
    payload["summary"] = {k: summary[k] for k in ("total", "passed", "failed", "pending", "skipped")}
    if status == CI_FAIL:
        payload["failed_checks"] = [
            {"name": c.name, "description": c.description, "url": c.link}
            for c in snapshot.ci_checks if c.bucket == CHECK_FAIL
        ]
    elif status == CI_PASS:
        payload["checks"] = [{"name": c.name, "bucket": c.bucket} for c in snapshot.ci_checks]
    return payload


def wait_for_ci(
    pr: PrHandle,
    sampler: StateSampler,
    timeout: float = DEFAULT_TIMEOUT,
    interval: float = DEFAULT_INTERVAL,
    no_wait: bool = False,
    max_malformed: int = DEFAULT_MAX_MALFORMED,
    on_status: Callable[[str, float], None] | None = None,
    stop_check: StopCheck | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> CiWaitResult:
    """Poll CI checks until they settle or *timeout* seconds pass.

    Args:
        max_malformed: Consecutive malformed responses before giving up.
        on_status: Called with (status, elapsed seconds) after each sample
            that does not end the wait.
    """
    start = clock()
    samples = 0
    snapshot: Snapshot | None = None
    malformed = 0

    def _done(status: str, message: str | None = None) -> CiWaitResult:
        elapsed = clock() - start
        _log.info("ci_wait: %s %s after %d sample(s), %.0fs", pr, status, samples, elapsed)
        payload = ci_payload(status, snapshot, message)
        if status == CI_TIMEOUT:
            payload["elapsed_minutes"] = round(elapsed / 60, 1)
        return CiWaitResult(status=status, payload=payload, samples=samples, elapsed=elapsed)

    while True:
        if should_stop(None, stop_check):
            return _done(CI_CANCELLED)
        elapsed = clock() - start
        if elapsed >= timeout and not (no_wait and samples == 0):
            return _done(CI_TIMEOUT)

        samples += 1
        try:
            snapshot = sampler.sample(pr)
            malformed = 0
        except MalformedResponseError:
            malformed += 1
            if malformed >= max_malformed or no_wait:
                raise
            _log.warning("ci_wait: malformed checks response, retrying")
            if not sleep_checking_stop(interval, stop_check=stop_check, sleep=sleep):
                return _done(CI_CANCELLED)
            continue
        except TransientFetchError as e:
            if no_wait:
                raise
            _log.warning("ci_wait: fetch failed, retrying: %s", e)
            if not sleep_checking_stop(interval, stop_check=stop_check, sleep=sleep):
                return _done(CI_CANCELLED)
            continue

        status = classify_checks(snapshot)
        elapsed = clock() - start
        if status in (CI_PASS, CI_FAIL):
            return _done(status)
        if status == CI_PENDING and no_wait:
            return _done(CI_PENDING, "Checks still running")
        if status == CI_NO_CHECKS and (no_wait or elapsed > NO_CHECKS_GRACE):
            return _done(CI_PASS, NO_CHECKS_MESSAGE)

        if on_status:
            try:
                on_status(status, elapsed)
            except Exception:
                _log.exception("ci_wait: on_status callback failed")

        if not sleep_checking_stop(interval, stop_check=stop_check, sleep=sleep):
            return _done(CI_CANCELLED)
