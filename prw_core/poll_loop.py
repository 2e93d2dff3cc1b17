"""Poll loop: watch a PR until feedback arrives, it settles, or it ends.

Each tick samples the PR, diffs the sample against the baseline snapshot and
decides whether to stop.  Terminal statuses:

  EVENT_FOUND        -- An actionable delta arrived (stop_on_first_event).
  QUIET              -- quiet_period passed with no new activity.
  MERGED             -- The PR was merged.
  TERMINATED_CLOSED  -- The PR was closed without merging.
  TIMED_OUT          -- The wall-clock budget ran out.
  CANCELLED          -- The caller requested a stop.

Error policy: TransientFetchError is retried on the next tick with the same
baseline.  MalformedResponseError is retried once and re-raised when it
repeats.  NotFoundError and AuthError propagate immediately.

The baseline is a frozen Snapshot replaced wholesale on every successful
tick, so loops for different PRs share nothing and can run on separate
threads (see :func:`start_poll_loop_background`).
"""

import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from prw_core.differ import (
    CommentAdded,
    DeltaEvent,
    NoChange,
    ResolutionCountChanged,
    ReviewAdded,
    ThreadAdded,
    diff,
    is_actionable,
)
from prw_core.gh_ops import MalformedResponseError, PrHandle, TransientFetchError
from prw_core.loop_shared import StopCheck, should_stop, sleep_checking_stop
from prw_core.paths import configure_logger
from prw_core.sampler import StateSampler
from prw_core.snapshot import (
    PR_CLOSED,
    PR_MERGED,
    REVIEW_APPROVED,
    REVIEW_CHANGES_REQUESTED,
    Snapshot,
    latest_reviews_by_author,
)

_log = configure_logger("prw.poll_loop")

STATUS_RUNNING = "RUNNING"
STATUS_EVENT_FOUND = "EVENT_FOUND"
STATUS_TIMED_OUT = "TIMED_OUT"
STATUS_MERGED = "MERGED"
STATUS_CLOSED = "TERMINATED_CLOSED"
STATUS_QUIET = "QUIET"
STATUS_CANCELLED = "CANCELLED"

TERMINAL_STATUSES = (STATUS_EVENT_FOUND, STATUS_TIMED_OUT, STATUS_MERGED,
                     STATUS_CLOSED, STATUS_QUIET, STATUS_CANCELLED)

# Default poll interval / budget, matching the monitor command defaults
DEFAULT_INTERVAL = 60
DEFAULT_TIMEOUT = 30 * 60
# Consecutive malformed responses tolerated before giving up
DEFAULT_MAX_MALFORMED = 2
# Number of observed events kept on the state
_MAX_HISTORY = 100


def _generate_loop_id() -> str:
    """Generate a short random loop identifier (4 hex chars)."""
    return secrets.token_hex(2)


@dataclass
class PollLoopState:
    """Tracks the state of a running poll loop.

    ``interval``, ``timeout`` and ``quiet_period`` are in seconds.  With
    ``quiet_period`` set the loop runs in quiet-period mode and never stops
    on a single event.
    """
    pr: PrHandle
    interval: float = DEFAULT_INTERVAL
    timeout: float = DEFAULT_TIMEOUT
    stop_on_first_event: bool = False
    quiet_period: float | None = None
    max_malformed: int = DEFAULT_MAX_MALFORMED
    baseline: Snapshot | None = None
    status: str = STATUS_RUNNING
    running: bool = False
    stop_requested: bool = False
    ticks: int = 0
    fetch_errors: int = 0
    started_at: float = 0.0
    last_activity: float = 0.0
    elapsed: float = 0.0
    last_snapshot: Snapshot | None = None
    # Actionable events of the tick that ended the loop (EVENT_FOUND)
    found_events: list[DeltaEvent] = field(default_factory=list)
    history: list[DeltaEvent] = field(default_factory=list)
    loop_id: str = field(default_factory=_generate_loop_id)

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def event(self) -> DeltaEvent | None:
        """The event that ended the loop, if it ended on one."""
        return self.found_events[0] if self.found_events else None


def _record(state: PollLoopState, events: list[DeltaEvent]) -> None:
    for event in events:
        if isinstance(event, NoChange):
            continue
        state.history.append(event)
    if len(state.history) > _MAX_HISTORY:
        del state.history[:-_MAX_HISTORY]


def _finish(state: PollLoopState, status: str, clock: Callable[[], float]) -> PollLoopState:
    state.status = status
    state.elapsed = clock() - state.started_at
    _log.info("poll_loop[%s]: %s finished %s after %d tick(s), %.0fs",
              state.loop_id, state.pr, status, state.ticks, state.elapsed)
    return state


def run_poll_loop_sync(
    state: PollLoopState,
    sampler: StateSampler,
    on_tick: Callable[[PollLoopState, list[DeltaEvent]], None] | None = None,
    on_event: Callable[[PollLoopState, DeltaEvent], None] | None = None,
    stop_check: StopCheck | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> PollLoopState:
    """Run the poll loop until it reaches a terminal status.

    Args:
        state: Mutable state object; the caller can read it to track progress
            and set ``stop_requested`` to cancel.
        sampler: Source of snapshots.
        on_tick: Called after every successful tick with that tick's events.
        on_event: Called for every non-NoChange event when the loop keeps
            running through it (not called for the event that stops it).
        stop_check: Optional extra cancellation predicate.
        clock: Monotonic clock in seconds.
        sleep: Sleep function (tests substitute a fake clock's sleep).

    Returns:
        The final state.

    Raises:
        NotFoundError, AuthError: PR gone or credentials rejected.
        MalformedResponseError: after ``max_malformed`` consecutive bad
            responses.
        Any error from the initial baseline sample.
    """
    state.running = True
    state.status = STATUS_RUNNING
    state.started_at = clock()
    malformed = 0

    try:
        if should_stop(state, stop_check):
            _log.info("poll_loop[%s]: stopped before the first sample", state.loop_id)
            return _finish(state, STATUS_CANCELLED, clock)
        if state.baseline is None:
            _log.info("poll_loop[%s]: sampling initial state of %s", state.loop_id, state.pr)
            state.baseline = sampler.sample(state.pr)
        state.last_snapshot = state.baseline
        state.last_activity = clock()
        _log.info("poll_loop[%s]: baseline %s; interval=%ss timeout=%ss quiet=%s",
                  state.loop_id, state.baseline.summary(), state.interval,
                  state.timeout, state.quiet_period)

        while True:
            if should_stop(state, stop_check):
                return _finish(state, STATUS_CANCELLED, clock)

            tick_start = clock()
            if tick_start - state.started_at >= state.timeout:
                return _finish(state, STATUS_TIMED_OUT, clock)

            state.ticks += 1
            try:
                current = sampler.sample(state.pr)
            except MalformedResponseError as e:
                malformed += 1
                if malformed >= state.max_malformed:
                    _log.error("poll_loop[%s]: malformed response %d times in a row: %s",
                               state.loop_id, malformed, e)
                    raise
                _log.warning("poll_loop[%s]: malformed response, retrying: %s",
                             state.loop_id, e)
                state.fetch_errors += 1
                if not _pause_after_error(state, stop_check, sleep, clock, tick_start):
                    return _finish(state, STATUS_CANCELLED, clock)
                continue
            except TransientFetchError as e:
                _log.warning("poll_loop[%s]: fetch failed, retrying: %s", state.loop_id, e)
                state.fetch_errors += 1
                if not _pause_after_error(state, stop_check, sleep, clock, tick_start):
                    return _finish(state, STATUS_CANCELLED, clock)
                continue
            malformed = 0
            state.last_snapshot = current

            if current.pr_state == PR_MERGED:
                return _finish(state, STATUS_MERGED, clock)
            if current.pr_state == PR_CLOSED:
                return _finish(state, STATUS_CLOSED, clock)

            events = diff(state.baseline, current)
            actionable = [e for e in events if is_actionable(e)]
            _record(state, events)

            if actionable and state.stop_on_first_event and state.quiet_period is None:
                # Baseline stays at the old snapshot so the caller can re-diff.
                state.found_events = actionable
                _log.info("poll_loop[%s]: %s", state.loop_id,
                          ", ".join(e.status for e in actionable))
                return _finish(state, STATUS_EVENT_FOUND, clock)

            state.baseline = current
            changed = [e for e in events if not isinstance(e, NoChange)]
            for event in changed:
                _log.info("poll_loop[%s]: observed %s", state.loop_id, event.status)
                if on_event:
                    try:
                        on_event(state, event)
                    except Exception:
                        _log.exception("poll_loop: on_event callback failed")
            if changed:
                state.last_activity = clock()

            if on_tick:
                try:
                    on_tick(state, events)
                except Exception:
                    _log.exception("poll_loop: on_tick callback failed")

            if (state.quiet_period is not None
                    and clock() - state.last_activity >= state.quiet_period):
                return _finish(state, STATUS_QUIET, clock)

            if not sleep_checking_stop(state.interval, state, stop_check, sleep=sleep):
                return _finish(state, STATUS_CANCELLED, clock)
    finally:
        state.running = False


def _pause_after_error(state: PollLoopState, stop_check: StopCheck | None,
                       sleep: Callable[[float], None], clock: Callable[[], float],
                       tick_start: float) -> bool:
    """Sleep one interval after a failed sample.

    Time lost to failed samples does not count toward the quiet period.
    Returns False if a stop was requested while sleeping.
    """
    completed = sleep_checking_stop(state.interval, state, stop_check, sleep=sleep)
    state.last_activity += clock() - tick_start
    return completed


def start_poll_loop_background(
    state: PollLoopState,
    sampler: StateSampler,
    on_tick: Callable[[PollLoopState, list[DeltaEvent]], None] | None = None,
    on_event: Callable[[PollLoopState, DeltaEvent], None] | None = None,
    on_complete: Callable[[PollLoopState, BaseException | None], None] | None = None,
) -> threading.Thread:
    """Start a poll loop in a background thread.

    *on_complete* receives the final state and the exception that ended the
    loop (None on a normal finish).  Returns the thread so the caller can
    join it.
    """
    def _run():
        error: BaseException | None = None
        try:
            run_poll_loop_sync(state, sampler, on_tick=on_tick, on_event=on_event)
        except Exception as e:
            _log.exception("poll_loop[%s]: loop for %s failed", state.loop_id, state.pr)
            error = e
        if on_complete:
            try:
                on_complete(state, error)
            except Exception:
                _log.exception("poll_loop: on_complete callback failed")

    thread = threading.Thread(target=_run, daemon=True,
                              name=f"poll-loop-{state.pr.number}-{state.loop_id}")
    thread.start()
    return thread


# ---------------------------------------------------------------------------
# Operator output
# ---------------------------------------------------------------------------

_STATUS_KEYWORDS = {
    STATUS_TIMED_OUT: "TIMEOUT",
    STATUS_MERGED: "MERGED",
    STATUS_CLOSED: "CLOSED",
    STATUS_QUIET: "QUIET",
    STATUS_CANCELLED: "CANCELLED",
}


def result_keyword(state: PollLoopState) -> str:
    """The one-word status printed on the first output line."""
    if state.status == STATUS_EVENT_FOUND and state.event is not None:
        return state.event.status
    return _STATUS_KEYWORDS.get(state.status, state.status)


def result_payload(state: PollLoopState) -> dict:
    """Machine-readable result of a finished loop."""
    snap = state.last_snapshot
    if state.status == STATUS_EVENT_FOUND and state.event is not None:
        return _event_payload(state.event, state.found_events, snap)
    if state.status in (STATUS_MERGED, STATUS_CLOSED):
        return {"status": "merged" if state.status == STATUS_MERGED else "closed",
                "pr_number": state.pr.number}
    payload = {
        "status": result_keyword(state).lower(),
        "pr_number": state.pr.number,
        "elapsed_minutes": round(state.elapsed / 60, 1),
        "ticks": state.ticks,
        "fetch_errors": state.fetch_errors,
    }
    if snap is not None:
        payload.update({
            "reviews": len(snap.reviews),
            "comments": len(snap.comments),
            "unresolved_threads": snap.unresolved_count,
        })
    if state.status == STATUS_QUIET:
        payload["quiet_period_seconds"] = state.quiet_period
    if state.history:
        payload["events"] = [e.to_dict() for e in state.history]
    return payload


def _event_payload(first: DeltaEvent, events: list[DeltaEvent],
                   snap: Snapshot | None) -> dict:
    same = [e for e in events if type(e) is type(first)]
    if isinstance(first, ThreadAdded):
        payload = {
            "status": "thread_received",
            "new_thread_count": len(same),
            "new_threads": [e.to_dict() for e in same],
        }
        if snap is not None:
            payload["total_threads"] = len(snap.review_threads)
            payload["unresolved_threads"] = snap.unresolved_count
        return payload
    if isinstance(first, ReviewAdded):
        payload = {
            "status": "review_received",
            "new_review_count": len(same),
            "new_reviews": [e.to_dict() for e in same],
        }
        if snap is not None:
            stances = latest_reviews_by_author(snap.reviews).values()
            payload["total_reviews"] = len(snap.reviews)
            payload["changes_requested"] = sum(
                1 for r in stances if r.state == REVIEW_CHANGES_REQUESTED)
            payload["approved"] = sum(1 for r in stances if r.state == REVIEW_APPROVED)
        return payload
    if isinstance(first, CommentAdded):
        payload = {
            "status": "comment_received",
            "new_comment_count": len(same),
            "new_comments": [e.to_dict() for e in same],
        }
        if snap is not None:
            payload["total_comments"] = len(snap.comments)
        return payload
    if isinstance(first, ResolutionCountChanged):
        return {
            "status": "thread_unresolved",
            "previous_unresolved": first.previous,
            "current_unresolved": first.current,
        }
    return first.to_dict()
