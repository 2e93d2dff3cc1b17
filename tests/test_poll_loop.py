"""Tests for the PR poll loop.

The loop runs against a scripted sampler and a fake clock whose sleep()
advances time, so every test runs instantly and deterministically.
"""

import threading

import pytest

from prw_core.differ import CommentAdded, ReviewAdded, ThreadAdded
from prw_core.gh_ops import (
    AuthError,
    MalformedResponseError,
    NotFoundError,
    PrHandle,
    TransientFetchError,
)
from prw_core.poll_loop import (
    STATUS_CANCELLED,
    STATUS_CLOSED,
    STATUS_EVENT_FOUND,
    STATUS_MERGED,
    STATUS_QUIET,
    STATUS_TIMED_OUT,
    PollLoopState,
    result_keyword,
    result_payload,
    run_poll_loop_sync,
    start_poll_loop_background,
)

from conftest import FakeClock, ScriptedSampler, comment, review, snap, thread


@pytest.fixture
def clock():
    return FakeClock()


def _run(state, sampler, clock, **kwargs):
    return run_poll_loop_sync(state, sampler, clock=clock, sleep=clock.sleep, **kwargs)


class TestTimeout:
    def test_zero_timeout_samples_once(self, pr, clock):
        """timeout=0 takes the baseline sample and times out right away."""
        sampler = ScriptedSampler(snap())
        state = PollLoopState(pr=pr, timeout=0)

        _run(state, sampler, clock)

        assert state.status == STATUS_TIMED_OUT
        assert sampler.calls == 1
        assert state.ticks == 0

    def test_timeout_checked_before_sampling(self, pr, clock):
        sampler = ScriptedSampler(snap(), clock=clock)
        state = PollLoopState(pr=pr, interval=60, timeout=120)

        _run(state, sampler, clock)

        assert state.status == STATUS_TIMED_OUT
        # Baseline, then ticks at 0s and 60s; nothing sampled at 120s
        assert sampler.sampled_at == [1000.0, 1000.0, 1060.0]
        assert state.ticks == 2
        assert state.elapsed == 120

    def test_timeout_payload(self, pr, clock):
        state = PollLoopState(pr=pr, interval=60, timeout=120)
        _run(state, ScriptedSampler(snap(threads=[thread("T1")])), clock)

        assert result_keyword(state) == "TIMEOUT"
        assert result_payload(state) == {
            "status": "timeout",
            "pr_number": 42,
            "elapsed_minutes": 2.0,
            "ticks": 2,
            "fetch_errors": 0,
            "reviews": 0,
            "comments": 0,
            "unresolved_threads": 1,
        }


class TestEventFound:
    def test_stops_on_new_thread(self, pr, clock):
        base = snap()
        t = thread("T1")
        state = PollLoopState(pr=pr, stop_on_first_event=True)

        _run(state, ScriptedSampler(base, snap(threads=[t])), clock)

        assert state.status == STATUS_EVENT_FOUND
        assert state.event == ThreadAdded(t)
        assert result_keyword(state) == "THREAD_RECEIVED"

    def test_baseline_not_advanced(self, pr, clock):
        base = snap()
        state = PollLoopState(pr=pr, stop_on_first_event=True)

        _run(state, ScriptedSampler(base, snap(comments=[comment("C1")])), clock)

        assert state.baseline is base
        assert state.last_snapshot.comment_ids() == {"C1"}

    def test_thread_reported_before_review(self, pr, clock):
        t, r = thread("T1"), review("R1")
        state = PollLoopState(pr=pr, stop_on_first_event=True)

        _run(state, ScriptedSampler(snap(), snap(threads=[t], reviews=[r])), clock)

        assert isinstance(state.event, ThreadAdded)
        assert any(isinstance(e, ReviewAdded) for e in state.found_events)

    def test_waits_through_no_change(self, pr, clock):
        base = snap()
        sampler = ScriptedSampler(base, base, base, snap(comments=[comment("C1")]))
        state = PollLoopState(pr=pr, interval=60, stop_on_first_event=True)

        _run(state, sampler, clock)

        assert state.status == STATUS_EVENT_FOUND
        assert state.ticks == 3
        assert clock.slept == 120

    def test_resolving_threads_does_not_stop(self, pr, clock):
        base = snap(threads=[thread("T1"), thread("T2")])
        fewer = snap(threads=[thread("T1", resolved=True), thread("T2")])
        state = PollLoopState(pr=pr, interval=60, timeout=180, stop_on_first_event=True)
        seen = []

        _run(state, ScriptedSampler(base, fewer), clock,
             on_event=lambda s, e: seen.append(e.status))

        assert state.status == STATUS_TIMED_OUT
        assert seen == ["THREADS_RESOLVED"]
        assert state.baseline is fewer

    def test_reopened_thread_stops(self, pr, clock):
        base = snap(threads=[thread("T1", resolved=True)])
        state = PollLoopState(pr=pr, stop_on_first_event=True)

        _run(state, ScriptedSampler(base, snap(threads=[thread("T1")])), clock)

        assert result_keyword(state) == "THREAD_UNRESOLVED"
        assert result_payload(state) == {
            "status": "thread_unresolved",
            "previous_unresolved": 0,
            "current_unresolved": 1,
        }

    def test_review_payload_counts_latest_stance(self, pr, clock):
        first = review("R1", author="dave", state="CHANGES_REQUESTED", minutes=0)
        second = review("R2", author="dave", state="APPROVED", minutes=5)
        state = PollLoopState(pr=pr, stop_on_first_event=True)

        _run(state, ScriptedSampler(snap(reviews=[first]),
                                    snap(reviews=[first, second])), clock)

        payload = result_payload(state)
        assert payload["status"] == "review_received"
        assert payload["new_review_count"] == 1
        assert payload["total_reviews"] == 2
        assert payload["changes_requested"] == 0
        assert payload["approved"] == 1

    def test_keep_going_reports_every_event(self, pr, clock):
        base = snap()
        one = snap(comments=[comment("C1")])
        two = snap(comments=[comment("C1"), comment("C2")])
        state = PollLoopState(pr=pr, interval=60, timeout=180)
        seen = []

        _run(state, ScriptedSampler(base, one, two), clock,
             on_event=lambda s, e: seen.append(e.comment.id))

        assert state.status == STATUS_TIMED_OUT
        assert seen == ["C1", "C2"]
        assert [e["id"] for e in result_payload(state)["events"]] == ["C1", "C2"]


class TestQuietPeriod:
    def test_quiet_after_period_without_activity(self, pr, clock):
        state = PollLoopState(pr=pr, interval=60, timeout=3600, quiet_period=300)

        _run(state, ScriptedSampler(snap()), clock)

        assert state.status == STATUS_QUIET
        assert state.elapsed == 300
        payload = result_payload(state)
        assert payload["status"] == "quiet"
        assert payload["quiet_period_seconds"] == 300

    def test_activity_resets_quiet_timer(self, pr, clock):
        """An event one second before the quiet period expires restarts it."""
        base = snap()
        later = snap(comments=[comment("C1")])
        # Baseline plus ticks at 0..3s unchanged, new comment at 4s
        sampler = ScriptedSampler(base, base, base, base, base, later)
        state = PollLoopState(pr=pr, interval=1, timeout=3600, quiet_period=5)

        _run(state, sampler, clock)

        assert state.status == STATUS_QUIET
        assert state.elapsed == 9
        assert [e.status for e in state.history] == ["COMMENT_RECEIVED"]

    def test_does_not_stop_on_events(self, pr, clock):
        base = snap()
        state = PollLoopState(pr=pr, interval=60, timeout=3600, quiet_period=120,
                              stop_on_first_event=True)

        _run(state, ScriptedSampler(base, snap(threads=[thread("T1")])), clock)

        assert state.status == STATUS_QUIET
        assert state.found_events == []

    def test_failed_samples_do_not_count_toward_quiet(self, pr, clock):
        base = snap()
        err = TransientFetchError("HTTP 502")
        sampler = ScriptedSampler(base, base, err, err, base)
        state = PollLoopState(pr=pr, interval=60, timeout=3600, quiet_period=120)

        _run(state, sampler, clock)

        assert state.status == STATUS_QUIET
        # Two failed ticks add 120s on top of the 120s quiet period
        assert state.elapsed == 240
        assert state.fetch_errors == 2


class TestErrors:
    def test_transient_error_retried_with_same_baseline(self, pr, clock):
        base = snap()
        c = comment("C1")
        sampler = ScriptedSampler(base, TransientFetchError("rate limit"), snap(comments=[c]))
        state = PollLoopState(pr=pr, interval=60, stop_on_first_event=True)

        _run(state, sampler, clock)

        assert state.status == STATUS_EVENT_FOUND
        assert state.event == CommentAdded(c)
        assert state.fetch_errors == 1
        assert state.baseline is base

    def test_single_malformed_response_retried(self, pr, clock):
        base = snap()
        bad = MalformedResponseError("bad")
        sampler = ScriptedSampler(base, bad, base, bad, base, bad, base)
        state = PollLoopState(pr=pr, interval=60, timeout=300)

        _run(state, sampler, clock)

        assert state.status == STATUS_TIMED_OUT
        assert state.fetch_errors == 3

    def test_repeated_malformed_response_raises(self, pr, clock):
        bad = MalformedResponseError("bad")
        state = PollLoopState(pr=pr, interval=60)

        with pytest.raises(MalformedResponseError):
            _run(state, ScriptedSampler(snap(), bad, bad), clock)
        assert state.fetch_errors == 1
        assert state.running is False

    @pytest.mark.parametrize("error", [NotFoundError("gone"), AuthError("bad credentials")])
    def test_fatal_errors_propagate(self, pr, clock, error):
        sampler = ScriptedSampler(snap(), error)
        state = PollLoopState(pr=pr)

        with pytest.raises(type(error)):
            _run(state, sampler, clock)
        assert sampler.calls == 2
        assert state.running is False

    def test_baseline_failure_propagates(self, pr, clock):
        with pytest.raises(TransientFetchError):
            _run(PollLoopState(pr=pr), ScriptedSampler(TransientFetchError("down")), clock)

    def test_callback_errors_do_not_stop_loop(self, pr, clock):
        def boom(*args):
            raise RuntimeError("callback bug")

        state = PollLoopState(pr=pr, interval=60, timeout=120)
        _run(state, ScriptedSampler(snap(), snap(comments=[comment("C1")])), clock,
             on_tick=boom, on_event=boom)

        assert state.status == STATUS_TIMED_OUT


class TestTerminalPrStates:
    def test_merged(self, pr, clock):
        state = PollLoopState(pr=pr, stop_on_first_event=True)
        merged = snap(state="MERGED", comments=[comment("C1")])

        _run(state, ScriptedSampler(snap(), merged), clock)

        assert state.status == STATUS_MERGED
        assert result_keyword(state) == "MERGED"
        assert result_payload(state) == {"status": "merged", "pr_number": 42}

    def test_closed(self, pr, clock):
        state = PollLoopState(pr=pr)

        _run(state, ScriptedSampler(snap(), snap(state="CLOSED")), clock)

        assert state.status == STATUS_CLOSED
        assert result_keyword(state) == "CLOSED"


class TestCancellation:
    def test_stop_check_interrupts_sleep(self, pr, clock):
        state = PollLoopState(pr=pr, interval=60, timeout=3600)

        _run(state, ScriptedSampler(snap()), clock, stop_check=lambda: clock.now >= 1030)

        assert state.status == STATUS_CANCELLED
        assert clock.now == 1030
        assert result_keyword(state) == "CANCELLED"

    def test_stop_requested_from_callback(self, pr, clock):
        def request_stop(s, events):
            s.stop_requested = True

        state = PollLoopState(pr=pr, interval=60, timeout=3600)
        _run(state, ScriptedSampler(snap()), clock, on_tick=request_stop)

        assert state.status == STATUS_CANCELLED
        assert state.ticks == 1

    def test_stop_requested_before_start(self, pr, clock):
        state = PollLoopState(pr=pr, interval=60, timeout=600)
        state.stop_requested = True
        sampler = ScriptedSampler(snap())

        _run(state, sampler, clock)

        assert state.status == STATUS_CANCELLED
        assert sampler.calls == 0
        assert state.baseline is None
        assert state.ticks == 0
        assert clock.slept == 0
        assert state.stop_requested is True
        assert state.running is False

    def test_stop_check_before_start(self, pr, clock):
        state = PollLoopState(pr=pr, interval=60, timeout=600)
        sampler = ScriptedSampler(snap())

        _run(state, sampler, clock, stop_check=lambda: True)

        assert state.status == STATUS_CANCELLED
        assert sampler.calls == 0
        assert result_payload(state)["ticks"] == 0


class TestBackground:
    def test_runs_to_completion(self, pr):
        done = threading.Event()
        results = []

        def on_complete(state, error):
            results.append((state.status, error))
            done.set()

        state = PollLoopState(pr=pr, timeout=0)
        thread_ = start_poll_loop_background(state, ScriptedSampler(snap()),
                                             on_complete=on_complete)
        thread_.join(5)

        assert done.is_set()
        assert results == [(STATUS_TIMED_OUT, None)]
        assert thread_.daemon

    def test_reports_error(self, pr):
        results = []
        state = PollLoopState(pr=pr, timeout=0)
        thread_ = start_poll_loop_background(
            state, ScriptedSampler(NotFoundError("gone")),
            on_complete=lambda s, e: results.append(e))
        thread_.join(5)

        assert len(results) == 1
        assert isinstance(results[0], NotFoundError)

    def test_cancel_before_thread_runs(self, pr):
        results = []
        sampler = ScriptedSampler(snap())
        state = PollLoopState(pr=pr, interval=60, timeout=3600)
        state.stop_requested = True
        thread_ = start_poll_loop_background(
            state, sampler, on_complete=lambda s, e: results.append((s.status, e)))
        thread_.join(5)

        assert results == [(STATUS_CANCELLED, None)]
        assert sampler.calls == 0

    def test_loops_are_independent(self, pr):
        other = PrHandle(owner="owner", repo="repo", number=43)
        a = PollLoopState(pr=pr, timeout=0)
        b = PollLoopState(pr=other, timeout=0)
        threads = [start_poll_loop_background(a, ScriptedSampler(snap())),
                   start_poll_loop_background(b, ScriptedSampler(snap(title="Other")))]
        for t in threads:
            t.join(5)

        assert a.baseline.title == "Add feature"
        assert b.baseline.title == "Other"
        assert a.status == b.status == STATUS_TIMED_OUT
