"""Polling CLI commands.

- ``prw monitor PR``  -- wait for new review feedback on a PR.
- ``prw wait-ci PR``  -- wait for CI checks to finish.
"""

import time
from datetime import datetime

import click

from prw_core import term
from prw_core.ci_wait import (
    CI_CANCELLED,
    CI_FAIL,
    CI_PENDING,
    CI_TIMEOUT,
    wait_for_ci,
)
from prw_core.differ import DeltaEvent
from prw_core.poll_loop import (
    STATUS_CANCELLED,
    STATUS_TIMED_OUT,
    PollLoopState,
    result_keyword,
    result_payload,
    run_poll_loop_sync,
)
from prw_core.sampler import ChecksOnlySampler, GitHubSampler

from prw_core.cli import cli
from prw_core.cli.helpers import (
    EXIT_ERROR,
    EXIT_OK,
    EXIT_TIMEOUT,
    cli_errors,
    emit,
    get_config,
    repo_option,
    resolve_pr,
)


@cli.command("monitor")
@click.argument("pr_number", type=int)
@click.option("--timeout", type=click.IntRange(min=0), default=None,
              help="Max minutes to wait (default: 30)")
@click.option("--interval", type=click.IntRange(min=1), default=None,
              help="Seconds between polls (default: 60)")
@click.option("--quiet-period", type=click.IntRange(min=1), default=None,
              help="Keep going through feedback; stop once this many seconds "
                   "pass with no new activity")
@click.option("--until-quiet", is_flag=True, default=False,
              help="Like --quiet-period, using the configured quiet period (default: 300)")
@click.option("--keep-going", is_flag=True, default=False,
              help="Report feedback as it arrives instead of stopping on it")
@repo_option
def monitor_cmd(pr_number: int, timeout: int | None, interval: int | None,
                quiet_period: int | None, until_quiet: bool, keep_going: bool,
                repo: str | None):
    """Poll a PR for review threads, reviews, and comments.

    \b
    Prints one of:
      THREAD_RECEIVED    New inline review thread
      REVIEW_RECEIVED    New review (approve / request changes / comment)
      COMMENT_RECEIVED   New general PR comment
      THREAD_UNRESOLVED  A resolved thread was re-opened
      QUIET              --quiet-period passed with no new activity
      MERGED / CLOSED    PR was merged / closed
      TIMEOUT            Nothing happened in time (exit 2)
    followed by a JSON payload.

    \b
    Examples:
      prw monitor 42
      prw monitor 42 --timeout 60 --interval 30
      prw monitor 42 --quiet-period 600 --repo owner/repo
    """
    cfg = get_config().with_overrides(
        monitor_timeout=timeout, monitor_interval=interval, quiet_period=quiet_period)
    quiet = cfg.quiet_period if (until_quiet or quiet_period is not None) else None

    with cli_errors():
        pr = resolve_pr(pr_number, repo)
        state = PollLoopState(
            pr=pr,
            interval=cfg.monitor_interval,
            timeout=cfg.monitor_timeout * 60,
            stop_on_first_event=not keep_going and quiet is None,
            quiet_period=quiet,
        )
        sampler = GitHubSampler(call_timeout=cfg.call_timeout, include_checks=False)

        def _on_event(s: PollLoopState, event: DeltaEvent) -> None:
            term.status(f"{event.status}: {event.to_dict()}")

        def _on_tick(s: PollLoopState, events: list[DeltaEvent]) -> None:
            remaining = max(0.0, s.timeout - (time.monotonic() - s.started_at))
            ts = datetime.now().strftime("%H:%M:%S")
            term.status(f"[{ts}] Waiting... ({int(remaining // 60)} min remaining, "
                        f"{s.last_snapshot.unresolved_count} unresolved)")

        term.info(f"Monitoring {pr} for {cfg.monitor_timeout} minutes "
                  f"(polling every {cfg.monitor_interval} seconds)...")
        try:
            run_poll_loop_sync(state, sampler, on_tick=_on_tick, on_event=_on_event)
        except KeyboardInterrupt:
            state.stop_requested = True
            state.status = STATUS_CANCELLED
            if state.started_at:
                state.elapsed = time.monotonic() - state.started_at

    emit(result_keyword(state), result_payload(state))
    if state.status == STATUS_TIMED_OUT:
        raise SystemExit(EXIT_TIMEOUT)
    if state.status == STATUS_CANCELLED:
        raise SystemExit(EXIT_ERROR)
    raise SystemExit(EXIT_OK)


@cli.command("wait-ci")
@click.argument("pr_number", type=int)
@click.option("--timeout", type=click.IntRange(min=0), default=None,
              help="Max minutes to wait (default: 15)")
@click.option("--interval", type=click.IntRange(min=1), default=None,
              help="Seconds between polls (default: 30)")
@click.option("--no-wait", is_flag=True, default=False,
              help="Check once and return immediately")
@repo_option
def wait_ci_cmd(pr_number: int, timeout: int | None, interval: int | None,
                no_wait: bool, repo: str | None):
    """Wait for CI checks on a PR to complete.

    \b
    Prints PASS, FAIL (exit 1), TIMEOUT (exit 2), or, with --no-wait,
    PENDING, followed by a JSON payload.
    """
    cfg = get_config().with_overrides(ci_timeout=timeout, ci_interval=interval)

    with cli_errors():
        pr = resolve_pr(pr_number, repo)
        if not no_wait:
            term.info(f"Waiting for CI on {pr} (timeout: {cfg.ci_timeout} min)...")

        def _on_status(status: str, elapsed: float) -> None:
            if status == CI_PENDING:
                term.status(f"CI pending... ({int(elapsed // 60)} min elapsed)")
            else:
                term.warn("No CI checks found for this PR")

        try:
            result = wait_for_ci(
                pr,
                ChecksOnlySampler(call_timeout=cfg.call_timeout),
                timeout=cfg.ci_timeout * 60,
                interval=cfg.ci_interval,
                no_wait=no_wait,
                on_status=_on_status,
            )
        except KeyboardInterrupt:
            emit(CI_CANCELLED, {"status": "cancelled"})
            raise SystemExit(EXIT_ERROR)

    if result.status == CI_FAIL:
        term.error("CI checks failed")
    emit(result.status, result.payload)
    if result.status == CI_TIMEOUT:
        raise SystemExit(EXIT_TIMEOUT)
    if result.status in (CI_FAIL, CI_CANCELLED):
        raise SystemExit(EXIT_ERROR)
    raise SystemExit(EXIT_OK)
