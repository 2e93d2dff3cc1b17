"""State samplers: pull one Snapshot of a PR's review and CI state.

The poll loop and the completion gate need exactly one thing from the hosting
service: ``sample(pr) -> Snapshot``.  :class:`GitHubSampler` implements it on
top of the gh CLI; tests substitute their own :class:`StateSampler`.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from prw_core import gh_ops
from prw_core.gh_ops import PrHandle
from prw_core.paths import configure_logger
from prw_core.snapshot import Snapshot, build_snapshot

_log = configure_logger("prw.sampler")

DEFAULT_CALL_TIMEOUT = 60


class StateSampler(ABC):
    @abstractmethod
    def sample(self, pr: PrHandle) -> Snapshot:
        """Return the PR's current state.

        Raises TransientFetchError (retryable), NotFoundError (PR gone),
        AuthError, or MalformedResponseError.
        """
        ...


class GitHubSampler(StateSampler):
    """Samples PR state through ``gh api graphql`` and ``gh pr checks``.

    Each gh call is bounded by *call_timeout* seconds so a hung request
    cannot stall the caller past its own deadline.
    """

    def __init__(self, call_timeout: Optional[float] = DEFAULT_CALL_TIMEOUT,
                 include_checks: bool = True):
        self.call_timeout = call_timeout
        self.include_checks = include_checks

    def sample(self, pr: PrHandle) -> Snapshot:
        sampled_at = datetime.now(timezone.utc)
        pr_data = gh_ops.get_pull_request(pr, timeout=self.call_timeout)
        threads = gh_ops.list_review_threads(pr, timeout=self.call_timeout)
        checks = (gh_ops.list_check_runs(pr, timeout=self.call_timeout)
                  if self.include_checks else [])
        snapshot = build_snapshot(pr_data, threads, checks, sampled_at=sampled_at)
        _log.debug("sampler: %s %s", pr, snapshot.summary())
        return snapshot


class ChecksOnlySampler(StateSampler):
    """Samples only CI checks; used by the CI wait flow.

    The PR state is reported as OPEN: ``gh pr checks`` does not expose it and
    the CI flow does not act on it.
    """

    def __init__(self, call_timeout: Optional[float] = DEFAULT_CALL_TIMEOUT):
        self.call_timeout = call_timeout

    def sample(self, pr: PrHandle) -> Snapshot:
        sampled_at = datetime.now(timezone.utc)
        checks = gh_ops.list_check_runs(pr, timeout=self.call_timeout)
        pr_data = {"state": "OPEN", "reviews": [], "comments": []}
        return build_snapshot(pr_data, [], checks, sampled_at=sampled_at)
