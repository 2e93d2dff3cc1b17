"""Completion gate: one-shot "is this PR ready to finalize?" check.

A PR is READY when all of the following hold:

- every CI check passed or was skipped (no checks at all counts as passing);
- no review thread is unresolved;
- no reviewer's *latest* review requests changes.

Only the most recent review per author counts: a reviewer who requested
changes and later approved does not block.
"""

from dataclasses import dataclass, field

from prw_core.gh_ops import PrHandle
from prw_core.paths import configure_logger
from prw_core.sampler import StateSampler
from prw_core.snapshot import (
    CHECK_FAIL,
    CHECK_PASS,
    CHECK_PENDING,
    CHECK_SKIPPED,
    PR_OPEN,
    REVIEW_APPROVED,
    REVIEW_CHANGES_REQUESTED,
    Snapshot,
    latest_reviews_by_author,
)

_log = configure_logger("prw.gate")

VERDICT_READY = "READY"
VERDICT_BLOCKED = "BLOCKED"


@dataclass(frozen=True)
class GateVerdict:
    verdict: str
    reasons: tuple[str, ...] = ()
    details: dict = field(default_factory=dict)

    @property
    def ready(self) -> bool:
        return self.verdict == VERDICT_READY

    def to_dict(self) -> dict:
        return {
            "status": self.verdict.lower(),
            "reasons": list(self.reasons),
            **self.details,
        }


def check_summary(snapshot: Snapshot) -> dict:
    """Count CI checks by bucket and name the failing/pending ones."""
    counts = {CHECK_PASS: 0, CHECK_FAIL: 0, CHECK_PENDING: 0, CHECK_SKIPPED: 0}
    for check in snapshot.ci_checks:
        counts[check.bucket] += 1
    return {
        "total": len(snapshot.ci_checks),
        "passed": counts[CHECK_PASS],
        "failed": counts[CHECK_FAIL],
        "pending": counts[CHECK_PENDING],
        "skipped": counts[CHECK_SKIPPED],
        "failed_checks": [c.name for c in snapshot.ci_checks if c.bucket == CHECK_FAIL],
        "pending_checks": [c.name for c in snapshot.ci_checks if c.bucket == CHECK_PENDING],
    }


def evaluate_snapshot(snapshot: Snapshot) -> GateVerdict:
    """Apply the readiness rules to an already-sampled snapshot."""
    reasons: list[str] = []

    if snapshot.pr_state != PR_OPEN:
        reasons.append(f"PR is {snapshot.pr_state}")

    checks = check_summary(snapshot)
    if checks["failed"]:
        reasons.append(f"CI checks failed ({checks['failed']} failures: "
                       f"{', '.join(checks['failed_checks'])})")
    if checks["pending"]:
        reasons.append(f"CI checks still pending ({checks['pending']} pending)")

    unresolved = snapshot.unresolved_threads
    if unresolved:
        reasons.append(f"Unresolved review threads: {len(unresolved)}")

    stances = latest_reviews_by_author(snapshot.reviews)
    blocking = sorted(a for a, r in stances.items() if r.state == REVIEW_CHANGES_REQUESTED)
    if blocking:
        reasons.append(f"Changes requested by: {', '.join('@' + a for a in blocking)}")

    details = {
        "checks": checks,
        "unresolved_threads": [
            {"id": t.id, "path": t.path, "line": t.line} for t in unresolved
        ],
        "changes_requested_by": blocking,
        "approved_by": sorted(a for a, r in stances.items() if r.state == REVIEW_APPROVED),
    }
    verdict = VERDICT_BLOCKED if reasons else VERDICT_READY
    return GateVerdict(verdict=verdict, reasons=tuple(reasons), details=details)


def evaluate(pr: PrHandle, sampler: StateSampler) -> GateVerdict:
    """Sample the PR once and decide READY or BLOCKED.

    Sampling errors propagate to the caller.
    """
    snapshot = sampler.sample(pr)
    result = evaluate_snapshot(snapshot)
    if result.ready:
        _log.info("gate: %s READY", pr)
    else:
        _log.info("gate: %s BLOCKED: %s", pr, "; ".join(result.reasons))
    return result
