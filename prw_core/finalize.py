"""Finalize a PR: mark it ready for human review, or merge it.

Both flows run the completion gate first unless forced.
"""

from dataclasses import dataclass, field

from prw_core import gh_ops
from prw_core.gate import GateVerdict, evaluate_snapshot
from prw_core.gh_ops import PrHandle
from prw_core.paths import configure_logger
from prw_core.sampler import StateSampler
from prw_core.snapshot import PR_OPEN

_log = configure_logger("prw.finalize")

READY_LABEL = "ready"


class FinalizeError(Exception):
    """Raised when a finalize step cannot proceed."""

    def __init__(self, message: str, verdict: GateVerdict | None = None):
        super().__init__(message)
        self.verdict = verdict


@dataclass
class FinalizeResult:
    payload: dict
    warnings: list[str] = field(default_factory=list)


def completion_comment(user: str | None) -> str:
    tag = f"@{user}" if user else ""
    return (
        "## Ready for Manual Review\n"
        "\n"
        f"{tag} - This PR is ready for your review.\n"
        "\n"
        "### Summary\n"
        "All automated work has been completed:\n"
        "- All CI checks passing\n"
        "- All review feedback addressed\n"
        "- All review threads resolved\n"
        "\n"
        "### Next Steps\n"
        "1. Review the changes\n"
        "2. Approve if satisfied\n"
        "3. Merge when ready\n"
    )


def _gate_or_raise(pr: PrHandle, sampler: StateSampler, force: bool):
    snapshot = sampler.sample(pr)
    if snapshot.pr_state != PR_OPEN:
        raise FinalizeError(f"PR #{pr.number} is not open (state: {snapshot.pr_state})")
    verdict = evaluate_snapshot(snapshot)
    if not force and not verdict.ready:
        raise FinalizeError("Verification failed. Use --force to override.", verdict)
    return snapshot, verdict


def mark_ready(pr: PrHandle, sampler: StateSampler, force: bool = False) -> FinalizeResult:
    """Verify completion, undraft the PR, and notify the logged-in user.

    Raises:
        FinalizeError: PR not open, gate BLOCKED (without *force*), or the
            draft could not be marked ready.
    """
    snapshot, verdict = _gate_or_raise(pr, sampler, force)
    warnings: list[str] = []

    user = gh_ops.get_current_user()
    if not user:
        warnings.append("Could not determine logged-in user for notification")

    if snapshot.is_draft:
        _log.info("finalize: marking %s ready for review", pr)
        if not gh_ops.mark_pr_ready(pr):
            raise FinalizeError("Failed to mark PR as ready")

    if gh_ops.post_pr_comment(pr, completion_comment(user)) is None:
        warnings.append("Could not post completion comment")

    label_added = gh_ops.add_pr_label(pr, READY_LABEL)
    if not label_added:
        warnings.append(f"Could not add '{READY_LABEL}' label (may not exist in repo)")

    for w in warnings:
        _log.warning("finalize: %s: %s", pr, w)
    return FinalizeResult(
        payload={
            "status": "ready",
            "pr_number": pr.number,
            "title": snapshot.title,
            "notified_user": user or "",
            "was_draft": snapshot.is_draft,
            "label_added": READY_LABEL if label_added else None,
            "forced": force and not verdict.ready,
        },
        warnings=warnings,
    )


def merge(pr: PrHandle, sampler: StateSampler, strategy: str = "squash",
          delete_branch: bool = True, force: bool = False) -> FinalizeResult:
    """Merge the PR once the gate is READY (or when forced)."""
    if strategy not in gh_ops.MERGE_STRATEGIES:
        raise FinalizeError(f"Unknown merge strategy: {strategy}")
    _, verdict = _gate_or_raise(pr, sampler, force)
    _log.info("finalize: merging %s (%s, delete_branch=%s)", pr, strategy, delete_branch)
    if not gh_ops.merge_pull_request(pr, strategy=strategy, delete_branch=delete_branch):
        raise FinalizeError(f"Failed to merge PR #{pr.number}")
    return FinalizeResult(payload={
        "status": "merged",
        "pr_number": pr.number,
        "strategy": strategy,
        "branch_deleted": delete_branch,
        "forced": force and not verdict.ready,
    })
