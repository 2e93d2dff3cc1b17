"""One-shot PR commands for the prw CLI.

Registers feedback, reply, resolve, gate, ready, merge and issues on the
top-level ``cli`` group.
"""

import json

import click

from prw_core import feedback, finalize, gate, gh_ops, term
from prw_core.gh_ops import MERGE_STRATEGIES
from prw_core.sampler import GitHubSampler

from prw_core.cli import cli
from prw_core.cli.helpers import (
    EXIT_ERROR,
    EXIT_OK,
    cli_errors,
    emit,
    fail,
    get_config,
    repo_option,
    resolve_pr,
    resolve_repo_slug,
)


def _sampler() -> GitHubSampler:
    return GitHubSampler(call_timeout=get_config().call_timeout)


@cli.command("feedback")
@click.argument("pr_number", type=int)
@click.option("--unresolved-only", is_flag=True, default=False,
              help="Only show unresolved review threads")
@click.option("--json", "as_json", is_flag=True, default=False,
              help="Output as JSON (for programmatic use)")
@repo_option
def feedback_cmd(pr_number: int, unresolved_only: bool, as_json: bool, repo: str | None):
    """Show all feedback on a PR and what still needs action.

    Covers inline review threads, reviews (approvals and change requests),
    general comments, and thread resolution status.
    """
    with cli_errors():
        pr = resolve_pr(pr_number, repo)
        if not as_json:
            term.info(f"Fetching feedback for {pr}...")
        snapshot = GitHubSampler(call_timeout=get_config().call_timeout,
                                 include_checks=False).sample(pr)

    report = feedback.build_report(snapshot, pr_number, unresolved_only=unresolved_only)
    if as_json:
        click.echo(json.dumps(report, indent=2))
    else:
        click.echo(feedback.format_report(report))


@cli.command("reply")
@click.argument("thread_id")
@click.argument("text")
@click.option("--resolve", is_flag=True, default=False,
              help="Also resolve the thread after replying")
def reply_cmd(thread_id: str, text: str, resolve: bool):
    """Reply to a PR review thread, optionally resolving it.

    THREAD_ID is the GraphQL thread ID (e.g. PRRT_kwDOxxxxxx).

    \b
    Examples:
      prw reply PRRT_kwDO123 "Done - fixed the null check"
      prw reply PRRT_kwDO123 "Fixed in latest commit" --resolve
    """
    if not text.strip():
        fail("Reply text required", kind="usage")
    term.status(f"Replying to thread: {thread_id}")
    with cli_errors():
        result = feedback.reply_to_thread(thread_id, text, resolve=resolve)

    term.info(f"Reply posted successfully (comment ID: {result['comment_id']})")
    if resolve:
        if result["resolved"]:
            term.info("Thread resolved successfully")
        else:
            term.warn("Reply posted but failed to resolve thread")
    emit("REPLIED", result)


@cli.command("resolve")
@click.argument("thread_id")
def resolve_cmd(thread_id: str):
    """Resolve a PR review thread by its GraphQL ID."""
    term.status(f"Resolving thread: {thread_id}")
    with cli_errors():
        resolved = feedback.resolve_thread(thread_id)
    if not resolved:
        fail(f"Thread {thread_id} is still unresolved", kind="not_resolved",
             thread_id=thread_id)
    term.info("Thread resolved successfully")
    emit("RESOLVED", {"thread_id": thread_id, "resolved": True})


@cli.command("gate")
@click.argument("pr_number", type=int)
@repo_option
def gate_cmd(pr_number: int, repo: str | None):
    """Check whether a PR is ready to finalize.

    READY (exit 0) when all CI checks pass, every review thread is resolved,
    and no reviewer's latest review requests changes.  Otherwise BLOCKED
    (exit 1) with the reasons.
    """
    with cli_errors():
        pr = resolve_pr(pr_number, repo)
        verdict = gate.evaluate(pr, _sampler())

    for reason in verdict.reasons:
        term.error(reason)
    emit(verdict.verdict, {"pr_number": pr_number, **verdict.to_dict()})
    raise SystemExit(EXIT_OK if verdict.ready else EXIT_ERROR)


@cli.command("ready")
@click.argument("pr_number", type=int)
@click.option("--force", is_flag=True, default=False,
              help="Skip verification checks")
@repo_option
def ready_cmd(pr_number: int, force: bool, repo: str | None):
    """Verify a PR is complete, mark it ready for review, and notify you.

    Unless --force is given the completion gate must pass.  A draft PR is
    marked ready, a completion comment tags the logged-in user, and the
    'ready' label is added.
    """
    with cli_errors():
        pr = resolve_pr(pr_number, repo)
        term.info(f"Preparing to mark {pr} as ready for review...")
        try:
            result = finalize.mark_ready(pr, _sampler(), force=force)
        except finalize.FinalizeError as e:
            _finalize_failed(e)

    for w in result.warnings:
        term.warn(w)
    term.info(f"PR #{pr_number} is ready for review!")
    emit("READY", result.payload)


@cli.command("merge")
@click.argument("pr_number", type=int)
@click.option("--strategy", type=click.Choice(MERGE_STRATEGIES), default=None,
              help="Merge strategy (default: squash)")
@click.option("--keep-branch", is_flag=True, default=False,
              help="Do not delete the head branch after merging")
@click.option("--force", is_flag=True, default=False,
              help="Merge even if the completion gate is BLOCKED")
@repo_option
def merge_cmd(pr_number: int, strategy: str | None, keep_branch: bool, force: bool,
              repo: str | None):
    """Merge a PR once the completion gate passes."""
    cfg = get_config().with_overrides(merge_strategy=strategy)
    with cli_errors():
        pr = resolve_pr(pr_number, repo)
        try:
            result = finalize.merge(pr, _sampler(), strategy=cfg.merge_strategy,
                                    delete_branch=not keep_branch, force=force)
        except finalize.FinalizeError as e:
            _finalize_failed(e)

    term.info(f"PR #{pr_number} merged")
    emit("MERGED", result.payload)


def _finalize_failed(e: "finalize.FinalizeError"):
    extra = {}
    if e.verdict is not None:
        for reason in e.verdict.reasons:
            term.error(reason)
        extra["gate"] = e.verdict.to_dict()
    fail(str(e), kind="finalize", **extra)


@cli.command("issues")
@click.option("--label", "labels", multiple=True, help="Only issues with this label (repeatable)")
@click.option("--exclude", "exclude", multiple=True, help="Skip issues with this label (repeatable)")
@click.option("--limit", type=click.IntRange(min=1), default=50, help="Maximum issues to fetch")
@repo_option
def issues_cmd(labels: tuple[str, ...], exclude: tuple[str, ...], limit: int,
               repo: str | None):
    """List open issues, skipping ones already claimed or parked."""
    with cli_errors():
        owner, name = resolve_repo_slug(repo)
        issues = gh_ops.list_issues(f"{owner}/{name}", labels=labels,
                                    exclude_labels=exclude, limit=limit)
    if not issues:
        term.warn("No open issues found")
    emit("", {"issues": issues, "metadata": {"total": len(issues)}})
