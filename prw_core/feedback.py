"""PR feedback report and review-thread replies.

:func:`build_report` turns one snapshot into a summary plus the list of items
that still need a response: unresolved threads, outstanding change requests,
and general comments that read like review findings.
"""

import re

from prw_core import gh_ops
from prw_core.gh_ops import GhError
from prw_core.paths import configure_logger
from prw_core.snapshot import (
    REVIEW_APPROVED,
    REVIEW_CHANGES_REQUESTED,
    Comment,
    ReviewThread,
    Snapshot,
    latest_reviews_by_author,
)

_log = configure_logger("prw.feedback")

# A thread whose last comment uses this vocabulary asks for a code change;
# anything else only needs a reply.
_CHANGE_REQUEST_RE = re.compile(
    r"fix|change|update|remove|add|please|should|must|need", re.IGNORECASE)
# General comments that look like review findings
_REVIEW_COMMENT_RE = re.compile(
    r"potential issue|recommendation|fix|should|must|need to|please|blocker|"
    r"critical|p[0-3]", re.IGNORECASE)
_URGENT_RE = re.compile(r"blocker|critical|must fix|p0|p1", re.IGNORECASE)
# Numbered or bolded findings inside a review comment
_FINDING_RE = re.compile(
    r"^\s*(?:\d+\.\s*\*\*|#{3,4}\s*\d+\.?\s*\*\*|"
    r"\*\*(?:Fix|Issue|Recommendation|Potential Issue)[^*]*\*\*)(.+)$",
    re.MULTILINE)
_SUGGESTION_RE = re.compile(r"\*\*(?:Fix|Recommendation|Suggested)(?::|\*\*:?)\s*(.+)")

RECENT_COMMENTS = 5


def thread_action_type(thread: ReviewThread) -> str:
    if not thread.comments:
        return "unknown"
    if _CHANGE_REQUEST_RE.search(thread.comments[-1].body):
        return "code_change"
    return "response"


def extract_findings(body: str) -> list[str]:
    """Pull individual findings out of a structured review comment."""
    found = [m.group(1).replace("**", "").strip() for m in _FINDING_RE.finditer(body)]
    if not found:
        found = [m.group(1).strip() for m in _SUGGESTION_RE.finditer(body)]
    return [f for f in found if f]


def actionable_comments(comments) -> list[dict]:
    items = []
    for c in comments:
        if not _REVIEW_COMMENT_RE.search(c.body):
            continue
        findings = extract_findings(c.body)
        if not findings and not _URGENT_RE.search(c.body):
            continue
        items.append({
            "type": "comment_review",
            "id": c.id,
            "author": c.author,
            "created_at": c.created_at.isoformat(),
            "body": c.body,
            "requires_action": True,
            "action_type": "review_comment",
            "extracted_items": findings or None,
        })
    return items


def _comment_dict(c: Comment) -> dict:
    return {
        "id": c.id,
        "author": c.author,
        "body": c.body,
        "created_at": c.created_at.isoformat(),
        "is_reply": c.reply_to_id is not None,
    }


def _thread_dict(t: ReviewThread) -> dict:
    return {
        "type": "review_thread",
        "id": t.id,
        "path": t.path,
        "line": t.line,
        "is_resolved": t.is_resolved,
        "is_outdated": t.is_outdated,
        "comments": [_comment_dict(c) for c in t.comments],
        "requires_action": not t.is_resolved,
        "action_type": thread_action_type(t),
    }


def build_report(snapshot: Snapshot, pr_number: int, unresolved_only: bool = False) -> dict:
    """Summarize a snapshot into the feedback report structure."""
    unresolved = snapshot.unresolved_threads
    stances = latest_reviews_by_author(snapshot.reviews)
    change_requests = [r for r in stances.values() if r.state == REVIEW_CHANGES_REQUESTED]
    approved = [r for r in stances.values() if r.state == REVIEW_APPROVED]
    comment_items = actionable_comments(snapshot.comments)

    items = [_thread_dict(t) for t in unresolved]
    items.extend({
        "type": "review",
        "id": r.id,
        "author": r.author,
        "state": r.state,
        "body": r.body,
        "created_at": r.created_at.isoformat(),
        "requires_action": True,
        "action_type": "address_review",
    } for r in change_requests)
    items.extend(comment_items)

    threads = unresolved if unresolved_only else snapshot.review_threads
    report = {
        "pr": {
            "number": pr_number,
            "title": snapshot.title,
            "state": snapshot.pr_state,
        },
        "summary": {
            "total_threads": len(snapshot.review_threads),
            "unresolved_threads": len(unresolved),
            "total_reviews": len(snapshot.reviews),
            "changes_requested": len(change_requests),
            "approved": len(approved),
            "general_comments": len(snapshot.comments),
            "actionable_comments": len(comment_items),
            "requires_action": bool(unresolved or change_requests or comment_items),
        },
        "actionable_items": items,
        "threads": [_thread_dict(t) for t in threads],
    }
    if not unresolved_only:
        report["recent_comments"] = [
            _comment_dict(c) for c in snapshot.comments[-RECENT_COMMENTS:]
        ]
    return report


def format_report(report: dict) -> str:
    """Render the report for a terminal."""
    pr = report["pr"]
    s = report["summary"]
    lines = [
        "",
        "=" * 40,
        f"PR #{pr['number']}: {pr['title']}",
        f"State: {pr['state']}",
        "=" * 40,
        "",
        "## Summary",
        f"- Review threads: {s['total_threads']} total, {s['unresolved_threads']} unresolved",
        f"- Reviews: {s['total_reviews']} total ({s['approved']} approved, "
        f"{s['changes_requested']} requesting changes)",
        f"- General comments: {s['general_comments']} "
        f"({s['actionable_comments']} with actionable feedback)",
        "",
    ]

    if not s["requires_action"]:
        lines.append("## Status: All Clear")
        lines.append("No unresolved threads, change requests, or actionable feedback.")
        if s["approved"]:
            lines.append(f"PR has {s['approved']} approval(s).")
    else:
        lines.append("## Action Required")
        lines.append("")
        by_type: dict[str, list[dict]] = {}
        for item in report["actionable_items"]:
            by_type.setdefault(item["type"], []).append(item)

        threads = by_type.get("review_thread", [])
        if threads:
            lines.append(f"### Unresolved Review Threads ({len(threads)})")
            lines.append("")
            for t in threads:
                lines.append("---")
                lines.append(f"File: {t['path']}:{t['line'] if t['line'] is not None else 'N/A'}")
                lines.append(f"Thread ID: {t['id']}")
                lines.append(f"Outdated: {str(t['is_outdated']).lower()}")
                lines.append(f"Action: {t['action_type']}")
                lines.append("Comments:")
                for c in t["comments"]:
                    body = c["body"].replace("\n", "\n    ")
                    lines.append(f"  - @{c['author']}: {body}")
                lines.append("")

        reviews = by_type.get("review", [])
        if reviews:
            lines.append(f"### Change Requests ({len(reviews)})")
            lines.append("")
            for r in reviews:
                lines.append("---")
                lines.append(f"From: @{r['author']}")
                lines.append(f"Date: {r['created_at']}")
                lines.append(f"Review Body:\n{r['body']}")
                lines.append("")

        comments = by_type.get("comment_review", [])
        if comments:
            lines.append(f"### Comments with Actionable Feedback ({len(comments)})")
            lines.append("")
            for c in comments:
                preview = " ".join(c["body"].splitlines()[:3])
                if len(preview) > 200:
                    preview = preview[:200] + "..."
                lines.append("---")
                lines.append(f"From: @{c['author']}")
                lines.append(f"Date: {c['created_at']}")
                lines.append(f"Preview: {preview}")
                for finding in c["extracted_items"] or []:
                    lines.append(f"  * {finding}")
                lines.append("")

    recent = report.get("recent_comments")
    if recent:
        lines.append("")
        lines.append("### Recent General Comments")
        lines.append("")
        for c in recent:
            first_line = c["body"].splitlines()[0] if c["body"] else ""
            lines.append(f"- @{c['author']} ({c['created_at'][:10]}): {first_line}")

    return "\n".join(lines)


def reply_to_thread(thread_id: str, body: str, resolve: bool = False) -> dict:
    """Reply to a review thread and optionally resolve it.

    A failed resolve after a successful reply is logged and reported with
    ``resolved: False``; the reply itself already landed.
    """
    comment_id = gh_ops.post_review_thread_reply(thread_id, body)
    resolved = False
    resolve_error = None
    if resolve:
        try:
            resolved = gh_ops.resolve_review_thread(thread_id)
        except GhError as e:
            _log.warning("feedback: reply posted but resolving %s failed: %s", thread_id, e)
            resolve_error = str(e)
    result = {
        "success": True,
        "comment_id": comment_id,
        "thread_id": thread_id,
        "resolved": resolved,
    }
    if resolve_error:
        result["resolve_error"] = resolve_error
    return result


def resolve_thread(thread_id: str) -> bool:
    """Resolve a review thread.  Returns the thread's resolved flag."""
    resolved = gh_ops.resolve_review_thread(thread_id)
    if not resolved:
        _log.warning("feedback: thread %s still unresolved after resolve", thread_id)
    return resolved
