"""Immutable PR state snapshots and the parse step that builds them.

A :class:`Snapshot` is taken fresh on every sample and never mutated.  The
``parse_*`` functions are the only place raw gh/GraphQL JSON is interpreted;
anything unexpected raises :class:`~prw_core.gh_ops.MalformedResponseError`.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Literal, Optional

from prw_core.gh_ops import MalformedResponseError

PrState = Literal["OPEN", "MERGED", "CLOSED"]
ReviewState = Literal["APPROVED", "CHANGES_REQUESTED", "COMMENTED", "DISMISSED", "PENDING"]
CheckBucket = Literal["PASS", "FAIL", "PENDING", "SKIPPED"]

PR_OPEN = "OPEN"
PR_MERGED = "MERGED"
PR_CLOSED = "CLOSED"
VALID_PR_STATES = {PR_OPEN, PR_MERGED, PR_CLOSED}

REVIEW_APPROVED = "APPROVED"
REVIEW_CHANGES_REQUESTED = "CHANGES_REQUESTED"
REVIEW_COMMENTED = "COMMENTED"
REVIEW_DISMISSED = "DISMISSED"
REVIEW_PENDING = "PENDING"
VALID_REVIEW_STATES = {REVIEW_APPROVED, REVIEW_CHANGES_REQUESTED, REVIEW_COMMENTED,
                       REVIEW_DISMISSED, REVIEW_PENDING}

CHECK_PASS = "PASS"
CHECK_FAIL = "FAIL"
CHECK_PENDING = "PENDING"
CHECK_SKIPPED = "SKIPPED"

# gh pr checks bucket names -> ours.  A cancelled check did not pass.
_GH_BUCKETS = {
    "pass": CHECK_PASS,
    "fail": CHECK_FAIL,
    "cancel": CHECK_FAIL,
    "pending": CHECK_PENDING,
    "skipping": CHECK_SKIPPED,
}

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Comment:
    id: str
    author: str
    body: str
    created_at: datetime
    reply_to_id: Optional[str] = None


@dataclass(frozen=True)
class ReviewThread:
    id: str
    is_resolved: bool
    is_outdated: bool = False
    path: Optional[str] = None
    line: Optional[int] = None
    comments: tuple[Comment, ...] = ()


@dataclass(frozen=True)
class Review:
    id: str
    author: str
    state: str
    body: str
    created_at: datetime


@dataclass(frozen=True)
class CheckRun:
    name: str
    bucket: str
    description: str = ""
    link: str = ""


@dataclass(frozen=True)
class Snapshot:
    """PR state at one sampling instant."""
    pr_state: str
    review_threads: tuple[ReviewThread, ...] = ()
    reviews: tuple[Review, ...] = ()
    comments: tuple[Comment, ...] = ()
    ci_checks: tuple[CheckRun, ...] = ()
    sampled_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    title: str = ""
    is_draft: bool = False
    updated_at: Optional[datetime] = None

    @property
    def unresolved_threads(self) -> tuple[ReviewThread, ...]:
        return tuple(t for t in self.review_threads if not t.is_resolved)

    @property
    def unresolved_count(self) -> int:
        return len(self.unresolved_threads)

    def thread_ids(self) -> set[str]:
        return {t.id for t in self.review_threads}

    def review_ids(self) -> set[str]:
        return {r.id for r in self.reviews}

    def comment_ids(self) -> set[str]:
        return {c.id for c in self.comments}

    def summary(self) -> dict:
        """Counts for log lines and JSON payloads."""
        return {
            "state": self.pr_state,
            "threads": len(self.review_threads),
            "unresolved_threads": self.unresolved_count,
            "reviews": len(self.reviews),
            "comments": len(self.comments),
            "checks": len(self.ci_checks),
        }


def latest_reviews_by_author(reviews: Iterable[Review]) -> dict[str, Review]:
    """Keep only each author's most recent review.

    PENDING reviews (drafts not yet submitted) never count as a stance.
    On equal timestamps the review seen last wins.
    """
    latest: dict[str, Review] = {}
    for review in reviews:
        if review.state == REVIEW_PENDING:
            continue
        current = latest.get(review.author)
        if current is None or review.created_at >= current.created_at:
            latest[review.author] = review
    return latest


# ---------------------------------------------------------------------------
# Parsing raw gh / GraphQL JSON
# ---------------------------------------------------------------------------

def parse_timestamp(value) -> datetime:
    """Parse an ISO-8601 timestamp as GitHub emits it (``...Z``)."""
    if not value:
        return _EPOCH
    if not isinstance(value, str):
        raise MalformedResponseError(f"timestamp: expected string, got {value!r}")
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise MalformedResponseError(f"timestamp: cannot parse {value!r}")
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _require(node, key: str, what: str):
    if not isinstance(node, dict):
        raise MalformedResponseError(f"{what}: expected an object, got {type(node).__name__}")
    if key not in node or node[key] is None:
        raise MalformedResponseError(f"{what}: missing '{key}'")
    return node[key]


def _author(node: dict) -> str:
    # Deleted accounts come back as author: null
    author = node.get("author")
    if isinstance(author, dict):
        return author.get("login") or "ghost"
    return "ghost"


def parse_comment(node: dict) -> Comment:
    reply_to = node.get("replyTo") if isinstance(node, dict) else None
    return Comment(
        id=_require(node, "id", "comment"),
        author=_author(node),
        body=node.get("body") or "",
        created_at=parse_timestamp(node.get("createdAt")),
        reply_to_id=reply_to.get("id") if isinstance(reply_to, dict) else None,
    )


def parse_review(node: dict) -> Review:
    state = _require(node, "state", "review")
    if state not in VALID_REVIEW_STATES:
        raise MalformedResponseError(f"review: unknown state {state!r}")
    return Review(
        id=_require(node, "id", "review"),
        author=_author(node),
        state=state,
        body=node.get("body") or "",
        created_at=parse_timestamp(node.get("createdAt")),
    )


def _thread_comments(node: dict) -> list:
    conn = node.get("comments")
    if conn is None:
        return []
    if not isinstance(conn, dict):
        raise MalformedResponseError(
            f"review thread: comments should be an object, got {type(conn).__name__}")
    nodes = conn.get("nodes")
    if nodes is None:
        return []
    if not isinstance(nodes, list):
        raise MalformedResponseError("review thread: comments.nodes should be a list")
    return nodes


def parse_thread(node: dict) -> ReviewThread:
    thread_id = _require(node, "id", "review thread")
    return ReviewThread(
        id=thread_id,
        is_resolved=bool(_require(node, "isResolved", "review thread")),
        is_outdated=bool(node.get("isOutdated")),
        path=node.get("path"),
        line=node.get("line"),
        comments=tuple(parse_comment(c) for c in _thread_comments(node)),
    )


def parse_check(node: dict) -> CheckRun:
    raw = str(_require(node, "bucket", "check")).lower()
    bucket = _GH_BUCKETS.get(raw)
    if bucket is None:
        raise MalformedResponseError(f"check: unknown bucket {raw!r}")
    return CheckRun(
        name=_require(node, "name", "check"),
        bucket=bucket,
        description=node.get("description") or "",
        link=node.get("link") or "",
    )


def _unique(items, key) -> tuple:
    """Drop later duplicates, keeping sampler order."""
    seen = set()
    out = []
    for item in items:
        k = key(item)
        if k in seen:
            continue
        seen.add(k)
        out.append(item)
    return tuple(out)


def build_snapshot(pr_data: dict, threads: list, checks: list,
                   sampled_at: Optional[datetime] = None) -> Snapshot:
    """Assemble a Snapshot from the raw results of one sampling round."""
    state = _require(pr_data, "state", "pull request")
    if state not in VALID_PR_STATES:
        raise MalformedResponseError(f"pull request: unknown state {state!r}")
    for name, value in (("reviews", pr_data.get("reviews")),
                        ("comments", pr_data.get("comments")),
                        ("reviewThreads", threads), ("checks", checks)):
        if not isinstance(value, list):
            raise MalformedResponseError(f"pull request: {name} is not a list")

    updated = pr_data.get("updatedAt")
    return Snapshot(
        pr_state=state,
        review_threads=_unique((parse_thread(t) for t in threads), lambda t: t.id),
        reviews=_unique((parse_review(r) for r in pr_data["reviews"]), lambda r: r.id),
        comments=_unique((parse_comment(c) for c in pr_data["comments"]), lambda c: c.id),
        ci_checks=_unique((parse_check(c) for c in checks), lambda c: c.name),
        sampled_at=sampled_at or datetime.now(timezone.utc),
        title=pr_data.get("title") or "",
        is_draft=bool(pr_data.get("isDraft")),
        updated_at=parse_timestamp(updated) if updated else None,
    )
