"""GitHub CLI wrapper for PR feedback operations.

Every call to the hosting service goes through :func:`run_gh`, which logs the
command and maps failures onto the error taxonomy below.  Callers never see a
raw ``CalledProcessError``:

- ``TransientFetchError`` -- network trouble, rate limits, 5xx, call timeouts.
- ``NotFoundError``       -- the PR, thread, or repo does not exist (anymore).
- ``AuthError``           -- gh missing, not logged in, or bad credentials.
- ``MalformedResponseError`` -- gh answered with JSON we cannot interpret.
"""

import json
import re
import shutil
import subprocess
from dataclasses import dataclass
from typing import Optional

from prw_core.paths import configure_logger, log_shell_command, run_shell_logged

_log = configure_logger("prw.gh_ops")


class GhError(Exception):
    """Base class for failures talking to GitHub through gh."""

    kind = "error"


class TransientFetchError(GhError):
    kind = "transient"


class NotFoundError(GhError):
    kind = "not_found"


class AuthError(GhError):
    kind = "auth"


class MalformedResponseError(GhError):
    kind = "malformed"


@dataclass(frozen=True)
class PrHandle:
    """Identifies one pull request."""
    owner: str
    repo: str
    number: int

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}"

    def __str__(self) -> str:
        return f"{self.slug}#{self.number}"


# Order matters: rate limiting is reported with 403, which must not be
# mistaken for an auth failure.
_TRANSIENT_PATTERNS = re.compile(
    r"rate limit|secondary rate|HTTP 5\d\d|timed? ?out|connection (reset|refused)|"
    r"could not connect|TLS handshake|EOF",
    re.IGNORECASE,
)
_NOT_FOUND_PATTERNS = re.compile(
    r"Could not resolve to a|HTTP 404|Not Found|NOT_FOUND|no pull requests found",
    re.IGNORECASE,
)
_AUTH_PATTERNS = re.compile(
    r"HTTP 401|Bad credentials|gh auth login|authentication required|"
    r"not logged in|HTTP 403",
    re.IGNORECASE,
)


def classify_failure(output: str) -> GhError:
    """Map gh error output onto the error taxonomy."""
    message = output.strip() or "gh failed without output"
    if _TRANSIENT_PATTERNS.search(message):
        return TransientFetchError(message)
    if _NOT_FOUND_PATTERNS.search(message):
        return NotFoundError(message)
    if _AUTH_PATTERNS.search(message):
        return AuthError(message)
    return TransientFetchError(message)


_gh_ready = False


def _check_gh() -> None:
    """Check that gh CLI is installed and authenticated (once per process)."""
    global _gh_ready
    if _gh_ready:
        return
    if not shutil.which("gh"):
        raise AuthError(
            "The GitHub CLI (gh) is not installed.\n"
            "Install it: https://cli.github.com"
        )
    result = subprocess.run(
        ["gh", "auth", "status"],
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        raise AuthError("gh is not authenticated. Run: gh auth login")
    _gh_ready = True


def run_gh(*args: str, timeout: Optional[float] = None,
           check: bool = True) -> subprocess.CompletedProcess:
    """Run a gh CLI command.

    Args:
        args: Arguments after ``gh``.
        timeout: Per-call timeout in seconds; exceeding it raises
            TransientFetchError.
        check: Raise the classified error on a non-zero exit.
    """
    _check_gh()
    cmd = ["gh", *args]
    try:
        result = run_shell_logged(
            cmd, prefix="gh", capture_output=True, text=True, timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        log_shell_command(cmd, prefix="gh timeout")
        raise TransientFetchError(f"gh timed out after {timeout}s: {' '.join(args[:3])}")
    if check and result.returncode != 0:
        raise classify_failure(f"{result.stderr}\n{result.stdout}")
    return result


def _load_json(text: str, what: str):
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedResponseError(f"{what}: invalid JSON ({e})")


def graphql(query: str, timeout: Optional[float] = None, **variables) -> dict:
    """Run a GraphQL query through ``gh api graphql`` and return ``data``.

    Integer variables are passed with ``-F`` (typed), everything else with
    ``-f`` (string).  ``None`` values are omitted.
    """
    args = ["api", "graphql", "-f", f"query={query}"]
    for name, value in variables.items():
        if value is None:
            continue
        flag = "-F" if isinstance(value, int) and not isinstance(value, bool) else "-f"
        args.extend([flag, f"{name}={value}"])

    result = run_gh(*args, timeout=timeout, check=False)
    if result.returncode != 0:
        raise classify_failure(f"{result.stderr}\n{result.stdout}")

    payload = _load_json(result.stdout, "graphql response")
    if not isinstance(payload, dict):
        raise MalformedResponseError("graphql response: expected an object")
    if payload.get("errors"):
        messages = "; ".join(str(e.get("message", e)) for e in payload["errors"])
        raise classify_failure(messages)
    data = payload.get("data")
    if not isinstance(data, dict):
        raise MalformedResponseError("graphql response: missing data")
    return data


def _pull_request_node(data: dict, pr: PrHandle) -> dict:
    repo = data.get("repository")
    if repo is None:
        raise NotFoundError(f"Repository {pr.slug} not found")
    node = repo.get("pullRequest") if isinstance(repo, dict) else None
    if node is None:
        raise NotFoundError(f"Could not fetch PR {pr}")
    if not isinstance(node, dict):
        raise MalformedResponseError(f"PR {pr}: pullRequest is not an object")
    return node


def _paginate(query: str, connection: str, pr: PrHandle,
              timeout: Optional[float] = None) -> tuple[dict, list]:
    """Fetch every page of one pullRequest connection.

    Returns the pullRequest node of the first page (for scalar fields) and
    the concatenated nodes of all pages.
    """
    first_node: dict | None = None
    nodes: list = []
    cursor: str | None = None
    while True:
        data = graphql(query, timeout=timeout, owner=pr.owner, repo=pr.repo,
                       pr=pr.number, cursor=cursor)
        node = _pull_request_node(data, pr)
        if first_node is None:
            first_node = node
        conn = node.get(connection)
        if not isinstance(conn, dict) or not isinstance(conn.get("nodes"), list):
            raise MalformedResponseError(f"PR {pr}: {connection} missing nodes")
        nodes.extend(conn["nodes"])

        page = conn.get("pageInfo") or {}
        if not page.get("hasNextPage"):
            break
        cursor = page.get("endCursor")
        if not cursor:
            raise MalformedResponseError(
                f"PR {pr}: {connection} has a next page but no cursor")
        _log.debug("gh_ops: %s %s next page after %s", pr, connection, cursor)
    return first_node, nodes


_REVIEWS_QUERY = """
query($owner: String!, $repo: String!, $pr: Int!, $cursor: String) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $pr) {
      state
      title
      isDraft
      updatedAt
      reviews(first: 100, after: $cursor) {
        pageInfo { hasNextPage endCursor }
        nodes {
          id
          state
          body
          author { login }
          createdAt
        }
      }
    }
  }
}
"""

_COMMENTS_QUERY = """
query($owner: String!, $repo: String!, $pr: Int!, $cursor: String) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $pr) {
      comments(first: 100, after: $cursor) {
        pageInfo { hasNextPage endCursor }
        nodes {
          id
          body
          author { login }
          createdAt
        }
      }
    }
  }
}
"""

_THREADS_QUERY = """
query($owner: String!, $repo: String!, $pr: Int!, $cursor: String) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $pr) {
      reviewThreads(first: 100, after: $cursor) {
        pageInfo { hasNextPage endCursor }
        nodes {
          id
          isResolved
          isOutdated
          path
          line
          comments(first: 100) {
            nodes {
              id
              body
              author { login }
              createdAt
              replyTo { id }
            }
          }
        }
      }
    }
  }
}
"""


def get_pull_request(pr: PrHandle, timeout: Optional[float] = None) -> dict:
    """Fetch PR state, reviews, and general comments (all pages).

    Returns a dict with ``state``, ``title``, ``isDraft``, ``updatedAt``,
    ``reviews`` and ``comments`` (lists of raw GraphQL nodes).
    """
    node, reviews = _paginate(_REVIEWS_QUERY, "reviews", pr, timeout=timeout)
    _, comments = _paginate(_COMMENTS_QUERY, "comments", pr, timeout=timeout)
    return {
        "state": node.get("state"),
        "title": node.get("title", ""),
        "isDraft": bool(node.get("isDraft")),
        "updatedAt": node.get("updatedAt"),
        "reviews": reviews,
        "comments": comments,
    }


def list_review_threads(pr: PrHandle, timeout: Optional[float] = None) -> list[dict]:
    """Fetch every review thread on a PR (no page cap)."""
    _, threads = _paginate(_THREADS_QUERY, "reviewThreads", pr, timeout=timeout)
    return threads


def list_check_runs(pr: PrHandle, timeout: Optional[float] = None) -> list[dict]:
    """List CI checks for a PR as ``gh pr checks`` reports them.

    gh exits non-zero when checks are pending or failing but still prints the
    JSON, so the exit code alone is not an error signal.  A PR without any
    checks yields an empty list.
    """
    result = run_gh(
        "pr", "checks", str(pr.number),
        "--repo", pr.slug,
        "--json", "name,bucket,description,link",
        timeout=timeout,
        check=False,
    )
    out = result.stdout.strip()
    if out:
        checks = _load_json(out, "gh pr checks")
        if not isinstance(checks, list):
            raise MalformedResponseError("gh pr checks: expected a list")
        return checks
    if "no checks reported" in result.stderr.lower():
        return []
    if result.returncode == 0:
        return []
    raise classify_failure(result.stderr)


_REPLY_MUTATION = """
mutation($body: String!, $threadId: ID!) {
  addPullRequestReviewThreadReply(input: {
    body: $body,
    pullRequestReviewThreadId: $threadId
  }) {
    comment {
      id
      body
      author { login }
      createdAt
    }
  }
}
"""

_RESOLVE_MUTATION = """
mutation($threadId: ID!) {
  resolveReviewThread(input: {threadId: $threadId}) {
    thread {
      id
      isResolved
    }
  }
}
"""


def post_review_thread_reply(thread_id: str, body: str,
                             timeout: Optional[float] = None) -> str:
    """Reply to a review thread, returning the new comment id.

    Raises NotFoundError if the thread no longer exists.
    """
    data = graphql(_REPLY_MUTATION, timeout=timeout, body=body, threadId=thread_id)
    reply = data.get("addPullRequestReviewThreadReply") or {}
    comment = reply.get("comment") or {}
    comment_id = comment.get("id")
    if not comment_id:
        raise MalformedResponseError(f"reply to {thread_id}: no comment id returned")
    _log.info("gh_ops: replied to thread %s (comment %s)", thread_id, comment_id)
    return comment_id


def resolve_review_thread(thread_id: str, timeout: Optional[float] = None) -> bool:
    """Resolve a review thread.  Returns the thread's resolved flag."""
    data = graphql(_RESOLVE_MUTATION, timeout=timeout, threadId=thread_id)
    thread = (data.get("resolveReviewThread") or {}).get("thread")
    if not isinstance(thread, dict):
        raise MalformedResponseError(f"resolve {thread_id}: no thread returned")
    resolved = bool(thread.get("isResolved"))
    _log.info("gh_ops: resolve thread %s -> %s", thread_id, resolved)
    return resolved


MERGE_STRATEGIES = ("merge", "squash", "rebase")


def merge_pull_request(pr: PrHandle, strategy: str = "squash",
                       delete_branch: bool = True) -> bool:
    """Merge a PR with the given strategy.  Returns True on success."""
    if strategy not in MERGE_STRATEGIES:
        raise ValueError(f"Unknown merge strategy: {strategy!r}")
    args = ["pr", "merge", str(pr.number), "--repo", pr.slug, f"--{strategy}"]
    if delete_branch:
        args.append("--delete-branch")
    result = run_gh(*args, check=False)
    if result.returncode != 0:
        _log.warning("gh_ops: merge of %s failed: %s", pr, result.stderr.strip())
    return result.returncode == 0


def mark_pr_ready(pr: PrHandle) -> bool:
    """Mark a draft PR as ready for review."""
    result = run_gh("pr", "ready", str(pr.number), "--repo", pr.slug, check=False)
    return result.returncode == 0


def post_pr_comment(pr: PrHandle, body: str) -> Optional[str]:
    """Post a general PR comment, returning its URL (None on failure)."""
    result = run_gh(
        "pr", "comment", str(pr.number),
        "--repo", pr.slug,
        "--body", body,
        check=False,
    )
    if result.returncode == 0:
        return result.stdout.strip()
    return None


def add_pr_label(pr: PrHandle, label: str) -> bool:
    """Add a label to a PR.  Fails if the label does not exist in the repo."""
    result = run_gh(
        "pr", "edit", str(pr.number),
        "--repo", pr.slug,
        "--add-label", label,
        check=False,
    )
    return result.returncode == 0


def get_current_user() -> Optional[str]:
    """Return the login gh is authenticated as, or None."""
    result = run_gh("api", "user", "--jq", ".login", check=False)
    login = result.stdout.strip()
    if result.returncode == 0 and login:
        return login
    return None


def resolve_repo(repo: Optional[str] = None) -> tuple[str, str]:
    """Return (owner, name) from ``OWNER/REPO`` or the current directory's repo."""
    if repo:
        owner, _, name = repo.partition("/")
        if not owner or not name or "/" in name:
            raise ValueError(f"Expected OWNER/REPO, got {repo!r}")
        return owner, name

    result = run_gh("repo", "view", "--json", "owner,name", check=False)
    if result.returncode != 0 or not result.stdout.strip():
        raise NotFoundError("Not in a git repository. Use --repo OWNER/REPO to specify.")
    info = _load_json(result.stdout, "gh repo view")
    try:
        return info["owner"]["login"], info["name"]
    except (KeyError, TypeError):
        raise MalformedResponseError("gh repo view: missing owner/name")


# Issues carrying these labels are already handled or parked.
DEFAULT_EXCLUDED_LABELS = ("auto-fixing", "auto-fixed", "wontfix", "duplicate",
                           "blocked", "on-hold")


def list_issues(repo: str, labels: tuple[str, ...] = (),
                exclude_labels: tuple[str, ...] = (),
                limit: int = 50, state: str = "open") -> list[dict]:
    """List issues of ``repo`` (OWNER/REPO) with label include/exclude filters."""
    args = [
        "issue", "list",
        "--repo", repo,
        "--state", state,
        "--limit", str(limit),
        "--json", "number,title,body,labels,author,assignees,createdAt,updatedAt,url",
    ]
    for label in labels:
        args.extend(["--label", label])
    result = run_gh(*args)
    issues = _load_json(result.stdout or "[]", "gh issue list")
    if not isinstance(issues, list):
        raise MalformedResponseError("gh issue list: expected a list")

    excluded = set(exclude_labels) | set(DEFAULT_EXCLUDED_LABELS)
    kept = []
    for issue in issues:
        names = {lbl.get("name") for lbl in issue.get("labels") or []}
        if names & excluded:
            continue
        kept.append(issue)
    return kept
