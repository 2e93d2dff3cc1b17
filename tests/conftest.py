"""Shared test helpers for prw_core tests."""

import io
from datetime import datetime, timedelta, timezone

import pytest
from rich.console import Console

from prw_core import term
from prw_core.gh_ops import PrHandle
from prw_core.snapshot import (
    CheckRun,
    Comment,
    Review,
    ReviewThread,
    Snapshot,
)

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def prw_home(tmp_path, monkeypatch):
    """Point PRW_HOME at a temp dir and drop PRW_* env vars from the host."""
    for var in ("PRW_REPO", "PRW_INTERVAL", "PRW_TIMEOUT", "PRW_QUIET_PERIOD",
                "PRW_CALL_TIMEOUT", "PRW_DEBUG"):
        monkeypatch.delenv(var, raising=False)
    home = tmp_path / "prw"
    home.mkdir()
    monkeypatch.setenv("PRW_HOME", str(home))
    return home


@pytest.fixture(autouse=True)
def term_output(monkeypatch):
    """Capture operator status lines instead of writing to the real stderr."""
    buf = io.StringIO()
    monkeypatch.setattr(term, "_console", Console(file=buf, highlight=False,
                                                  color_system=None, width=200))
    return buf


@pytest.fixture
def pr():
    return PrHandle(owner="owner", repo="repo", number=42)


def at(minutes: float = 0) -> datetime:
    return T0 + timedelta(minutes=minutes)


def comment(id: str, author: str = "alice", body: str = "looks good",
            minutes: float = 0, reply_to: str | None = None) -> Comment:
    return Comment(id=id, author=author, body=body, created_at=at(minutes),
                   reply_to_id=reply_to)


def thread(id: str, resolved: bool = False, path: str = "src/app.py", line: int = 10,
           body: str = "Please fix this", author: str = "bob") -> ReviewThread:
    return ReviewThread(id=id, is_resolved=resolved, path=path, line=line,
                        comments=(comment(f"{id}-c1", author=author, body=body),))


def review(id: str, author: str = "carol", state: str = "COMMENTED",
           minutes: float = 0, body: str = "") -> Review:
    return Review(id=id, author=author, state=state, body=body, created_at=at(minutes))


def check(name: str, bucket: str = "PASS", description: str = "", link: str = "") -> CheckRun:
    return CheckRun(name=name, bucket=bucket, description=description, link=link)


def snap(threads=(), reviews=(), comments=(), checks=(), state: str = "OPEN",
         title: str = "Add feature", is_draft: bool = False) -> Snapshot:
    return Snapshot(
        pr_state=state,
        review_threads=tuple(threads),
        reviews=tuple(reviews),
        comments=tuple(comments),
        ci_checks=tuple(checks),
        sampled_at=T0,
        title=title,
        is_draft=is_draft,
    )


class FakeClock:
    """Monotonic clock whose sleep() advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    @property
    def slept(self) -> float:
        return sum(self.sleeps)


class ScriptedSampler:
    """StateSampler returning (or raising) a scripted sequence of results.

    The last entry repeats once the script runs out.  Pass a clock to record
    the time of each sample.
    """

    def __init__(self, *results, clock: FakeClock | None = None):
        self.results = list(results)
        self.calls = 0
        self.clock = clock
        self.sampled_at: list[float] = []

    def sample(self, pr):
        idx = min(self.calls, len(self.results) - 1)
        self.calls += 1
        if self.clock is not None:
            self.sampled_at.append(self.clock())
        result = self.results[idx]
        if isinstance(result, BaseException):
            raise result
        if callable(result):
            return result()
        return result
