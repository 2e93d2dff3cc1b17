"""Snapshot differ: classify what changed between two samples.

Events come out in a fixed priority order -- new threads, new reviews, new
comments, then a change in the unresolved-thread count -- so a consumer that
stops on the first event always sees inline review threads before anything
else that arrived in the same tick.
"""

from dataclasses import dataclass
from typing import Union

from prw_core.snapshot import Comment, Review, ReviewThread, Snapshot

INCREASED = "INCREASED"
DECREASED = "DECREASED"

# Operator-facing status keywords
STATUS_THREAD_RECEIVED = "THREAD_RECEIVED"
STATUS_REVIEW_RECEIVED = "REVIEW_RECEIVED"
STATUS_COMMENT_RECEIVED = "COMMENT_RECEIVED"
STATUS_THREAD_UNRESOLVED = "THREAD_UNRESOLVED"
STATUS_THREADS_RESOLVED = "THREADS_RESOLVED"
STATUS_NO_CHANGE = "NO_CHANGE"


@dataclass(frozen=True)
class ThreadAdded:
    thread: ReviewThread

    @property
    def status(self) -> str:
        return STATUS_THREAD_RECEIVED

    def to_dict(self) -> dict:
        t = self.thread
        first = t.comments[0] if t.comments else None
        return {
            "type": "thread_added",
            "id": t.id,
            "path": t.path,
            "line": t.line,
            "is_resolved": t.is_resolved,
            "author": first.author if first else None,
            "body": first.body if first else "",
        }


@dataclass(frozen=True)
class ReviewAdded:
    review: Review

    @property
    def status(self) -> str:
        return STATUS_REVIEW_RECEIVED

    def to_dict(self) -> dict:
        r = self.review
        return {
            "type": "review_added",
            "id": r.id,
            "author": r.author,
            "state": r.state,
            "body": r.body,
            "created_at": r.created_at.isoformat(),
        }


@dataclass(frozen=True)
class CommentAdded:
    comment: Comment

    @property
    def status(self) -> str:
        return STATUS_COMMENT_RECEIVED

    def to_dict(self) -> dict:
        c = self.comment
        return {
            "type": "comment_added",
            "id": c.id,
            "author": c.author,
            "body": c.body,
            "created_at": c.created_at.isoformat(),
        }


@dataclass(frozen=True)
class ResolutionCountChanged:
    previous: int
    current: int
    direction: str

    @property
    def status(self) -> str:
        if self.direction == INCREASED:
            return STATUS_THREAD_UNRESOLVED
        return STATUS_THREADS_RESOLVED

    def to_dict(self) -> dict:
        return {
            "type": "resolution_count_changed",
            "previous_unresolved": self.previous,
            "current_unresolved": self.current,
            "direction": self.direction,
        }


@dataclass(frozen=True)
class NoChange:
    @property
    def status(self) -> str:
        return STATUS_NO_CHANGE

    def to_dict(self) -> dict:
        return {"type": "no_change"}


DeltaEvent = Union[ThreadAdded, ReviewAdded, CommentAdded, ResolutionCountChanged, NoChange]


def diff(prev: Snapshot, curr: Snapshot) -> list[DeltaEvent]:
    """Compare two snapshots by entity id.

    Returns at least one event; ``[NoChange()]`` when nothing changed.
    """
    events: list[DeltaEvent] = []

    known = prev.thread_ids()
    events.extend(ThreadAdded(t) for t in curr.review_threads if t.id not in known)

    known = prev.review_ids()
    events.extend(ReviewAdded(r) for r in curr.reviews if r.id not in known)

    known = prev.comment_ids()
    events.extend(CommentAdded(c) for c in curr.comments if c.id not in known)

    before, after = prev.unresolved_count, curr.unresolved_count
    if before != after:
        events.append(ResolutionCountChanged(
            previous=before,
            current=after,
            direction=INCREASED if after > before else DECREASED,
        ))

    if not events:
        events.append(NoChange())
    return events


def is_actionable(event: DeltaEvent) -> bool:
    """Whether an event should wake up a waiting caller.

    Threads getting resolved is progress the caller itself usually made, so
    the loop keeps monitoring through it.
    """
    if isinstance(event, NoChange):
        return False
    if isinstance(event, ResolutionCountChanged) and event.direction == DECREASED:
        return False
    return True
