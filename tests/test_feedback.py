"""Tests for the feedback report and thread replies."""

from unittest import mock

import pytest

from prw_core import feedback, gh_ops
from prw_core.gh_ops import NotFoundError, TransientFetchError
from prw_core.snapshot import ReviewThread

from conftest import comment, review, snap, thread


class TestThreadActionType:
    def test_change_request_wording(self):
        assert feedback.thread_action_type(thread("T1", body="Please fix this")) == "code_change"

    def test_question_needs_response(self):
        assert feedback.thread_action_type(thread("T1", body="Why is this here?")) == "response"

    def test_uses_last_comment(self):
        t = ReviewThread(id="T1", is_resolved=False, comments=(
            comment("C1", body="You should rename this"),
            comment("C2", body="Thanks, looks right now"),
        ))
        assert feedback.thread_action_type(t) == "response"

    def test_empty_thread(self):
        assert feedback.thread_action_type(ReviewThread(id="T1", is_resolved=False)) == "unknown"


class TestExtractFindings:
    def test_numbered_bold_findings(self):
        body = ("Review:\n"
                "1. **Null check** missing in parser\n"
                "2. **Typo** in docs\n")
        assert feedback.extract_findings(body) == ["Null check missing in parser",
                                                   "Typo in docs"]

    def test_bold_fix_heading(self):
        assert feedback.extract_findings("**Fix:** use a lock") == ["use a lock"]

    def test_plain_prose(self):
        assert feedback.extract_findings("Nice work overall.") == []


class TestActionableComments:
    def test_filters_comments(self):
        items = feedback.actionable_comments([
            comment("C1", body="LGTM"),
            comment("C2", body="This is a blocker: crash on start"),
            comment("C3", body="You should consider renaming"),
            comment("C4", body="1. **Leak** in the pool, please fix"),
        ])
        assert [i["id"] for i in items] == ["C2", "C4"]
        assert items[0]["extracted_items"] is None
        assert items[1]["extracted_items"] == ["Leak in the pool, please fix"]


def _busy_snapshot():
    return snap(
        threads=[thread("T1"), thread("T2", resolved=True)],
        reviews=[
            review("R1", author="dave", state="CHANGES_REQUESTED", minutes=0),
            review("R2", author="dave", state="APPROVED", minutes=5),
            review("R3", author="erin", state="CHANGES_REQUESTED", minutes=6,
                   body="Needs tests"),
        ],
        comments=[comment(f"C{i}", body=f"note {i}", minutes=i) for i in range(7)],
    )


class TestBuildReport:
    def test_summary_counts(self):
        report = feedback.build_report(_busy_snapshot(), 42)

        assert report["pr"] == {"number": 42, "title": "Add feature", "state": "OPEN"}
        assert report["summary"] == {
            "total_threads": 2,
            "unresolved_threads": 1,
            "total_reviews": 3,
            "changes_requested": 1,
            "approved": 1,
            "general_comments": 7,
            "actionable_comments": 0,
            "requires_action": True,
        }

    def test_actionable_items(self):
        items = feedback.build_report(_busy_snapshot(), 42)["actionable_items"]

        assert [(i["type"], i["id"]) for i in items] == [("review_thread", "T1"),
                                                         ("review", "R3")]
        assert items[0]["action_type"] == "code_change"

    def test_recent_comments_capped(self):
        report = feedback.build_report(_busy_snapshot(), 42)
        assert [c["id"] for c in report["recent_comments"]] == ["C2", "C3", "C4", "C5", "C6"]
        assert len(report["threads"]) == 2

    def test_unresolved_only(self):
        report = feedback.build_report(_busy_snapshot(), 42, unresolved_only=True)
        assert [t["id"] for t in report["threads"]] == ["T1"]
        assert "recent_comments" not in report

    def test_all_clear(self):
        report = feedback.build_report(
            snap(reviews=[review("R1", state="APPROVED")]), 7)
        assert report["summary"]["requires_action"] is False
        assert report["actionable_items"] == []


class TestFormatReport:
    def test_action_required(self):
        text = feedback.format_report(feedback.build_report(_busy_snapshot(), 42))

        assert "PR #42: Add feature" in text
        assert "### Unresolved Review Threads (1)" in text
        assert "Thread ID: T1" in text
        assert "File: src/app.py:10" in text
        assert "### Change Requests (1)" in text
        assert "From: @erin" in text
        assert "### Recent General Comments" in text

    def test_all_clear(self):
        report = feedback.build_report(snap(reviews=[review("R1", state="APPROVED")]), 7)
        text = feedback.format_report(report)

        assert "## Status: All Clear" in text
        assert "PR has 1 approval(s)." in text


class TestReplyToThread:
    def test_reply_only(self):
        with mock.patch.object(gh_ops, "post_review_thread_reply", return_value="C9"), \
                mock.patch.object(gh_ops, "resolve_review_thread") as mock_resolve:
            result = feedback.reply_to_thread("PRRT_1", "Done")

        assert result == {"success": True, "comment_id": "C9", "thread_id": "PRRT_1",
                          "resolved": False}
        mock_resolve.assert_not_called()

    def test_reply_and_resolve(self):
        with mock.patch.object(gh_ops, "post_review_thread_reply", return_value="C9"), \
                mock.patch.object(gh_ops, "resolve_review_thread", return_value=True):
            result = feedback.reply_to_thread("PRRT_1", "Done", resolve=True)

        assert result["resolved"] is True

    def test_resolve_failure_is_reported(self):
        with mock.patch.object(gh_ops, "post_review_thread_reply", return_value="C9"), \
                mock.patch.object(gh_ops, "resolve_review_thread",
                                  side_effect=TransientFetchError("HTTP 502")):
            result = feedback.reply_to_thread("PRRT_1", "Done", resolve=True)

        assert result["success"] is True
        assert result["resolved"] is False
        assert result["resolve_error"] == "HTTP 502"

    def test_resolve_thread(self):
        with mock.patch.object(gh_ops, "resolve_review_thread", return_value=False):
            assert feedback.resolve_thread("PRRT_1") is False

    def test_reply_failure_propagates(self):
        with mock.patch.object(gh_ops, "post_review_thread_reply",
                               side_effect=NotFoundError("thread gone")):
            with pytest.raises(NotFoundError):
                feedback.reply_to_thread("PRRT_1", "Done")
