"""Unit tests for ReportAggregator — scoring, merging and the wire shape."""

import json

import pytest

from chunkreview.core.chunked_analysis.aggregator import ReportAggregator
from chunkreview.core.chunked_analysis.models import (
    AggregatedReport,
    AnalysisKind,
    Category,
    ChunkOutcome,
    Comment,
    Severity,
)


# ── Fixtures ──────────────────────────────────────────────────────────────


def _ok(index: int, label: str, score: float, comments=None, items=None, summary="Looks fine"):
    return ChunkOutcome(
        order_index=index,
        source_label=label,
        success=True,
        score=score,
        summary=summary,
        comments=comments or [],
        action_items=items or [],
        attempts=1,
    )


def _failed(index: int, label: str, error: str = "timed out"):
    return ChunkOutcome(
        order_index=index,
        source_label=label,
        success=False,
        error_message=error,
        attempts=2,
    )


# ── Tests: Chunked aggregation ────────────────────────────────────────────


class TestAggregate:

    def test_score_is_mean_of_successes(self):
        outcomes = [_ok(0, "a.py", 80), _ok(1, "b.py", 90), _failed(2, "c.py")]
        report = ReportAggregator().aggregate(outcomes)

        assert report.overall_score == 85
        assert report.chunk_count == 3
        assert report.success_count == 2
        assert report.failure_count == 1
        assert report.chunked is True
        assert report.aggregation_error is False

    def test_score_is_rounded(self):
        report = ReportAggregator().aggregate([_ok(0, "a", 70), _ok(1, "b", 71), _ok(2, "c", 71)])
        assert report.overall_score == 71

    @pytest.mark.parametrize("scores, expected", [
        ([82, 83], 83),
        ([83, 84], 84),
        ([0.5], 1),
        ([99.5, 100], 100),
    ])
    def test_halves_round_up(self, scores, expected):
        outcomes = [_ok(i, f"f{i}", s) for i, s in enumerate(scores)]
        assert ReportAggregator().aggregate(outcomes).overall_score == expected

    def test_all_failed_scores_zero(self):
        report = ReportAggregator().aggregate([_failed(0, "a.py"), _failed(1, "b.py")])
        assert report.overall_score == 0
        assert report.chunk_count == report.success_count + report.failure_count

    def test_empty_outcomes(self):
        report = ReportAggregator().aggregate([])
        assert report.overall_score == 0
        assert report.chunk_count == 0

    def test_comments_relabeled_with_unit_label(self):
        comment = Comment(message="Missing null check", source_label="model-guess.py", line_ref=7)
        report = ReportAggregator().aggregate([_ok(0, "src/real.py", 60, comments=[comment])])

        assert report.comments[0].source_label == "src/real.py"
        assert report.comments[0].line_ref == 7
        # The outcome's own comment is left untouched
        assert comment.source_label == "model-guess.py"

    def test_failed_units_contribute_no_comments(self):
        failed = _failed(1, "b.py")
        failed.comments = [Comment(message="should not appear")]
        report = ReportAggregator().aggregate([_ok(0, "a.py", 50), failed])
        assert report.comments == []

    def test_action_items_deduplicated_in_order(self):
        outcomes = [
            _ok(0, "a", 80, items=["Add tests", "Document API"]),
            _ok(1, "b", 80, items=["Add tests", "Pin versions"]),
        ]
        report = ReportAggregator().aggregate(outcomes)
        assert report.action_items == ["Add tests", "Document API", "Pin versions"]

    def test_summary_sections(self):
        outcomes = [_ok(0, "a.py", 80, summary="Clean change"), _failed(1, "b.py", "rate limited")]
        summary = ReportAggregator().aggregate(outcomes).summary_text

        assert summary.startswith("# Chunked Review Report")
        assert "- Total files: 2" in summary
        assert "- Succeeded: 1" in summary
        assert "- Failed: 1" in summary
        assert "- [OK] a.py: Clean change" in summary
        assert "- [FAILED] b.py: review failed (rate limited)" in summary
        assert "## Overall guidance" in summary
        assert summary.index("a.py") < summary.index("b.py")

    def test_analysis_kind_title(self):
        summary = ReportAggregator().aggregate([_ok(0, "x", 60)], AnalysisKind.ANALYSIS).summary_text
        assert summary.startswith("# Chunked Analysis Report")
        assert "Warning" not in summary


class TestDegraded:

    def test_internal_fault_returns_flagged_report(self):
        broken = _ok(0, "a.py", 80)
        broken.comments = [None]  # not a Comment; relabeling fails
        report = ReportAggregator().aggregate([broken, _failed(1, "b.py")])

        assert report.aggregation_error is True
        assert report.overall_score == 0
        assert report.chunk_count == 2
        assert report.success_count == 1
        assert report.failure_count == 1

    def test_degraded_payload_carries_flag(self):
        broken = _ok(0, "a.py", 80)
        broken.comments = ["not a comment"]
        payload = ReportAggregator().aggregate([broken]).to_payload()

        assert payload["overall_score"] == 0
        assert payload["metadata"]["aggregation_error"] is True


# ── Tests: Single-call reports ────────────────────────────────────────────


class TestSingleReport:

    def test_success(self):
        outcome = _ok(0, "unknown", 91.6, items=["a", "a", "b"], summary="Good")
        report = ReportAggregator().single_report(outcome)

        assert report.overall_score == 92
        assert report.summary_text == "Good"
        assert report.action_items == ["a", "b"]
        assert report.chunked is False
        assert (report.chunk_count, report.success_count, report.failure_count) == (1, 1, 0)

    def test_failure(self):
        report = ReportAggregator().single_report(_failed(0, "unknown", "connection reset"))

        assert report.overall_score == 0
        assert report.summary_text == "Request failed: connection reset"
        assert (report.chunk_count, report.success_count, report.failure_count) == (1, 0, 1)


# ── Tests: Wire format ────────────────────────────────────────────────────


class TestPayload:

    def test_json_shape(self):
        comment = Comment(
            message="Hard-coded secret",
            severity=Severity.HIGH,
            category=Category.SECURITY,
            line_ref=3,
            suggestion="Read it from the environment",
        )
        report = ReportAggregator().aggregate(
            [_ok(0, "cfg.py", 40, comments=[comment], items=["Rotate the key"])]
        )
        data = json.loads(report.to_json())

        assert set(data) == {"overall_score", "summary", "comments", "recommendations", "metadata"}
        assert data["metadata"] == {
            "chunked": True,
            "total_chunks": 1,
            "successful_chunks": 1,
            "failed_chunks": 0,
        }
        assert data["recommendations"] == ["Rotate the key"]
        assert data["comments"] == [{
            "file": "cfg.py",
            "line": 3,
            "severity": "high",
            "category": "security",
            "content": "Hard-coded secret",
            "suggestion": "Read it from the environment",
        }]

    def test_single_call_metadata(self):
        report = AggregatedReport(overall_score=75, summary_text="ok", chunk_count=1, success_count=1)
        assert report.to_payload()["metadata"]["chunked"] is False
