"""Merge ordered chunk outcomes into one AggregatedReport.

Scores are averaged over successful outcomes only. Comments and action
items come from successful outcomes; failed units show up as FAILED
lines in the summary and in the failure counter. aggregate() never
raises: an internal fault produces a minimal report flagged with
aggregation_error.
"""

import logging
from dataclasses import replace
from typing import List

from .models import AggregatedReport, AnalysisKind, ChunkOutcome, Comment
from .schemas import ReportPayload

logger = logging.getLogger(__name__)


class ReportAggregator:
    """Build the final report from per-unit outcomes."""

    def aggregate(
        self,
        outcomes: List[ChunkOutcome],
        kind: AnalysisKind = AnalysisKind.REVIEW,
    ) -> AggregatedReport:
        """Merge outcomes (already ordered by order_index) into one chunked report."""
        try:
            report = self._build(outcomes, kind)
            # Validate the wire shape here so serialization faults degrade too.
            ReportPayload.from_report(report)
            return report
        except Exception as e:
            logger.error(f"Aggregating {kind.value} results failed: {e}", exc_info=True)
            return self._degraded(outcomes, kind, e)

    def single_report(self, outcome: ChunkOutcome) -> AggregatedReport:
        """Report for the single-call path (input fit the budget)."""
        if not outcome.success:
            return AggregatedReport(
                overall_score=0,
                summary_text=f"Request failed: {outcome.error_message}",
                chunk_count=1,
                success_count=0,
                failure_count=1,
                chunked=False,
            )

        return AggregatedReport(
            overall_score=_clamp_score(outcome.score),
            summary_text=outcome.summary or "",
            comments=list(outcome.comments),
            action_items=_dedupe(outcome.action_items),
            chunk_count=1,
            success_count=1,
            failure_count=0,
            chunked=False,
        )

    def _build(self, outcomes: List[ChunkOutcome], kind: AnalysisKind) -> AggregatedReport:
        successes = [o for o in outcomes if o.success]
        failures = [o for o in outcomes if not o.success]

        scores = [o.score for o in successes if o.score is not None]
        overall = _clamp_score(sum(scores) / len(scores)) if scores else 0

        comments: List[Comment] = []
        action_items: List[str] = []
        file_lines: List[str] = []

        for outcome in outcomes:
            if not outcome.success:
                file_lines.append(
                    f"- [FAILED] {outcome.source_label}: {kind.value} failed "
                    f"({outcome.error_message})"
                )
                continue
            for comment in outcome.comments:
                comments.append(replace(comment, source_label=outcome.source_label))
            action_items.extend(outcome.action_items)
            summary = (outcome.summary or "").strip() or "no summary returned"
            file_lines.append(f"- [OK] {outcome.source_label}: {summary}")

        summary_text = _compose_summary(
            kind=kind,
            total=len(outcomes),
            succeeded=len(successes),
            failed=len(failures),
            comment_count=len(comments),
            file_lines=file_lines,
        )

        return AggregatedReport(
            overall_score=overall,
            summary_text=summary_text,
            comments=comments,
            action_items=_dedupe(action_items),
            chunk_count=len(outcomes),
            success_count=len(successes),
            failure_count=len(failures),
            chunked=True,
        )

    def _degraded(
        self,
        outcomes: List[ChunkOutcome],
        kind: AnalysisKind,
        error: Exception,
    ) -> AggregatedReport:
        try:
            total = len(outcomes)
            succeeded = sum(1 for o in outcomes if getattr(o, "success", False))
        except Exception:
            total = succeeded = 0
        return AggregatedReport(
            overall_score=0,
            summary_text=f"Chunked {kind.value} aggregation failed: {error}",
            chunk_count=total,
            success_count=succeeded,
            failure_count=total - succeeded,
            chunked=True,
            aggregation_error=True,
        )


def _compose_summary(
    kind: AnalysisKind,
    total: int,
    succeeded: int,
    failed: int,
    comment_count: int,
    file_lines: List[str],
) -> str:
    title = kind.value.capitalize()
    lines = [
        f"# Chunked {title} Report",
        "",
        "## Overview",
        f"- Total files: {total}",
        f"- Succeeded: {succeeded}",
        f"- Failed: {failed}",
        f"- Total comments: {comment_count}",
    ]
    if failed:
        lines.append("")
        lines.append(f"Warning: {failed} file(s) could not be processed; check the logs.")
    lines += [
        "",
        f"## Per-file {kind.value} summary",
        *file_lines,
        "",
        "## Overall guidance",
        f"The change set exceeded the single-request budget, so the {kind.value} "
        "was performed file by file. Focus on high-severity comments first.",
    ]
    return "\n".join(lines)


def _clamp_score(score) -> int:
    """Clamp to 0-100 and round halves up (82.5 -> 83)."""
    if score is None or score != score:
        return 0
    return int(max(0.0, min(100.0, score)) + 0.5)


def _dedupe(items: List[str]) -> List[str]:
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result
