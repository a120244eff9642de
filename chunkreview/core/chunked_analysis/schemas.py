"""Wire format of the aggregated report.

Persistence and UI consumers depend on this exact shape:
{overall_score, summary, comments, recommendations,
 metadata: {chunked, total_chunks, successful_chunks, failed_chunks}}
metadata.aggregation_error only appears on degraded reports.
"""

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .models import AggregatedReport


class CommentPayload(BaseModel):
    """One review comment."""
    file: Optional[str] = Field(None, description="File the comment belongs to")
    line: Optional[int] = Field(None, description="Line number, if known")
    severity: str = Field(..., description="high | medium | low")
    category: str = Field(..., description="Comment category")
    content: str = Field(..., description="Comment text")
    suggestion: Optional[str] = Field(None, description="Suggested fix")


class ReportMetadata(BaseModel):
    """Chunking counters."""
    chunked: bool = Field(..., description="Whether the input was split into chunks")
    total_chunks: int = Field(..., ge=0)
    successful_chunks: int = Field(..., ge=0)
    failed_chunks: int = Field(..., ge=0)
    aggregation_error: Optional[bool] = Field(None, description="Set on degraded reports")


class ReportPayload(BaseModel):
    """Serialized AggregatedReport."""
    overall_score: int = Field(..., ge=0, le=100)
    summary: str
    comments: List[CommentPayload] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    metadata: ReportMetadata

    @classmethod
    def from_report(cls, report: AggregatedReport) -> "ReportPayload":
        return cls(
            overall_score=report.overall_score,
            summary=report.summary_text,
            comments=[CommentPayload(**c.to_dict()) for c in report.comments],
            recommendations=list(report.action_items),
            metadata=ReportMetadata(
                chunked=report.chunked,
                total_chunks=report.chunk_count,
                successful_chunks=report.success_count,
                failed_chunks=report.failure_count,
                aggregation_error=True if report.aggregation_error else None,
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        if data["metadata"].get("aggregation_error") is None:
            data["metadata"].pop("aggregation_error", None)
        return data

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=indent)
