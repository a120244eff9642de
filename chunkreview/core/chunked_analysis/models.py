"""Data contracts for the chunked analysis pipeline.

All structured types used across the chunked_analysis subsystem.
Kept as dataclasses for transport between layers; the wire format
lives in schemas.py.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class AnalysisKind(Enum):
    """Which prompt family a pipeline run uses."""
    REVIEW = "review"
    ANALYSIS = "analysis"


class Severity(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Category(Enum):
    SECURITY = "security"
    PERFORMANCE = "performance"
    STYLE = "style"
    BUG = "bug"
    DESIGN = "design"
    MAINTAINABILITY = "maintainability"
    QUALITY = "quality"


@dataclass(frozen=True)
class ContentUnit:
    """A bounded slice of the input routed to one backend call.

    order_index equals the unit's position in the Segmenter output.
    """
    order_index: int
    source_label: str
    text: str
    size_chars: int


@dataclass
class Comment:
    """A single review finding extracted from model output."""
    message: str
    severity: Severity = Severity.MEDIUM
    category: Category = Category.QUALITY
    source_label: Optional[str] = None
    line_ref: Optional[int] = None
    suggestion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.source_label,
            "line": self.line_ref,
            "severity": self.severity.value,
            "category": self.category.value,
            "content": self.message,
            "suggestion": self.suggestion,
        }


@dataclass
class NormalizedResponse:
    """Best-effort structured view of one model response.

    tier records which extraction strategy produced it:
    "fenced" | "direct" | "balanced" | "heuristic".
    """
    score: float
    summary: str = ""
    comments: List[Comment] = field(default_factory=list)
    action_items: List[str] = field(default_factory=list)
    tier: str = "heuristic"


@dataclass
class ChunkOutcome:
    """Result of processing one ContentUnit, successful or not."""
    order_index: int
    source_label: str
    success: bool
    error_message: Optional[str] = None
    score: Optional[float] = None
    summary: Optional[str] = None
    comments: List[Comment] = field(default_factory=list)
    action_items: List[str] = field(default_factory=list)
    attempts: int = 0


@dataclass
class AggregatedReport:
    """The single artifact handed back to callers of the pipeline."""
    overall_score: int
    summary_text: str
    comments: List[Comment] = field(default_factory=list)
    action_items: List[str] = field(default_factory=list)
    chunk_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    chunked: bool = False
    aggregation_error: bool = False

    def to_payload(self) -> Dict[str, Any]:
        """Wire-format dict (see schemas.ReportPayload)."""
        from .schemas import ReportPayload
        return ReportPayload.from_report(self).to_dict()

    def to_json(self) -> str:
        from .schemas import ReportPayload
        return ReportPayload.from_report(self).to_json()
