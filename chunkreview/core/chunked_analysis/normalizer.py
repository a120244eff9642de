"""Tolerant extraction of structured review data from free-form model text.

Models are asked for strict JSON but routinely wrap it in markdown fences,
prepend chatter, or ignore the instruction entirely. normalize() tries four
strategies in order and never raises:

  1. fenced    -- take the inner content of a ``` block as the candidate
  2. direct    -- json.loads(candidate), accepted if object or array
  3. balanced  -- first parseable {...} (then [...]) span found with a
                  depth counter that skips brackets inside strings
  4. heuristic -- mine score/summary/comments/action items from plain text

Field names vary between prompts and providers, so each logical field is
looked up through an ordered synonym list.
"""

import json
import logging
import math
import re
from typing import Any, Dict, List, Optional, Tuple

from .models import Category, Comment, NormalizedResponse, Severity

logger = logging.getLogger(__name__)

DEFAULT_SCORE = 75.0
SUMMARY_MAX_CHARS = 200
MIN_COMMENT_CHARS = 10
MIN_ACTION_CHARS = 10

# ── Field synonyms (tried in order) ─────────────────────────────────────

SCORE_FIELDS = ("overallScore", "overall_score", "score", "qualityScore", "rating")
SUMMARY_FIELDS = ("summary", "overview")
COMMENT_LIST_FIELDS = ("comments", "issues", "findings")
MESSAGE_FIELDS = ("content", "message", "description")
FILE_FIELDS = ("filePath", "file", "path", "fileName")
LINE_FIELDS = ("lineNumber", "line", "lineNo", "startLine")
SUGGESTION_FIELDS = ("suggestion", "fix", "recommendation", "solution")
ACTION_FIELDS = ("actionableItems", "recommendations", "suggestions", "actions")

# ── Severity / category tables ──────────────────────────────────────────

SEVERITY_SYNONYMS = {
    "critical": Severity.HIGH,
    "blocker": Severity.HIGH,
    "error": Severity.HIGH,
    "high": Severity.HIGH,
    "major": Severity.HIGH,
    "warning": Severity.MEDIUM,
    "warn": Severity.MEDIUM,
    "medium": Severity.MEDIUM,
    "moderate": Severity.MEDIUM,
    "info": Severity.LOW,
    "low": Severity.LOW,
    "minor": Severity.LOW,
    "suggestion": Severity.LOW,
    "nit": Severity.LOW,
}

CATEGORY_SYNONYMS = {
    "security": Category.SECURITY,
    "vulnerability": Category.SECURITY,
    "performance": Category.PERFORMANCE,
    "perf": Category.PERFORMANCE,
    "style": Category.STYLE,
    "formatting": Category.STYLE,
    "naming": Category.STYLE,
    "bug": Category.BUG,
    "defect": Category.BUG,
    "correctness": Category.BUG,
    "design": Category.DESIGN,
    "architecture": Category.DESIGN,
    "maintainability": Category.MAINTAINABILITY,
    "complexity": Category.MAINTAINABILITY,
    "quality": Category.QUALITY,
}

# Keyword dictionaries for inferring severity/category from a message.
# Checked in insertion order; first hit wins.
SEVERITY_KEYWORDS = {
    Severity.HIGH: ("critical", "bug", "crash", "vulnerab", "security", "exploit"),
    Severity.MEDIUM: ("warning", "risk", "issue", "problem", "careful"),
    Severity.LOW: ("suggestion", "suggest", "optimiz", "improve", "consider", "nit"),
}

CATEGORY_KEYWORDS = {
    Category.SECURITY: ("security", "vulnerab", "injection", "xss", "csrf", "secret", "password"),
    Category.PERFORMANCE: ("performance", "optimiz", "slow", "memory", "cpu", "latency"),
    Category.STYLE: ("style", "naming", "formatting", "convention", "indent"),
    Category.BUG: ("bug", "error", "defect", "fault", "exception", "null"),
    Category.DESIGN: ("refactor", "design", "architecture", "pattern", "abstraction"),
    Category.MAINTAINABILITY: ("maintainab", "complex", "coupling", "duplicat", "readab"),
}

REVIEW_KEYWORDS = (
    "suggest", "issue", "problem", "warning", "error", "bug", "recommend",
    "should", "avoid", "consider", "improve", "optimiz", "fix", "risk",
)

ACTION_VERBS = ("should", "need", "consider", "recommend", "must")

# ── Regexes ─────────────────────────────────────────────────────────────

_FENCE_RE = re.compile(r"```(?:[\w+-]+(?=\s))?\s*(.*?)```", re.DOTALL)

_SCORE_PATTERNS = (
    re.compile(r"(?:overall\s+score|score|rating|quality)\s*[:=：]\s*(\d+(?:\.\d+)?)", re.IGNORECASE),
    re.compile(r"(\d+(?:\.\d+)?)\s*(?:/\s*100|out of 100)\b", re.IGNORECASE),
    re.compile(r"(\d+(?:\.\d+)?)\s*(?:/\s*10|out of 10)\b", re.IGNORECASE),
    re.compile(r"(?:score|rating)\D{0,20}?(\d+(?:\.\d+)?)", re.IGNORECASE),
)
_SUMMARY_RE = re.compile(r"^\s*(?:summary|overview)\s*[:：]\s*(.+)$", re.IGNORECASE | re.MULTILINE)
_BULLET_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+(.+)$")
_FILE_HINT_RE = re.compile(r"(?:file|path)\s*[:：]?\s*([^\s,;]+\.[A-Za-z0-9]+)", re.IGNORECASE)
_PATH_RE = re.compile(r"((?:[\w.-]+/)+[\w.-]+\.[A-Za-z0-9]{1,5})")
_LINE_PATTERNS = (
    re.compile(r"\blines?\s*[:：#]?\s*(\d+)", re.IGNORECASE),
    re.compile(r"\bL(\d+)\b"),
    re.compile(r"[\w/.-]+\.[A-Za-z0-9]+:(\d+)"),
)


def normalize_score(score: float) -> float:
    """Map a model score onto 0-100: 0-10 values are scaled by 10, then clamp."""
    if 0 <= score <= 10:
        score = score * 10
    return max(0.0, min(100.0, float(score)))


def normalize_severity(value: Optional[str], message: str = "") -> Severity:
    if isinstance(value, str) and value.strip():
        return SEVERITY_SYNONYMS.get(value.strip().casefold(), Severity.MEDIUM)
    return infer_severity(message)


def normalize_category(value: Optional[str], message: str = "") -> Category:
    if isinstance(value, str) and value.strip():
        return CATEGORY_SYNONYMS.get(value.strip().casefold(), Category.QUALITY)
    return infer_category(message)


def infer_severity(text: str) -> Severity:
    lowered = text.casefold()
    for severity, keywords in SEVERITY_KEYWORDS.items():
        if any(kw in lowered for kw in keywords):
            return severity
    return Severity.MEDIUM


def infer_category(text: str) -> Category:
    lowered = text.casefold()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(kw in lowered for kw in keywords):
            return category
    return Category.QUALITY


# ── JSON location ───────────────────────────────────────────────────────


def strip_fence(text: str) -> Optional[str]:
    """Inner content of the first fenced block, or None if there is none."""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return None


def find_balanced_end(text: str, start: int, open_ch: str, close_ch: str) -> int:
    """Index of the bracket closing text[start], or -1.

    Brackets inside double-quoted strings are ignored; backslash escapes
    inside strings are honored.
    """
    depth = 0
    in_string = False
    escape = False

    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth == 0:
                return i
    return -1


def _parse_container(text: str) -> Optional[Any]:
    try:
        value = json.loads(text)
    except (ValueError, RecursionError):
        return None
    if isinstance(value, (dict, list)):
        return value
    return None


def scan_balanced_json(text: str) -> Optional[Any]:
    """First balanced {...} span that parses, else first [...] span."""
    for open_ch, close_ch in (("{", "}"), ("[", "]")):
        start = text.find(open_ch)
        while start >= 0:
            end = find_balanced_end(text, start, open_ch, close_ch)
            if end < 0:
                # Unclosed bracket; a later one may still open a valid span.
                start = text.find(open_ch, start + 1)
                continue
            parsed = _parse_container(text[start:end + 1])
            if parsed is not None:
                return parsed
            start = text.find(open_ch, start + 1)
    return None


def locate_json(raw: str) -> Tuple[Optional[Any], str]:
    """Run tiers 1-3. Returns (parsed, tier) with parsed None on failure."""
    text = raw.strip()
    fenced = strip_fence(text)
    candidate = fenced if fenced is not None else text

    parsed = _parse_container(candidate)
    if parsed is not None:
        return parsed, "fenced" if fenced is not None else "direct"

    parsed = scan_balanced_json(candidate)
    if parsed is not None:
        return parsed, "balanced"

    return None, "heuristic"


# ── Normalizer ──────────────────────────────────────────────────────────


class ResponseNormalizer:
    """Turn raw model output into a NormalizedResponse. Never raises."""

    def __init__(self, default_score: float = DEFAULT_SCORE):
        self.default_score = default_score

    def normalize(self, raw: Optional[str]) -> NormalizedResponse:
        if not isinstance(raw, str):
            raw = "" if raw is None else str(raw)
        try:
            parsed, tier = locate_json(raw)
            if parsed is not None:
                result = self._from_json(parsed)
                result.tier = tier
                logger.debug(
                    f"Normalized response via {tier}: score={result.score} "
                    f"comments={len(result.comments)} items={len(result.action_items)}"
                )
                return result
            logger.warning(
                f"No JSON found in model output ({len(raw)} chars), using text heuristics"
            )
        except Exception as e:
            logger.warning(f"JSON extraction failed ({e}), using text heuristics")

        try:
            return self._from_text(raw)
        except Exception as e:
            logger.error(f"Heuristic extraction failed: {e}")
            return NormalizedResponse(score=self.default_score, summary=raw[:SUMMARY_MAX_CHARS])

    # ── JSON tiers ──────────────────────────────────────────────────────

    def _from_json(self, parsed: Any) -> NormalizedResponse:
        if isinstance(parsed, list):
            return NormalizedResponse(
                score=self.default_score,
                comments=self._parse_comment_list(parsed),
            )

        return NormalizedResponse(
            score=self._extract_score(parsed),
            summary=self._extract_summary(parsed),
            comments=self._extract_comments(parsed),
            action_items=self._extract_action_items(parsed),
        )

    def _extract_score(self, root: Dict[str, Any]) -> float:
        for name in SCORE_FIELDS:
            value = _as_number(root.get(name))
            if value is not None:
                return normalize_score(value)
        logger.debug(f"No score field in model output, using default {self.default_score}")
        return self.default_score

    def _extract_summary(self, root: Dict[str, Any]) -> str:
        for name in SUMMARY_FIELDS:
            value = root.get(name)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return ""

    def _extract_comments(self, root: Dict[str, Any]) -> List[Comment]:
        for name in COMMENT_LIST_FIELDS:
            value = root.get(name)
            if isinstance(value, list):
                return self._parse_comment_list(value)
        return []

    def _parse_comment_list(self, items: List[Any]) -> List[Comment]:
        comments = []
        for item in items:
            comment = self._parse_comment(item)
            if comment is not None:
                comments.append(comment)
        return comments

    def _parse_comment(self, item: Any) -> Optional[Comment]:
        if isinstance(item, str):
            message = item.strip()
            if not message:
                return None
            return Comment(
                message=message,
                severity=infer_severity(message),
                category=infer_category(message),
            )
        if not isinstance(item, dict):
            return None

        message = _first_string(item, MESSAGE_FIELDS)
        if not message:
            return None

        line_ref = None
        for name in LINE_FIELDS:
            line_ref = _as_int(item.get(name))
            if line_ref is not None:
                break

        return Comment(
            message=message,
            severity=normalize_severity(item.get("severity"), message),
            category=normalize_category(item.get("category"), message),
            source_label=_first_string(item, FILE_FIELDS),
            line_ref=line_ref,
            suggestion=_first_string(item, SUGGESTION_FIELDS),
        )

    def _extract_action_items(self, root: Dict[str, Any]) -> List[str]:
        for name in ACTION_FIELDS:
            value = root.get(name)
            if not isinstance(value, list):
                continue
            items = [v.strip() for v in value if isinstance(v, str) and v.strip()]
            if items:
                return items
        return []

    # ── Heuristic tier ──────────────────────────────────────────────────

    def _from_text(self, text: str) -> NormalizedResponse:
        logger.info("Using heuristic text parsing for model output")
        return NormalizedResponse(
            score=self._score_from_text(text),
            summary=_summary_from_text(text),
            comments=_comments_from_text(text),
            action_items=_action_items_from_text(text),
            tier="heuristic",
        )

    def _score_from_text(self, text: str) -> float:
        for pattern in _SCORE_PATTERNS:
            match = pattern.search(text)
            if match:
                try:
                    return normalize_score(float(match.group(1)))
                except ValueError:
                    continue
        return self.default_score


def _summary_from_text(text: str) -> str:
    match = _SUMMARY_RE.search(text)
    if match and len(match.group(1).strip()) > 20:
        summary = match.group(1).strip()
    else:
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        summary = " ".join(lines[:3])
    if len(summary) > SUMMARY_MAX_CHARS:
        summary = summary[:SUMMARY_MAX_CHARS] + "..."
    return summary


def _comments_from_text(text: str) -> List[Comment]:
    comments = []
    for line in text.splitlines():
        stripped = line.strip()
        if len(stripped) < MIN_COMMENT_CHARS:
            continue
        lowered = stripped.casefold()
        if not any(kw in lowered for kw in REVIEW_KEYWORDS):
            continue
        comments.append(
            Comment(
                message=stripped,
                severity=infer_severity(stripped),
                category=infer_category(stripped),
                source_label=_file_from_text(stripped),
                line_ref=_line_from_text(stripped),
            )
        )
    return comments


def _action_items_from_text(text: str) -> List[str]:
    lines = text.splitlines()
    items = []
    for line in lines:
        match = _BULLET_RE.match(line)
        if match:
            item = match.group(1).strip()
            if len(item) >= MIN_ACTION_CHARS:
                items.append(item)
    if items:
        return items

    for line in lines:
        stripped = line.strip()
        lowered = stripped.casefold()
        if len(stripped) >= 15 and any(verb in lowered for verb in ACTION_VERBS):
            items.append(stripped)
    return items


def _file_from_text(text: str) -> Optional[str]:
    match = _FILE_HINT_RE.search(text)
    if match:
        return match.group(1)
    match = _PATH_RE.search(text)
    return match.group(1) if match else None


def _line_from_text(text: str) -> Optional[int]:
    for pattern in _LINE_PATTERNS:
        match = pattern.search(text)
        if match:
            return int(match.group(1))
    return None


# ── Value coercion ──────────────────────────────────────────────────────


def _as_number(value: Any) -> Optional[float]:
    """Finite float from a JSON number or numeric string, else None."""
    if isinstance(value, bool):
        return None
    if not isinstance(value, (int, float, str)):
        return None
    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except (ValueError, OverflowError):
        return None
    # json.loads accepts NaN and Infinity
    return number if math.isfinite(number) else None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _first_string(item: Dict[str, Any], names: Tuple[str, ...]) -> Optional[str]:
    for name in names:
        value = item.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
