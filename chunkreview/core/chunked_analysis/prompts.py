"""Prompt templates for chunked review and analysis.

Two built-in templates:
1. review prompt   - code review of a diff, JSON report expected
2. analysis prompt - caller-defined analysis task over a code blob

A caller context containing {{DIFF}}, {{FILE_NAME}} or {{CONTEXT}}
placeholders is treated as a custom template and rendered instead.
"""

import re
from typing import Optional

from .models import AnalysisKind, ContentUnit

JSON_ONLY_INSTRUCTION = (
    "Only output JSON: a single strict JSON object, "
    "no markdown fences and no extra commentary."
)

_PLACEHOLDER_RE = re.compile(r"\{\{(DIFF|FILE_NAME|CONTEXT)\}\}", re.IGNORECASE)


def _replace_placeholder(template: str, name: str, value: str) -> str:
    return re.sub(r"\{\{" + name + r"\}\}", lambda _: value, template, flags=re.IGNORECASE)


def render_template(template: str, content: str, file_name: Optional[str]) -> Optional[str]:
    """Render a caller template, or return None if it has no placeholders.

    {{DIFF}} -> content, {{FILE_NAME}} -> file_name (empty when None),
    {{CONTEXT}} -> removed. A JSON-only instruction is appended unless
    the template already asks for JSON-only output.
    """
    if not template or not template.strip():
        return None
    if not _PLACEHOLDER_RE.search(template):
        return None

    rendered = _replace_placeholder(template, "DIFF", content)
    rendered = _replace_placeholder(rendered, "FILE_NAME", file_name or "")
    rendered = _replace_placeholder(rendered, "CONTEXT", "")

    if "only output json" not in rendered.casefold():
        rendered += f"\n\n{JSON_ONLY_INSTRUCTION}"
    return rendered


def build_review_prompt(diff: str, context: str) -> str:
    """Build the code review prompt for a diff (or one file of it)."""
    return f"""# Code Review Task

You are a senior code reviewer. Review the following git diff carefully and
produce a professional, detailed review report.

## CONTEXT
{context}

## DIFF
```diff
{diff}
```

## OUTPUT
Return a JSON object with exactly this schema:

```json
{{
  "overall_score": 85,
  "summary": "Two or three sentences describing the change and its quality",
  "comments": [
    {{
      "file": "relative/file/path.ext",
      "line": 42,
      "severity": "high|medium|low",
      "category": "security|performance|style|bug|design|maintainability|quality",
      "content": "What is wrong or worth noting",
      "suggestion": "How to fix or improve it"
    }}
  ],
  "recommendations": ["Concrete follow-up action", "..."]
}}
```

## RULES
1. overall_score is 0-100.
2. Only comment on lines present in the diff.
3. {JSON_ONLY_INSTRUCTION}
"""


def build_analysis_prompt(task: str, code: str) -> str:
    """Build the generic analysis prompt for a caller-defined task."""
    return f"""# Analysis Task

{task}

## CODE
```
{code}
```

## OUTPUT
1. Follow the field structure requested by the task above.
2. Base every conclusion on evidence from the code.
3. When you find a problem, propose a workable fix.
4. {JSON_ONLY_INSTRUCTION}
"""


def build_prompt(
    content: str,
    context: str,
    kind: AnalysisKind,
    file_name: Optional[str] = None,
) -> str:
    """Render the caller template if it has placeholders, else a built-in prompt."""
    rendered = render_template(context, content, file_name)
    if rendered is not None:
        return rendered
    if kind == AnalysisKind.REVIEW:
        return build_review_prompt(content, context)
    return build_analysis_prompt(context, content)


def build_chunk_prompt(
    unit: ContentUnit,
    total: int,
    context: str,
    kind: AnalysisKind,
) -> str:
    """Prompt for one unit of a chunked run, with a "file i of N" marker."""
    verb = "reviewed" if kind == AnalysisKind.REVIEW else "analyzed"
    chunk_context = (
        f"{context}\n\n## Current file being {verb}: {unit.source_label} "
        f"(file {unit.order_index + 1} of {total})"
    )
    return build_prompt(unit.text, chunk_context, kind, file_name=unit.source_label)
