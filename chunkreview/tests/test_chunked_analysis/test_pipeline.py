"""Integration tests for ChunkedAnalysisPipeline — single-call and chunked paths.

Tests cover:
- Small input takes the single-call path (one generate call)
- Oversized multi-file input is chunked per file and aggregated
- A unit that always times out is reported as failed without aborting
- Backend resolution from the registry, and the no-backend precondition
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from chunkreview.core.chunked_analysis.models import AnalysisKind
from chunkreview.core.chunked_analysis.options import ChunkingOptions
from chunkreview.core.chunked_analysis.pipeline import ChunkedAnalysisPipeline
from chunkreview.core.gateway import BackendRegistry, NoBackendConfiguredError


# ── Fixtures ──────────────────────────────────────────────────────────────


def _git_file(path: str, body_lines: int, width: int) -> str:
    body = "".join(f"+{'x' * width}\n" for _ in range(body_lines))
    return (
        f"diff --git a/{path} b/{path}\n"
        f"--- a/{path}\n"
        f"+++ b/{path}\n"
        f"@@ -0,0 +1,{body_lines} @@\n"
        f"{body}"
    )


def _fast_options(**overrides) -> ChunkingOptions:
    params = dict(
        max_concurrency=3,
        per_chunk_timeout=5.0,
        max_retries=1,
        initial_retry_delay=0.001,
        max_retry_delay=0.002,
    )
    params.update(overrides)
    return ChunkingOptions(**params)


class _RecordingBackend:
    """Test double exposing the async generate(prompt) contract."""

    def __init__(self, score: int = 80, slow_marker: str = None):
        self.score = score
        self.slow_marker = slow_marker
        self.prompts = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.slow_marker and self.slow_marker in prompt:
            await asyncio.sleep(10)
        return json.dumps({
            "overallScore": self.score,
            "summary": f"reviewed {len(prompt)} chars",
            "comments": [{"content": "Consider adding a docstring", "severity": "low"}],
            "recommendations": ["Add unit tests"],
        })


SMALL_DIFF = _git_file("a.py", 1, 20) + _git_file("b.py", 1, 20)
LARGE_DIFF = "".join(_git_file(f"f{i}.py", body_lines=999, width=98) for i in range(5))


# ── Tests: Single-call path ───────────────────────────────────────────────


class TestSingleCall:

    def test_small_diff_uses_one_call(self):
        backend = _RecordingBackend(score=9)
        pipeline = ChunkedAnalysisPipeline(generate=backend, options=_fast_options())

        report = pipeline.analyze(SMALL_DIFF, "Review for correctness")

        assert len(backend.prompts) == 1
        assert SMALL_DIFF in backend.prompts[0]
        assert report.chunked is False
        assert report.overall_score == 90
        assert report.chunk_count == 1
        assert report.success_count == 1
        payload = report.to_payload()
        assert payload["metadata"]["chunked"] is False
        assert payload["metadata"]["total_chunks"] == 1
        assert payload["recommendations"] == ["Add unit tests"]

    def test_plain_coroutine_function_backend(self):
        calls = []

        async def generate(prompt):
            calls.append(prompt)
            return "Overall score: 7\n- Rename the helper for clarity"

        pipeline = ChunkedAnalysisPipeline(generate=generate, options=_fast_options())
        report = pipeline.analyze("def f():\n    pass\n", "Find naming issues", AnalysisKind.ANALYSIS)

        assert len(calls) == 1
        assert "# Analysis Task" in calls[0]
        assert report.overall_score == 70
        assert report.action_items == ["Rename the helper for clarity"]

    def test_string_kind_accepted(self):
        backend = _RecordingBackend()
        pipeline = ChunkedAnalysisPipeline(generate=backend, options=_fast_options())
        pipeline.analyze("x = 1\n", "Summarize", "analysis")
        assert "# Analysis Task" in backend.prompts[0]

    def test_single_call_failure_reports_zero(self):
        async def generate(prompt):
            raise ConnectionError("backend unreachable")

        pipeline = ChunkedAnalysisPipeline(generate=generate, options=_fast_options())
        report = pipeline.analyze(SMALL_DIFF, "")

        assert report.overall_score == 0
        assert report.failure_count == 1
        assert "backend unreachable" in report.summary_text


# ── Tests: Chunked path ───────────────────────────────────────────────────


class TestChunked:

    def test_large_diff_chunked_per_file(self):
        backend = _RecordingBackend(score=80)
        pipeline = ChunkedAnalysisPipeline(generate=backend, options=_fast_options())

        report = pipeline.analyze(LARGE_DIFF, "Review for correctness")

        assert len(backend.prompts) == 5
        assert report.chunked is True
        assert report.chunk_count == 5
        assert report.success_count == 5
        assert report.failure_count == 0
        assert report.overall_score == 80
        assert [c.source_label for c in report.comments] == [f"f{i}.py" for i in range(5)]
        assert report.action_items == ["Add unit tests"]

        data = json.loads(report.to_json())
        assert data["metadata"]["total_chunks"] == 5
        assert data["metadata"]["chunked"] is True

    def test_each_prompt_carries_position(self):
        backend = _RecordingBackend()
        pipeline = ChunkedAnalysisPipeline(generate=backend, options=_fast_options())
        pipeline.analyze(LARGE_DIFF, "ctx")

        markers = sorted(
            line for prompt in backend.prompts for line in prompt.splitlines()
            if line.startswith("## Current file being reviewed")
        )
        assert markers == [
            f"## Current file being reviewed: f{i}.py (file {i + 1} of 5)" for i in range(5)
        ]

    def test_one_unit_timing_out(self):
        backend = _RecordingBackend(score=60, slow_marker="f2.py (file 3 of 5)")
        options = _fast_options(per_chunk_timeout=0.05, max_concurrency=5)
        pipeline = ChunkedAnalysisPipeline(generate=backend, options=options)

        report = pipeline.analyze(LARGE_DIFF, "Review")

        assert report.chunk_count == 5
        assert report.success_count == 4
        assert report.failure_count == 1
        assert report.overall_score == 60
        assert "- [FAILED] f2.py: review failed (timed out)" in report.summary_text
        # 4 successful units plus 2 attempts for the slow one
        assert len(backend.prompts) == 6

    @pytest.mark.parametrize("budget", [100, 1000])
    def test_smaller_budget_forces_more_units(self, budget):
        backend = _RecordingBackend()
        options = _fast_options(max_budget_cost=budget)
        diff = _git_file("big.py", body_lines=100, width=60)
        report = ChunkedAnalysisPipeline(generate=backend, options=options).analyze(diff, "")

        assert report.chunked is True
        assert report.chunk_count > 1
        assert report.chunk_count == len(backend.prompts)

    def test_analyze_async_inside_running_loop(self):
        backend = _RecordingBackend()
        pipeline = ChunkedAnalysisPipeline(generate=backend, options=_fast_options())

        async def run():
            return await pipeline.analyze_async(LARGE_DIFF, "", AnalysisKind.REVIEW)

        assert asyncio.run(run()).chunk_count == 5


# ── Tests: Backend resolution ─────────────────────────────────────────────


class TestBackendResolution:

    def _llm(self, text: str):
        llm = MagicMock()
        llm.model = "mock-model"
        llm.acomplete = AsyncMock(return_value=MagicMock(text=text, raw={}))
        return llm

    def test_registry_backend_used(self):
        registry = BackendRegistry()
        registry.register("main", self._llm('{"score": 6}'))
        pipeline = ChunkedAnalysisPipeline(registry=registry, options=_fast_options())

        report = pipeline.analyze(SMALL_DIFF, "")

        assert report.overall_score == 60
        metrics = registry.resolve("main").get_metrics()
        assert metrics["calls_by_purpose"] == {"review": 1}

    def test_named_backend(self):
        registry = BackendRegistry()
        registry.register("main", self._llm('{"score": 6}'))
        registry.register("alt", self._llm('{"score": 3}'))
        pipeline = ChunkedAnalysisPipeline(registry=registry, options=_fast_options())

        assert pipeline.analyze(SMALL_DIFF, "", backend="alt").overall_score == 30

    @patch("chunkreview.core.gateway._settings_llm", return_value=None)
    def test_no_backend_raises_before_dispatch(self, _):
        pipeline = ChunkedAnalysisPipeline(registry=BackendRegistry(), options=_fast_options())
        with pytest.raises(NoBackendConfiguredError):
            pipeline.analyze(LARGE_DIFF, "")
