"""Chunked analysis pipeline — public entry point.

Decides whether an input fits the per-request budget. Small inputs go to
the backend in one call; oversized inputs are split by file, dispatched
concurrently and merged into one report.

Public API:
    ChunkedAnalysisPipeline.analyze(content, context, kind) -> AggregatedReport
    ChunkedAnalysisPipeline.analyze_async(...)  (same, for running event loops)
"""

import asyncio
import functools
import logging
import time
from typing import Any, Optional, Union

from ..gateway import BackendRegistry
from . import prompts
from .aggregator import ReportAggregator
from .dispatcher import ChunkDispatcher, GenerateFn
from .estimator import CostEstimator
from .models import AggregatedReport, AnalysisKind, ChunkOutcome
from .normalizer import ResponseNormalizer
from .options import ChunkingOptions
from .retry import run_with_retry
from .segmenter import UNKNOWN_LABEL, DiffSegmenter

logger = logging.getLogger(__name__)


class ChunkedAnalysisPipeline:
    """Analyze arbitrarily large diffs or code with a budget-limited backend.

    Args:
        generate: Backend to use: an async callable prompt -> text, or an
            object with an async generate(prompt) method. When None the
            backend is resolved from registry (and Settings.llm) per call.
        registry: BackendRegistry used when generate is None
        options: ChunkingOptions (loaded from config if None)
        normalizer: Optional ResponseNormalizer
        aggregator: Optional ReportAggregator
    """

    def __init__(
        self,
        generate: Optional[Any] = None,
        registry: Optional[BackendRegistry] = None,
        options: Optional[ChunkingOptions] = None,
        normalizer: Optional[ResponseNormalizer] = None,
        aggregator: Optional[ReportAggregator] = None,
    ):
        self._generate = generate
        self._registry = registry or BackendRegistry()
        self.options = options or ChunkingOptions.from_config()
        self._estimator = CostEstimator(self.options.chars_per_cost_unit)
        self._segmenter = DiffSegmenter(self.options.max_chars_per_unit)
        self._normalizer = normalizer or ResponseNormalizer()
        self._aggregator = aggregator or ReportAggregator()

    # ── Public API ──────────────────────────────────────────────────────

    def analyze(
        self,
        content: str,
        context: str = "",
        kind: Union[AnalysisKind, str] = AnalysisKind.REVIEW,
        backend: Optional[str] = None,
    ) -> AggregatedReport:
        """Blocking wrapper around analyze_async().

        Must not be called from inside a running event loop; use
        analyze_async() there instead.
        """
        return asyncio.run(self.analyze_async(content, context, kind, backend))

    async def analyze_async(
        self,
        content: str,
        context: str = "",
        kind: Union[AnalysisKind, str] = AnalysisKind.REVIEW,
        backend: Optional[str] = None,
    ) -> AggregatedReport:
        """Review or analyze content, chunking it when it exceeds the budget.

        Args:
            content: Diff or code to analyze
            context: Review context or analysis task (may be a template
                with {{DIFF}} / {{FILE_NAME}} / {{CONTEXT}} placeholders)
            kind: AnalysisKind.REVIEW or AnalysisKind.ANALYSIS
            backend: Registered backend name (ignored when a generate
                callable was passed to the constructor)

        Returns:
            AggregatedReport

        Raises:
            NoBackendConfiguredError: no usable backend, raised before any call
        """
        kind = AnalysisKind(kind)
        content = content or ""
        context = context or ""
        generate = self._resolve_generate(kind, backend)

        cost = self._estimator.estimate(content)
        ceiling = self.options.max_budget_cost
        logger.info(
            f"{kind.value} request: estimated cost {cost}, {len(content)} chars"
        )

        if self._estimator.fits_budget(cost, ceiling):
            logger.info(f"Input within budget, using single-request {kind.value}")
            return await self._run_single(content, context, kind, generate)

        logger.warning(
            f"Input exceeds budget ({cost} > {ceiling}), switching to chunked {kind.value}"
        )
        return await self._run_chunked(content, context, kind, generate)

    # ── Paths ───────────────────────────────────────────────────────────

    async def _run_single(
        self,
        content: str,
        context: str,
        kind: AnalysisKind,
        generate: GenerateFn,
    ) -> AggregatedReport:
        prompt = prompts.build_prompt(content, context, kind)
        result = await run_with_retry(
            lambda: generate(prompt),
            self.options.retry_policy(),
            label=f"single {kind.value}",
        )

        if not result.success:
            outcome = ChunkOutcome(
                order_index=0,
                source_label=UNKNOWN_LABEL,
                success=False,
                error_message=result.error_message,
                attempts=result.attempts,
            )
        else:
            parsed = self._normalizer.normalize(result.value)
            outcome = ChunkOutcome(
                order_index=0,
                source_label=UNKNOWN_LABEL,
                success=True,
                score=parsed.score,
                summary=parsed.summary,
                comments=parsed.comments,
                action_items=parsed.action_items,
                attempts=result.attempts,
            )
        return self._aggregator.single_report(outcome)

    async def _run_chunked(
        self,
        content: str,
        context: str,
        kind: AnalysisKind,
        generate: GenerateFn,
    ) -> AggregatedReport:
        start = time.time()

        units = self._segmenter.split(content)
        logger.info(f"Split input into {len(units)} units for chunked {kind.value}")

        dispatcher = ChunkDispatcher(
            generate,
            retry_policy=self.options.retry_policy(),
            max_concurrency=self.options.max_concurrency,
            normalizer=self._normalizer,
        )
        outcomes = await dispatcher.dispatch(
            units,
            lambda unit, total: prompts.build_chunk_prompt(unit, total, context, kind),
        )
        report = self._aggregator.aggregate(outcomes, kind)

        logger.info(
            f"Chunked {kind.value} finished in {time.time() - start:.1f}s, "
            f"succeeded {report.success_count}/{report.chunk_count}"
        )
        return report

    # ── Backend resolution ──────────────────────────────────────────────

    def _resolve_generate(self, kind: AnalysisKind, backend: Optional[str]) -> GenerateFn:
        if self._generate is not None:
            generate = getattr(self._generate, "generate", None)
            return generate if generate is not None else self._generate

        resolved = self._registry.resolve(backend)
        return functools.partial(resolved.generate, purpose=kind.value)
