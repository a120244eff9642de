"""Bounded-concurrency fan-out of content units to the generation backend.

Each unit runs in its own task behind one asyncio.Semaphore (the only
shared state). A unit's prompt is built, the generation call is retried
via run_with_retry, and the response is normalized into a ChunkOutcome.
Failures become failed outcomes, so one unit never aborts its siblings.
Output is sorted by order_index regardless of completion order.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from .models import ChunkOutcome, ContentUnit
from .normalizer import ResponseNormalizer
from .retry import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)

GenerateFn = Callable[[str], Awaitable[str]]
PromptBuilder = Callable[[ContentUnit, int], str]

DEFAULT_MAX_CONCURRENCY = 10


class ChunkDispatcher:
    """Run every unit's generation call with at most max_concurrency in flight.

    Args:
        generate: Coroutine function taking a prompt and returning model text
        retry_policy: Retry/timeout settings applied to each call
        max_concurrency: Admission gate size (values < 1 are treated as 1)
        normalizer: Optional ResponseNormalizer (created if None)
    """

    def __init__(
        self,
        generate: GenerateFn,
        retry_policy: Optional[RetryPolicy] = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        normalizer: Optional[ResponseNormalizer] = None,
    ):
        self._generate = generate
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_concurrency = max(1, max_concurrency)
        self._normalizer = normalizer or ResponseNormalizer()

    async def dispatch(
        self,
        units: List[ContentUnit],
        build_prompt: PromptBuilder,
    ) -> List[ChunkOutcome]:
        """Process all units and return one outcome per unit, ordered by order_index."""
        if not units:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrency)
        total = len(units)
        logger.info(
            f"Dispatching {total} units (max_concurrency={self.max_concurrency}, "
            f"max_attempts={self.retry_policy.max_attempts})"
        )

        outcomes = await asyncio.gather(
            *(self._process_with_semaphore(semaphore, unit, total, build_prompt) for unit in units)
        )
        return sorted(outcomes, key=lambda o: o.order_index)

    async def _process_with_semaphore(
        self,
        semaphore: asyncio.Semaphore,
        unit: ContentUnit,
        total: int,
        build_prompt: PromptBuilder,
    ) -> ChunkOutcome:
        async with semaphore:
            return await self._process_unit(unit, total, build_prompt)

    async def _process_unit(
        self,
        unit: ContentUnit,
        total: int,
        build_prompt: PromptBuilder,
    ) -> ChunkOutcome:
        label = f"unit {unit.order_index + 1}/{total} ({unit.source_label})"
        logger.info(f"Processing {label}: {unit.size_chars} chars")

        try:
            prompt = build_prompt(unit, total)
        except Exception as e:
            logger.error(f"Prompt build failed for {label}: {e}", exc_info=True)
            return _failed(unit, f"prompt build failed: {e}")

        result = await run_with_retry(
            lambda: self._generate(prompt),
            self.retry_policy,
            label=label,
        )
        if not result.success:
            return _failed(unit, result.error_message, attempts=result.attempts)

        parsed = self._normalizer.normalize(result.value)
        return ChunkOutcome(
            order_index=unit.order_index,
            source_label=unit.source_label,
            success=True,
            score=parsed.score,
            summary=parsed.summary,
            comments=parsed.comments,
            action_items=parsed.action_items,
            attempts=result.attempts,
        )


def _failed(unit: ContentUnit, message: Optional[str], attempts: int = 0) -> ChunkOutcome:
    return ChunkOutcome(
        order_index=unit.order_index,
        source_label=unit.source_label,
        success=False,
        error_message=message or "unknown error",
        attempts=attempts,
    )
