"""Approximate input-size accounting.

Backends count tokens, but the pipeline only needs to know whether an
input is safely under the per-call budget, so a fixed length-to-cost
ratio is used instead of a tokenizer (4 characters ~ 1 token for code).
"""

import math

DEFAULT_CHARS_PER_UNIT = 4


class CostEstimator:
    """Estimate the backend cost of a text blob from its length."""

    def __init__(self, chars_per_unit: int = DEFAULT_CHARS_PER_UNIT):
        if chars_per_unit <= 0:
            raise ValueError(f"chars_per_unit must be positive, got {chars_per_unit}")
        self._chars_per_unit = chars_per_unit

    @property
    def chars_per_unit(self) -> int:
        return self._chars_per_unit

    def estimate(self, text: str) -> int:
        """Return the approximate cost of text (rounded up)."""
        return math.ceil(len(text) / self._chars_per_unit)

    @staticmethod
    def fits_budget(cost: int, ceiling: int) -> bool:
        return cost <= ceiling

    def max_chars(self, ceiling: int) -> int:
        """Character ceiling equivalent to a cost ceiling."""
        return ceiling * self._chars_per_unit
