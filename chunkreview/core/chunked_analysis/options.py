"""Runtime options for the chunked analysis pipeline.

Resolution order per option: explicit argument, CHUNKREVIEW_<NAME>
environment variable, config file (chunkreview.chunked_analysis.<name>),
built-in default.
"""

import os
from dataclasses import dataclass
from typing import Any

from ..config import get_config_value
from .retry import RetryPolicy

ENV_PREFIX = "CHUNKREVIEW_"

# 131,072-token context minus ~30,000 tokens reserved for prompt and completion
DEFAULT_MAX_BUDGET_COST = 101_000


@dataclass(frozen=True)
class ChunkingOptions:
    """Recognized pipeline options.

    Raises:
        ValueError: if any value is out of range
    """
    max_concurrency: int = 10
    per_chunk_timeout: float = 120.0
    max_retries: int = 1
    initial_retry_delay: float = 0.5
    max_retry_delay: float = 4.0
    max_budget_cost: int = DEFAULT_MAX_BUDGET_COST
    chars_per_cost_unit: int = 4

    def __post_init__(self):
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {self.max_concurrency}")
        if self.max_budget_cost < 1:
            raise ValueError(f"max_budget_cost must be >= 1, got {self.max_budget_cost}")
        if self.chars_per_cost_unit < 1:
            raise ValueError(
                f"chars_per_cost_unit must be >= 1, got {self.chars_per_cost_unit}"
            )
        # Range checks for the retry settings live in RetryPolicy.
        self.retry_policy()

    @property
    def max_chars_per_unit(self) -> int:
        return self.max_budget_cost * self.chars_per_cost_unit

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            initial_delay=self.initial_retry_delay,
            backoff_multiplier=2.0,
            max_delay=self.max_retry_delay,
            per_attempt_timeout=self.per_chunk_timeout,
        )

    @classmethod
    def from_config(cls, **overrides: Any) -> "ChunkingOptions":
        """Build options from env/config, with keyword overrides taking priority."""
        values = {}
        for name, cast in _OPTION_TYPES.items():
            if overrides.get(name) is not None:
                values[name] = cast(overrides[name])
                continue
            env_value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if env_value is not None and env_value.strip():
                values[name] = cast(env_value.strip())
                continue
            config_value = get_config_value("chunkreview", "chunked_analysis", name)
            if config_value is not None:
                values[name] = cast(config_value)
        return cls(**values)


_OPTION_TYPES: dict = {
    "max_concurrency": int,
    "per_chunk_timeout": float,
    "max_retries": int,
    "initial_retry_delay": float,
    "max_retry_delay": float,
    "max_budget_cost": int,
    "chars_per_cost_unit": int,
}
