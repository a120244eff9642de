"""LLM gateway — the generation backend consumed by the pipeline.

Wraps any LlamaIndex LLM behind a single coroutine, generate(prompt) -> str,
which is all the pipeline knows about a backend. Network, auth and
rate-limit errors propagate unchanged; retrying them is the pipeline's job.

Each backend keeps its own call, token and latency counters, tagged by
purpose (review, analysis). Token counts come from the provider when it
reports usage and from a chars/4 estimate otherwise.

Usage:
    from chunkreview.core.gateway import BackendRegistry
    registry = BackendRegistry()
    registry.register("primary", raw_llm, default=True)
    backend = registry.resolve()
    text = await backend.generate(prompt)
"""

import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from llama_index.core import Settings

logger = logging.getLogger(__name__)


class NoBackendConfiguredError(RuntimeError):
    """Raised when no generation backend is available at all."""


def _settings_llm() -> Optional[Any]:
    """LlamaIndex's globally configured LLM, or None.

    Settings.llm lazily resolves a default provider on first access, which
    raises when that provider is not installed or has no credentials.
    """
    try:
        return Settings.llm
    except Exception as e:
        logger.debug(f"Settings.llm unavailable: {e}")
        return None


# Same ratio as the pipeline's CostEstimator; used when the provider
# reports no usage.
_CHARS_PER_TOKEN = 4


def _usage_tokens(response: Any) -> Tuple[Optional[int], Optional[int]]:
    """(prompt_tokens, completion_tokens) reported by the provider, if any."""
    raw = getattr(response, "raw", None)
    if isinstance(raw, dict):
        usage = raw.get("usage")
    else:
        usage = getattr(raw, "usage", None)
    if not usage:
        return None, None
    if isinstance(usage, dict):
        return usage.get("prompt_tokens"), usage.get("completion_tokens")
    return getattr(usage, "prompt_tokens", None), getattr(usage, "completion_tokens", None)


# ── Metrics ────────────────────────────────────────────────────────────

@dataclass
class BackendMetrics:
    """Per-backend usage counters, guarded by the owning backend's lock."""

    total_calls: int = 0
    total_tokens_in: int = 0
    total_tokens_out: int = 0
    total_latency_ms: float = 0.0
    errors: int = 0
    calls_by_purpose: Dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def snapshot(self) -> dict:
        calls = self.total_calls
        return {
            "total_calls": calls,
            "total_tokens_in": self.total_tokens_in,
            "total_tokens_out": self.total_tokens_out,
            "total_latency_ms": round(self.total_latency_ms, 1),
            "avg_latency_ms": round(self.total_latency_ms / calls, 1) if calls else 0.0,
            "errors": self.errors,
            "calls_by_purpose": dict(self.calls_by_purpose),
        }


# ── Backend ────────────────────────────────────────────────────────────

class LLMBackend:
    """Async text-generation backend over a LlamaIndex LLM.

    Args:
        llm: Any LlamaIndex LLM (anything with acomplete(prompt) -> CompletionResponse)
        name: Label used in logs and metrics
    """

    def __init__(self, llm: Any, name: Optional[str] = None):
        if llm is None:
            raise NoBackendConfiguredError("LLMBackend requires an LLM instance")
        self._llm = llm
        self.name = name or type(llm).__name__
        self._metrics = BackendMetrics()
        self._lock = threading.Lock()
        logger.info(
            f"LLMBackend '{self.name}' initialized, wrapping {type(llm).__name__}"
            f" (model={self.model})"
        )

    @property
    def llm(self) -> Any:
        """The wrapped LlamaIndex LLM."""
        return self._llm

    @property
    def model(self) -> str:
        return getattr(self._llm, "model", "unknown")

    async def generate(self, prompt: str, purpose: str = "general") -> str:
        """Run one completion and return its text."""
        started = time.perf_counter()
        try:
            response = await self._llm.acomplete(prompt)
        except Exception as e:
            self._record_error(purpose, e)
            raise

        latency_ms = (time.perf_counter() - started) * 1000
        text = getattr(response, "text", None) or ""
        self._record_success(prompt, response, text, latency_ms, purpose)
        return text

    async def __call__(self, prompt: str) -> str:
        return await self.generate(prompt)

    # ── Metrics ───────────────────────────────────────────────────────

    def _record_success(
        self,
        prompt: str,
        response: Any,
        text: str,
        latency_ms: float,
        purpose: str,
    ):
        reported_in, reported_out = _usage_tokens(response)
        tokens_in = int(reported_in or len(prompt) // _CHARS_PER_TOKEN)
        tokens_out = int(reported_out or len(text) // _CHARS_PER_TOKEN)

        with self._lock:
            metrics = self._metrics
            metrics.total_calls += 1
            metrics.total_tokens_in += tokens_in
            metrics.total_tokens_out += tokens_out
            metrics.total_latency_ms += latency_ms
            metrics.calls_by_purpose[purpose] += 1

        logger.debug(
            f"{purpose} call on backend '{self.name}' ({self.model}): "
            f"{len(prompt)} chars in, {len(text)} chars out, "
            f"~{tokens_in}/{tokens_out} tokens, {latency_ms:.0f}ms"
        )

    def _record_error(self, purpose: str, error: Exception):
        with self._lock:
            self._metrics.errors += 1
            self._metrics.calls_by_purpose[f"{purpose}_error"] += 1
        logger.warning(
            f"{purpose} call on backend '{self.name}' ({self.model}) failed: "
            f"{type(error).__name__}: {error}"
        )

    def get_metrics(self) -> dict:
        """Counters for this backend, plus its name and model."""
        with self._lock:
            result = self._metrics.snapshot()
        result.update(model=self.model, backend=self.name)
        return result

    def reset_metrics(self):
        with self._lock:
            self._metrics = BackendMetrics()
        logger.info(f"Metrics reset for backend '{self.name}'")


# ── Registry ───────────────────────────────────────────────────────────

@dataclass
class _BackendEntry:
    backend: LLMBackend
    active: bool = True


class BackendRegistry:
    """Named generation backends with a default.

    resolve(name) returns the named backend if it is registered and active,
    otherwise the default backend, otherwise one built from Settings.llm.
    """

    def __init__(self):
        self._entries: Dict[str, _BackendEntry] = {}
        self._default: Optional[str] = None
        self._settings_backend: Optional[LLMBackend] = None
        self._lock = threading.Lock()

    def register(
        self,
        name: str,
        llm: Any,
        active: bool = True,
        default: bool = False,
    ) -> LLMBackend:
        """Register an LLM (or an existing LLMBackend) under name."""
        backend = llm if isinstance(llm, LLMBackend) else LLMBackend(llm, name=name)
        with self._lock:
            self._entries[name] = _BackendEntry(backend=backend, active=active)
            if default or self._default is None:
                self._default = name
        logger.info(f"Registered backend '{name}' (active={active}, default={self._default == name})")
        return backend

    def set_active(self, name: str, active: bool):
        with self._lock:
            if name not in self._entries:
                raise KeyError(f"Unknown backend: {name}")
            self._entries[name].active = active

    def set_default(self, name: str):
        with self._lock:
            if name not in self._entries:
                raise KeyError(f"Unknown backend: {name}")
            self._default = name

    def names(self):
        with self._lock:
            return list(self._entries)

    def resolve(self, name: Optional[str] = None) -> LLMBackend:
        """Pick the backend for a request.

        Raises:
            NoBackendConfiguredError: nothing usable is registered and
                Settings.llm is not configured
        """
        with self._lock:
            if name is not None:
                entry = self._entries.get(name)
                if entry is not None and entry.active:
                    return entry.backend
                logger.warning(f"Backend '{name}' unavailable or inactive, falling back to default")

            if self._default is not None:
                entry = self._entries[self._default]
                if entry.active:
                    return entry.backend

        llm = _settings_llm()
        if llm is not None:
            if isinstance(llm, LLMBackend):
                return llm
            with self._lock:
                if self._settings_backend is None or self._settings_backend.llm is not llm:
                    self._settings_backend = LLMBackend(llm, name="settings")
                return self._settings_backend

        raise NoBackendConfiguredError("No usable LLM backend configured")
