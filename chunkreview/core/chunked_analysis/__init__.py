"""Chunked Analysis — review or analyze inputs larger than one backend call allows.

Public API:
    ChunkedAnalysisPipeline  — orchestrator (analyze, analyze_async)
    ChunkingOptions          — concurrency, timeout, retry and budget settings
    DiffSegmenter            — split a multi-file diff into labeled units
    ChunkDispatcher          — bounded-concurrency fan-out with retries
    ResponseNormalizer       — tolerant model-output parsing
    ReportAggregator         — merge per-unit outcomes into one report
"""

from .pipeline import ChunkedAnalysisPipeline
from .options import ChunkingOptions
from .segmenter import DiffSegmenter
from .dispatcher import ChunkDispatcher
from .normalizer import ResponseNormalizer
from .aggregator import ReportAggregator

__all__ = [
    "ChunkedAnalysisPipeline",
    "ChunkingOptions",
    "DiffSegmenter",
    "ChunkDispatcher",
    "ResponseNormalizer",
    "ReportAggregator",
]
