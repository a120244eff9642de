# Lazy imports so `import chunkreview.core` does not pull in LlamaIndex.

__all__ = [
    "ChunkedAnalysisPipeline",
    "AnalysisKind",
    "AggregatedReport",
    "LLMBackend",
    "BackendRegistry",
    "NoBackendConfiguredError",
]

_IMPORT_MAP = {
    "ChunkedAnalysisPipeline": ".chunked_analysis.pipeline",
    "AnalysisKind": ".chunked_analysis.models",
    "AggregatedReport": ".chunked_analysis.models",
    "LLMBackend": ".gateway",
    "BackendRegistry": ".gateway",
    "NoBackendConfiguredError": ".gateway",
}


def __getattr__(name):
    if name in _IMPORT_MAP:
        import importlib
        module = importlib.import_module(_IMPORT_MAP[name], __name__)
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
