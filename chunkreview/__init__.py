"""chunkreview — chunked LLM code review and analysis for oversized inputs."""

__version__ = "0.1.0"
