"""OpenAI-compatible chat completions backed by a Dify application."""

__version__ = "0.1.0"
