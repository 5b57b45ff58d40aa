"""Codebase Insights — LLM-backed codebase summarization and querying."""

__version__ = "0.3.0"
