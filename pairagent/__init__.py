"""PairAgent - Instructor/Worker orchestration for LLM coding sessions."""

__version__ = "0.1.0"
