"""Hierarchical codebase documentation generated by external LLM CLIs."""

__version__ = "0.1.0"
