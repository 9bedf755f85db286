"""nomnom: turn a directory tree into a single filtered snapshot for LLM context."""

__version__ = "0.2.0"
