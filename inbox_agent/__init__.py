"""Inbox agent: turns mail and chat threads into suggested to-do items."""

__all__ = ["__version__"]

__version__ = "0.1.0"
