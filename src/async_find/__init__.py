"""Asynchronous fuzzy finder backed by a per-session worker process."""

__version__ = "0.1.0"
