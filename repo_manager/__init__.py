"""Serve named file repositories over HTTP with per-user permissions."""

__version__ = "0.1.0"
