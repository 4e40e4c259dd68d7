"""Lightweight relay in front of the DuckDuckGo chat API."""

__version__ = "0.1.0"
