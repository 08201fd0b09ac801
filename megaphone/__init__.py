"""Broadcast channel version service: a Flask app with bearer-token auth, SQLite storage and statsd metrics."""

__version__ = "0.3.0"
__all__ = ["__version__"]