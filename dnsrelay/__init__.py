"""Core of a pluggable DNS forwarder: plugin loading, caches, matchers and DNS helpers."""

__version__ = "0.1.0"