"""Incremental indexer for a fixed collection of ordinals inscriptions."""

__version__ = "0.1.0"
