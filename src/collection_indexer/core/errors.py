"""Exceptions shared across workflows."""

from __future__ import annotations


class BootstrapFailure(Exception):
    """Setup problem (input list, cache file, simulation) that stops a run before any work begins."""
