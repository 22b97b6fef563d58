"""Unified inbox: multi-channel message ingestion, identity resolution and enrichment."""

from .__version__ import __version__

__all__ = ["__version__"]
