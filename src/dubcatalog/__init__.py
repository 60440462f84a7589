"""Resilient content-extraction pipeline for a dubbed-anime media catalog."""

__version__ = "0.1.0"
