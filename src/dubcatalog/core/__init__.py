"""Shared infrastructure: exceptions, logging, cache backends and rate limiting."""
