"""Pageviews: optimistic local view counters reconciled with a counter service."""

__version__ = "0.1.0"
