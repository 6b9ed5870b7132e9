"""Adapters shared across the content tools."""
