"""villacms — draft/live content store for a single published site."""

__version__ = "0.1.0"
