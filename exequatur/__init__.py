"""Exequatur registry verification: record retrieval and fuzzy identity matching."""

__version__ = "0.3.0"
