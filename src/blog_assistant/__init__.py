"""Retrieval-augmented chat assistant for a Sanity-backed blog."""

__version__ = "0.1.0"
