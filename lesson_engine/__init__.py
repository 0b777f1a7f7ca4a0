"""Retrieval-and-generation core of the curriculum lesson engine."""

__version__ = "0.1.0"
