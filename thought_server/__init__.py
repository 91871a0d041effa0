"""Confidence-scored draft and thought refinement service."""

__version__ = "1.0.0"
