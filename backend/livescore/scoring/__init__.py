"""Scoring engines for live refereed matches."""

from . import rally

__all__ = ["rally"]
