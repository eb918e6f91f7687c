"""Command line interface for the SoftOne catalog sync."""

from .__main__ import main

__all__ = ["main"]
