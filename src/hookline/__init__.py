"""Hookline - outgoing webhook delivery for the messaging back office."""

__version__ = "0.1.0"
