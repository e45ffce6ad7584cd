"""Blacktop Blackout module platform: plugin manager, messaging bus and client module store."""

__version__ = "1.0.0"
