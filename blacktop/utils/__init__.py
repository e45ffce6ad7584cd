"""Utility helpers for the Blacktop Blackout API."""

from .locks import KeyedLock, SingleFlight

__all__ = [
    "KeyedLock",
    "SingleFlight",
]
