"""HTTP routers."""

from blacktop.routers import messaging, plugins

__all__ = ["messaging", "plugins"]
