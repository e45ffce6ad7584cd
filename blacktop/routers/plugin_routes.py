"""Mounts routers contributed by plugins under ``/api/plugin/<id>``."""

import logging
from typing import Dict, List

from fastapi import FastAPI
from starlette.routing import BaseRoute

from blacktop.plugins.api import PluginContext

logger = logging.getLogger(__name__)

PLUGIN_ROUTE_PREFIX = "/api/plugin"


class PluginRouteMounter:
    """Tracks which application routes belong to which plugin."""

    def __init__(self, app: FastAPI):
        self.app = app
        self._routes: Dict[str, List[BaseRoute]] = {}

    def mount(self, plugin_id: str, context: PluginContext) -> int:
        """Include every router the plugin registered during ``initialize()``.

        Returns:
            Number of routes added
        """
        self.unmount(plugin_id)

        before = list(self.app.router.routes)
        for router, prefix in context.routers:
            self.app.include_router(router, prefix=f"{PLUGIN_ROUTE_PREFIX}/{plugin_id}{prefix}")
        added = [r for r in self.app.router.routes if r not in before]

        if added:
            self._routes[plugin_id] = added
            self.app.openapi_schema = None
            logger.info(f"Mounted {len(added)} route(s) for plugin '{plugin_id}'")
        return len(added)

    def unmount(self, plugin_id: str) -> int:
        routes = self._routes.pop(plugin_id, [])
        if not routes:
            return 0
        self.app.router.routes[:] = [r for r in self.app.router.routes if r not in routes]
        self.app.openapi_schema = None
        logger.info(f"Removed {len(routes)} route(s) of plugin '{plugin_id}'")
        return len(routes)

    def mounted(self, plugin_id: str) -> List[str]:
        return [getattr(r, "path", "") for r in self._routes.get(plugin_id, [])]
