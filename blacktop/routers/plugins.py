"""Plugin management REST API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from blacktop.errors import AlreadyLoadedError, NotLoadedError, PluginNotFoundError, ValidationError
from blacktop.dependencies import get_plugin_manager, get_plugin_registry
from blacktop.models.requests import InstallRequest, PluginConfigUpdate
from blacktop.models.responses import ApiResponse
from blacktop.plugins.lifecycle import PluginState
from blacktop.plugins.manager import PluginManager
from blacktop.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plugins", tags=["plugins"])


@router.get("")
async def list_plugins(
    manager: PluginManager = Depends(get_plugin_manager),
    registry: PluginRegistry = Depends(get_plugin_registry),
):
    """List installed and loaded plugins together with the registry catalog."""
    return ApiResponse.ok({
        "installed": manager.get_installed_plugins(),
        "loaded": manager.get_loaded_plugins(),
        "registry": [m.to_dict() for m in registry.get_all_plugins()],
    })


@router.get("/search")
async def search_plugins(
    q: Optional[str] = Query(None, description="Text matched against name, description and tags"),
    type: Optional[str] = Query(None, description="Module type filter"),
    registry: PluginRegistry = Depends(get_plugin_registry),
):
    if not q:
        raise ValidationError("Search query is required", member="q")
    try:
        results = registry.search_plugins(q, type)
    except ValueError:
        raise ValidationError(f"Unknown module type: {type}", member="type")
    return ApiResponse.ok([m.to_dict() for m in results])


@router.get("/stats")
async def plugin_statistics(manager: PluginManager = Depends(get_plugin_manager)):
    return ApiResponse.ok(manager.get_statistics())


@router.get("/{plugin_id}")
async def get_plugin(
    plugin_id: str,
    manager: PluginManager = Depends(get_plugin_manager),
    registry: PluginRegistry = Depends(get_plugin_registry),
):
    """Get runtime info and catalog metadata of one plugin."""
    info = manager.get_plugin_info(plugin_id)
    metadata = registry.get_plugin_metadata(plugin_id)
    if info is None and metadata is None:
        raise HTTPException(status_code=404, detail=f"Plugin '{plugin_id}' not found")

    return ApiResponse.ok({
        "info": info,
        "metadata": metadata.to_dict() if metadata else None,
        "isLoaded": manager.is_plugin_loaded(plugin_id),
        "state": manager.get_plugin_state(plugin_id).value,
    })


@router.post("/{plugin_id}/install")
async def install_plugin(
    plugin_id: str,
    body: Optional[InstallRequest] = Body(None),
    manager: PluginManager = Depends(get_plugin_manager),
):
    """Install a plugin. The package spec defaults to the plugin id."""
    body = body or InstallRequest()
    metadata = await manager.install_plugin(body.source or plugin_id, body.version)
    return ApiResponse.ok(
        metadata.to_dict(),
        message=f"Plugin '{metadata.id}' installed successfully",
    )


@router.post("/{plugin_id}/load")
async def load_plugin(plugin_id: str, manager: PluginManager = Depends(get_plugin_manager)):
    if manager.is_plugin_loaded(plugin_id):
        raise AlreadyLoadedError(plugin_id)
    await manager.load_plugin(plugin_id)
    return ApiResponse.ok(message=f"Plugin '{plugin_id}' loaded successfully")


@router.post("/{plugin_id}/unload")
async def unload_plugin(plugin_id: str, manager: PluginManager = Depends(get_plugin_manager)):
    if not manager.is_plugin_loaded(plugin_id):
        raise NotLoadedError(plugin_id)
    await manager.unload_plugin(plugin_id)
    return ApiResponse.ok(message=f"Plugin '{plugin_id}' unloaded successfully")


@router.post("/{plugin_id}/enable")
async def enable_plugin(plugin_id: str, manager: PluginManager = Depends(get_plugin_manager)):
    await manager.enable_plugin(plugin_id)
    return ApiResponse.ok(message=f"Plugin '{plugin_id}' enabled successfully")


@router.post("/{plugin_id}/disable")
async def disable_plugin(plugin_id: str, manager: PluginManager = Depends(get_plugin_manager)):
    await manager.disable_plugin(plugin_id)
    return ApiResponse.ok(message=f"Plugin '{plugin_id}' disabled successfully")


@router.put("/{plugin_id}/config")
async def update_plugin_config(
    plugin_id: str,
    body: PluginConfigUpdate,
    manager: PluginManager = Depends(get_plugin_manager),
):
    """Update plugin configuration. Takes effect on the next load."""
    if manager.get_plugin_state(plugin_id) == PluginState.UNINSTALLED:
        raise PluginNotFoundError(plugin_id)
    manager.config_service.update_plugin_config(plugin_id, body.config)
    return ApiResponse.ok(message=f"Configuration updated for plugin '{plugin_id}'")


@router.delete("/{plugin_id}")
async def uninstall_plugin(plugin_id: str, manager: PluginManager = Depends(get_plugin_manager)):
    await manager.uninstall_plugin(plugin_id)
    return ApiResponse.ok(message=f"Plugin '{plugin_id}' uninstalled successfully")
