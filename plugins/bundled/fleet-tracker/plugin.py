"""Fleet tracker plugin entry point."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException

POSITION_TOPIC = "fleet.position"


class FleetTrackerPlugin:
    """Records ``fleet.position`` messages and serves the latest fix per vehicle."""

    id = "fleet-tracker"
    name = "Fleet Tracker"
    version = "1.0.0"
    description = "Keeps the last reported position of every fleet vehicle"
    author = "Blacktop Blackout"

    def __init__(self):
        self.context = None
        self.storage = None
        self.active = False
        self._subscription_id: Optional[str] = None

    async def initialize(self, context) -> None:
        self.context = context
        self.storage = context.get_storage_namespace()
        context.register_router(self._create_router())
        context.logger.info("Fleet tracker initialized")

    async def enable(self) -> None:
        self._subscription_id = self.context.api.messaging.subscribe(POSITION_TOPIC, self.on_position)
        self.active = True

    async def disable(self) -> None:
        self.context.api.messaging.unsubscribe(POSITION_TOPIC, self.on_position)
        self._subscription_id = None
        self.active = False

    async def destroy(self) -> None:
        if self.active:
            await self.disable()
        self.context.logger.info("Fleet tracker destroyed")

    async def on_position(self, message: Dict[str, Any]) -> None:
        vehicle_id = message.get("vehicleId")
        if not vehicle_id:
            self.context.logger.warning("Ignoring position without vehicleId")
            return
        self.storage.set(vehicle_id, {
            "lat": message.get("lat"),
            "lng": message.get("lng"),
            "reportedAt": message["_timestamp"].isoformat(),
        })

    def _create_router(self) -> APIRouter:
        router = APIRouter(tags=["fleet-tracker"])

        @router.get("/positions")
        async def list_positions():
            return {key: self.storage.get(key) for key in self.storage.keys()}

        @router.get("/positions/{vehicle_id}")
        async def get_position(vehicle_id: str):
            position = self.storage.get(vehicle_id)
            if position is None:
                raise HTTPException(status_code=404, detail=f"No position for vehicle {vehicle_id}")
            return position

        return router
