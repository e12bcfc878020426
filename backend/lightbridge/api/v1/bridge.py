"""
Bridge API endpoints

Read-only view of the running bridge:
- GET /api/v1/bridge/status - Mirror snapshot, MQTT and HomeKit status
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from lightbridge.services.bridge_service import LightBridgeService, get_bridge_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/bridge",
    tags=["bridge"]
)


# ============================================================================
# Pydantic Schemas
# ============================================================================


class DeviceStateResponse(BaseModel):
    """Last-known value of every lightbulb channel."""
    power: bool
    brightness: int = Field(..., description="Brightness percentage")
    color_temperature: int = Field(..., description="Colour temperature in mireds")
    hue: float = Field(..., description="Hue in degrees")
    saturation: float = Field(..., description="Saturation percentage")


class MQTTStatusResponse(BaseModel):
    connected: bool
    broker: str
    client_id: Optional[str] = None
    subscriptions: List[str] = Field(default_factory=list)
    last_connected_at: Optional[str] = None
    messages_published: int = 0
    messages_received: int = 0
    connect_failures: int = 0
    last_error: Optional[str] = None


class HomeKitStatusResponse(BaseModel):
    running: bool
    paired: bool
    accessory_name: Optional[str] = None
    setup_code: Optional[str] = Field(None, description="Pairing code (hidden if paired)")
    setup_uri: Optional[str] = Field(None, description="X-HM:// Setup URI for QR code")
    port: int
    error: Optional[str] = None


class BridgeStatusResponse(BaseModel):
    """Bridge status response."""
    accessory: str = Field(..., description="Accessory name shown in Apple Home")
    running: bool
    state: DeviceStateResponse
    mqtt: MQTTStatusResponse
    homekit: HomeKitStatusResponse

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "accessory": "Desk Lamp",
                "running": True,
                "state": {
                    "power": True,
                    "brightness": 75,
                    "color_temperature": 300,
                    "hue": 120.0,
                    "saturation": 50.0
                },
                "mqtt": {
                    "connected": True,
                    "broker": "broker.local:1883",
                    "client_id": "lightbridge_desk_lamp_1a2b3c4d",
                    "subscriptions": ["stat/lamp/POWER", "tele/lamp/STATE"],
                    "messages_published": 4,
                    "messages_received": 12
                },
                "homekit": {
                    "running": True,
                    "paired": False,
                    "accessory_name": "Desk Lamp",
                    "setup_code": "031-45-154",
                    "setup_uri": "X-HM://0023B6WQLAB1C",
                    "port": 51826
                }
            }
        }
    )


def require_bridge_service(
    service: Optional[LightBridgeService] = Depends(get_bridge_service),
) -> LightBridgeService:
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Bridge is not running"
        )
    return service


@router.get("/status", response_model=BridgeStatusResponse)
async def get_bridge_status(service: LightBridgeService = Depends(require_bridge_service)):
    """
    Get bridge status.

    Returns the mirrored device state together with the MQTT connection
    and HomeKit pairing status. The setup code and URI are hidden once
    the accessory is paired.
    """
    return BridgeStatusResponse(**service.get_status())
