"""
Per-plugin API for device pairing. Mounted under /api.
Devices poll POST /device/auth and call POST /device/register once; admins
approve, reject and delete through /admin/devices.
Uses DeviceRecord ORM with Pydantic from_attributes.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from signage.api.deps import admin_guard
from . import service


class DeviceAuthRequest(BaseModel):
    deviceId: Optional[str] = None
    displayId: Optional[str] = None
    userAgent: Optional[str] = None
    screenResolution: Optional[str] = None


class DeviceRegisterRequest(DeviceAuthRequest):
    deviceName: Optional[str] = None


class DeviceAuthResponse(BaseModel):
    success: bool = True
    authorized: bool
    needsRegistration: bool
    status: str
    deviceName: Optional[str] = None
    message: Optional[str] = None


class DeviceRegisterResponse(BaseModel):
    success: bool
    status: str
    message: Optional[str] = None


class DeviceStatusUpdate(BaseModel):
    status: Optional[str] = None


class DeviceRecordResponse(BaseModel):
    """Pydantic view of DeviceRecord for API; serializes from ORM."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    device_id: str
    display_id: str
    device_name: Optional[str] = None
    status: str
    user_agent: Optional[str] = None
    screen_resolution: Optional[str] = None
    first_seen_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DeviceListResponse(BaseModel):
    success: bool = True
    data: List[DeviceRecordResponse]


class DeviceUpdateResponse(BaseModel):
    success: bool = True
    message: str
    device: Optional[DeviceRecordResponse] = None


def _metadata(body: DeviceAuthRequest) -> dict:
    return {"user_agent": body.userAgent, "screen_resolution": body.screenResolution}


def get_router(signage_app) -> Optional[APIRouter]:
    """Return router for this plugin; mounted with prefix /api."""
    router = APIRouter(tags=["Devices"])
    require_admin = admin_guard(signage_app)

    @router.post("/device/auth", response_model=DeviceAuthResponse)
    def device_auth(body: DeviceAuthRequest) -> DeviceAuthResponse:
        """Polled by every display device; never pairs an unknown device."""
        result = service.probe(body.deviceId, body.displayId, _metadata(body))
        return DeviceAuthResponse(
            authorized=result.authorized,
            needsRegistration=result.needs_registration,
            status=result.status,
            deviceName=result.device_name,
            message=result.message,
        )

    @router.post("/device/register", response_model=DeviceRegisterResponse)
    def device_register(body: DeviceRegisterRequest) -> DeviceRegisterResponse:
        result = service.register(body.deviceId, body.displayId, body.deviceName, _metadata(body))
        return DeviceRegisterResponse(success=result.success, status=result.status, message=result.message)

    @router.get(
        "/admin/devices",
        response_model=DeviceListResponse,
        dependencies=[Depends(require_admin)],
    )
    def list_devices(displayId: Optional[str] = None) -> DeviceListResponse:
        records = service.list_devices(displayId)
        return DeviceListResponse(data=[DeviceRecordResponse.model_validate(r) for r in records])

    @router.patch(
        "/admin/devices/{record_id}",
        response_model=DeviceUpdateResponse,
        dependencies=[Depends(require_admin)],
    )
    def update_device_status(record_id: int, body: DeviceStatusUpdate) -> DeviceUpdateResponse:
        """Approve (authorized) or revoke (rejected) a device."""
        record = service.decide_by_id(record_id, body.status)
        return DeviceUpdateResponse(
            message=f"Device status updated to '{record.status}' successfully",
            device=DeviceRecordResponse.model_validate(record),
        )

    @router.delete(
        "/admin/devices/{record_id}",
        response_model=DeviceUpdateResponse,
        dependencies=[Depends(require_admin)],
    )
    def delete_device(record_id: int) -> DeviceUpdateResponse:
        service.delete_device(record_id)
        return DeviceUpdateResponse(message="Device deleted successfully")

    return router
