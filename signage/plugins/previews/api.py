"""
Per-plugin API for previews. Mounted under /api.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel

from signage.api.deps import admin_guard
from .service import create_preview, get_preview


class PreviewCreatedResponse(BaseModel):
    token: str
    previewUrl: str
    expiresAt: datetime


def get_router(signage_app) -> Optional[APIRouter]:
    """Return router for this plugin; mounted with prefix /api."""
    router = APIRouter(tags=["Previews"])
    require_admin = admin_guard(signage_app)

    @router.post(
        "/preview/create",
        response_model=PreviewCreatedResponse,
        dependencies=[Depends(require_admin)],
    )
    def create(customization: Dict[str, Any] = Body(...)) -> PreviewCreatedResponse:
        ttl = int(signage_app.config.section("preview").get("ttl_seconds", 3600))
        record = create_preview(customization, ttl_seconds=ttl)
        return PreviewCreatedResponse(
            token=record.token,
            previewUrl=f"/preview?token={record.token}",
            expiresAt=record.expires_at,
        )

    @router.get("/preview/{token}")
    def read(token: str) -> Dict[str, Any]:
        config = get_preview(token)
        if config is None:
            raise HTTPException(status_code=404, detail="Preview not found or expired")
        return config

    return router
