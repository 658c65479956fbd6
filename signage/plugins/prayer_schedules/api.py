"""
Per-plugin API for prayer schedules. Mounted under /api.
Display pages query one day; admins upload, list and delete whole label sets.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from signage.api.deps import admin_guard
from signage.core.errors import ValidationError
from .ingest import ingest_schedule
from .service import delete_schedule, list_schedule_summaries, resolve_prayer_times


class PrayerTimesResponse(BaseModel):
    fajr: str
    sunrise: str
    dhuhr: str
    asr: str
    maghrib: str
    isha: str


class PrayerTimesLookupResponse(BaseModel):
    success: bool = True
    prayerTimes: PrayerTimesResponse


class UploadResponse(BaseModel):
    success: bool = True
    label: str
    recordsInserted: int
    skippedRows: int
    message: str


class ScheduleSummaryResponse(BaseModel):
    label: str
    totalDays: int
    createdAt: Optional[datetime] = None


class ScheduleListResponse(BaseModel):
    schedules: List[ScheduleSummaryResponse]


class DeleteScheduleResponse(BaseModel):
    success: bool = True
    deleted: int
    message: str


def _required_int(name: str, value: Optional[str]) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Parameter '{name}' must be an integer", details={name: value})


def get_router(signage_app) -> Optional[APIRouter]:
    """Return router for this plugin; mounted with prefix /api."""
    router = APIRouter(tags=["Prayer Schedules"])
    require_admin = admin_guard(signage_app)

    @router.get("/prayer-times", response_model=PrayerTimesLookupResponse)
    def get_prayer_times(
        label: Optional[str] = None,
        month: Optional[str] = None,
        day: Optional[str] = None,
    ):
        """Return the prayer times stored for label on month/day."""
        if not label or not month or not day:
            raise ValidationError("Missing required parameters: label, month, day")
        month_value = _required_int("month", month)
        day_value = _required_int("day", day)
        row = resolve_prayer_times(label, month_value, day_value)
        if row is None:
            return JSONResponse(
                status_code=404,
                content={
                    "success": False,
                    "message": "No prayer times found for this date",
                    "details": f"No data for {label} on {month_value}/{day_value}",
                },
            )
        return PrayerTimesLookupResponse(prayerTimes=PrayerTimesResponse(**row.prayer_times()))

    @router.post(
        "/admin/prayer-schedules/upload",
        response_model=UploadResponse,
        dependencies=[Depends(require_admin)],
    )
    def upload_schedule(file: Optional[UploadFile] = File(None)) -> UploadResponse:
        """Replace a label's schedule with the uploaded CSV."""
        if file is None:
            raise ValidationError("No file provided")
        raw = file.file.read()
        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise ValidationError("CSV file must be UTF-8 encoded")
        schedules_config = signage_app.config.section("schedules")
        result = ingest_schedule(
            text,
            batch_size=schedules_config.get("batch_size", 100),
            compensate=bool(schedules_config.get("compensate_partial_failure", False)),
        )
        return UploadResponse(
            label=result.label,
            recordsInserted=result.records_inserted,
            skippedRows=result.skipped_rows,
            message=f'Successfully uploaded "{result.label}" with {result.records_inserted} prayer times',
        )

    @router.get(
        "/admin/prayer-schedules",
        response_model=ScheduleListResponse,
        dependencies=[Depends(require_admin)],
    )
    def list_schedules() -> ScheduleListResponse:
        """One entry per label with its day count and latest upload time."""
        return ScheduleListResponse(
            schedules=[
                ScheduleSummaryResponse(
                    label=s.label,
                    totalDays=s.total_days,
                    createdAt=s.most_recent_created_at,
                )
                for s in list_schedule_summaries()
            ]
        )

    @router.delete(
        "/admin/prayer-schedules",
        response_model=DeleteScheduleResponse,
        dependencies=[Depends(require_admin)],
    )
    def remove_schedule(label: Optional[str] = None) -> DeleteScheduleResponse:
        if not label:
            raise ValidationError("Label parameter is required")
        deleted = delete_schedule(label)
        return DeleteScheduleResponse(
            deleted=deleted,
            message=f'Schedule "{label}" deleted successfully',
        )

    return router
