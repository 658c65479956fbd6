"""
SQLAlchemy models for uploaded prayer time tables: one row per label per calendar day.
"""
from sqlalchemy import Column, String, DateTime, Integer, Index

from signage.core.db import Base, utc_now

PRAYER_FIELDS = ("fajr", "sunrise", "dhuhr", "asr", "maghrib", "isha")


class PrayerTimeRow(Base):
    """One calendar day of prayer times for a label. Time values are stored verbatim from the upload."""
    __tablename__ = "prayer_times"
    # Not unique: ingestion replaces a label's whole set, which keeps (label, month, day) unique
    __table_args__ = (Index("ix_prayer_times_label_date", "label", "month", "day"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    label = Column(String(255), nullable=False, index=True)
    month = Column(Integer, nullable=False)
    day = Column(Integer, nullable=False)
    fajr = Column(String(32), nullable=False, default="")
    sunrise = Column(String(32), nullable=False, default="")
    dhuhr = Column(String(32), nullable=False, default="")
    asr = Column(String(32), nullable=False, default="")
    maghrib = Column(String(32), nullable=False, default="")
    isha = Column(String(32), nullable=False, default="")
    created_at = Column(DateTime(timezone=False), default=utc_now, nullable=False)

    def prayer_times(self) -> dict:
        return {field: getattr(self, field) for field in PRAYER_FIELDS}


class ScheduleLease(Base):
    """Held by the writer replacing a label's rows; the primary key admits one holder per label."""
    __tablename__ = "prayer_schedule_leases"

    label = Column(String(255), primary_key=True)
    owner = Column(String(255), nullable=False)
    acquired_at = Column(DateTime(timezone=False), default=utc_now, nullable=False)
