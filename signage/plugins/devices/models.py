"""
SQLAlchemy model for paired display devices: one row per (device_id, display_id).
"""
from sqlalchemy import Column, String, DateTime, Integer, UniqueConstraint

from signage.core.db import Base, utc_now


class DeviceStatus:
    """Pairing state of a device for one display."""
    UNREGISTERED = "unregistered"  # no row yet; never stored
    PENDING = "pending"
    AUTHORIZED = "authorized"
    REJECTED = "rejected"

    DECISIONS = (AUTHORIZED, REJECTED)


class DeviceRecord(Base):
    """A device that asked to show a display. Status changes only through register/decide."""
    __tablename__ = "devices"
    __table_args__ = (UniqueConstraint("device_id", "display_id", name="uq_devices_device_display"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    device_id = Column(String(255), nullable=False, index=True)
    display_id = Column(String(255), nullable=False, index=True)
    device_name = Column(String(255), nullable=True)
    status = Column(String(32), nullable=False, default=DeviceStatus.PENDING)
    user_agent = Column(String(1024), nullable=True)
    screen_resolution = Column(String(64), nullable=True)
    first_seen_at = Column(DateTime(timezone=False), default=utc_now, nullable=False)
    last_seen_at = Column(DateTime(timezone=False), default=utc_now, nullable=False)
    created_at = Column(DateTime(timezone=False), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=False), default=utc_now, onupdate=utc_now, nullable=False)
