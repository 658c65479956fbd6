"""
Service layer: device pairing state machine.

unregistered -> pending (register) -> authorized | rejected (decide).
Probing never creates a record; only register does, and only decide moves a
device out of pending. An operator may overwrite any decided status.
"""
import logging
from collections import namedtuple
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from signage.core.db import session_scope, utc_now
from signage.core.errors import NotFoundError, TransientIOError, ValidationError
from signage.core.locks import KeyedLock
from signage.plugins.devices.models import DeviceRecord, DeviceStatus

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 3

# register/decide for one (device_id, display_id) run one at a time
device_locks = KeyedLock()

ProbeResult = namedtuple(
    "ProbeResult",
    ["status", "authorized", "device_name", "needs_registration", "message"],
    defaults=(None,),
)

STATUS_MESSAGES = {
    DeviceStatus.UNREGISTERED: "Device not registered for this display",
    DeviceStatus.PENDING: "Device is waiting for administrator approval",
    DeviceStatus.REJECTED: "Device access has been rejected",
}

RegistrationResult = namedtuple(
    "RegistrationResult",
    ["success", "status", "created", "message"],
)


def _require_ids(device_id: Optional[str], display_id: Optional[str]) -> None:
    if not device_id or not display_id:
        raise ValidationError("Missing required fields: deviceId, displayId")


def _find(session: Session, device_id: str, display_id: str) -> Optional[DeviceRecord]:
    return session.execute(
        select(DeviceRecord).where(
            DeviceRecord.device_id == device_id,
            DeviceRecord.display_id == display_id,
        )
    ).scalars().first()


def _apply_metadata(row: DeviceRecord, metadata: Dict[str, Any]) -> None:
    if metadata.get("user_agent"):
        row.user_agent = metadata["user_agent"]
    if metadata.get("screen_resolution"):
        row.screen_resolution = metadata["screen_resolution"]


def probe(device_id: str, display_id: str, metadata: Optional[Dict[str, Any]] = None) -> ProbeResult:
    """Report the pairing status of a device for a display and record that it was seen."""
    _require_ids(device_id, display_id)
    try:
        with session_scope() as session:
            row = _find(session, device_id, display_id)
            if row is None:
                logger.info(f"Unregistered device {device_id} probed display {display_id}")
                return ProbeResult(
                    DeviceStatus.UNREGISTERED, False, None, True, STATUS_MESSAGES[DeviceStatus.UNREGISTERED]
                )
            row.last_seen_at = utc_now()
            _apply_metadata(row, metadata or {})
            return ProbeResult(
                row.status,
                row.status == DeviceStatus.AUTHORIZED,
                row.device_name,
                False,
                STATUS_MESSAGES.get(row.status),
            )
    except SQLAlchemyError as e:
        logger.error(f"Error probing device {device_id} for display {display_id}: {e}")
        raise TransientIOError("Failed to check device authorization") from e


def _register_locked(device_id: str, display_id: str, name: str, metadata: Dict[str, Any]) -> RegistrationResult:
    with session_scope() as session:
        row = _find(session, device_id, display_id)
        now = utc_now()
        if row is None:
            row = DeviceRecord(
                device_id=device_id,
                display_id=display_id,
                device_name=name,
                status=DeviceStatus.PENDING,
                first_seen_at=now,
                last_seen_at=now,
            )
            _apply_metadata(row, metadata)
            session.add(row)
            session.flush()
            logger.info(f"Registered device {device_id} ('{name}') for display {display_id}, pending approval")
            return RegistrationResult(True, DeviceStatus.PENDING, True, "Device registered. Waiting for admin approval.")

        # Re-registration refreshes name and metadata but never changes a decided status
        row.device_name = name
        row.last_seen_at = now
        _apply_metadata(row, metadata)
        logger.info(f"Device {device_id} re-registered for display {display_id} (status {row.status})")
        return RegistrationResult(True, row.status, False, "Device already registered")


def register(
    device_id: str,
    display_id: str,
    device_name: Optional[str],
    metadata: Optional[Dict[str, Any]] = None,
) -> RegistrationResult:
    """Create a pending record for the pair, or refresh an existing one. Safe to retry."""
    _require_ids(device_id, display_id)
    name = (device_name or "").strip()
    if len(name) < MIN_NAME_LENGTH:
        raise ValidationError(f"Device name must be at least {MIN_NAME_LENGTH} characters")
    metadata = metadata or {}

    with device_locks.hold((device_id, display_id)):
        try:
            try:
                return _register_locked(device_id, display_id, name, metadata)
            except IntegrityError:
                # Another process inserted the pair between our read and insert
                logger.info(f"Device {device_id}/{display_id} created concurrently, updating instead")
                return _register_locked(device_id, display_id, name, metadata)
        except SQLAlchemyError as e:
            logger.error(f"Error registering device {device_id} for display {display_id}: {e}")
            raise TransientIOError("Failed to register device") from e


def decide(device_id: str, display_id: str, outcome: str) -> DeviceRecord:
    """Administrative approval or rejection. Overwrites whatever status the device had."""
    _require_ids(device_id, display_id)
    if outcome not in DeviceStatus.DECISIONS:
        raise ValidationError(
            f"Valid status is required ({' or '.join(DeviceStatus.DECISIONS)})",
            details={"status": outcome},
        )
    with device_locks.hold((device_id, display_id)):
        try:
            with session_scope() as session:
                row = _find(session, device_id, display_id)
                if row is None:
                    raise NotFoundError(f"No device {device_id} registered for display {display_id}")
                previous = row.status
                row.status = outcome
                row.updated_at = utc_now()
        except SQLAlchemyError as e:
            logger.error(f"Error updating device {device_id}: {e}")
            raise TransientIOError("Failed to update device status") from e
    logger.info(f"Device {device_id} on display {display_id}: {previous} -> {outcome}")
    return row


def get_device(record_id: int) -> DeviceRecord:
    try:
        with session_scope() as session:
            row = session.get(DeviceRecord, record_id)
    except SQLAlchemyError as e:
        raise TransientIOError("Failed to read device") from e
    if row is None:
        raise NotFoundError(f"Device {record_id} not found")
    return row


def decide_by_id(record_id: int, outcome: str) -> DeviceRecord:
    row = get_device(record_id)
    return decide(row.device_id, row.display_id, outcome)


def list_devices(display_id: Optional[str] = None) -> List[DeviceRecord]:
    """All device records, newest first, optionally for one display."""
    query = select(DeviceRecord).order_by(DeviceRecord.created_at.desc(), DeviceRecord.id.desc())
    if display_id:
        query = query.where(DeviceRecord.display_id == display_id)
    try:
        with session_scope() as session:
            return list(session.execute(query).scalars().all())
    except SQLAlchemyError as e:
        logger.error(f"Error listing devices: {e}")
        raise TransientIOError("Failed to list devices") from e


def delete_device(record_id: int) -> None:
    """Explicit administrative delete. The device has to register again afterwards."""
    row = get_device(record_id)
    with device_locks.hold((row.device_id, row.display_id)):
        try:
            with session_scope() as session:
                current = session.get(DeviceRecord, record_id)
                if current is None:
                    raise NotFoundError(f"Device {record_id} not found")
                session.delete(current)
        except SQLAlchemyError as e:
            logger.error(f"Error deleting device {record_id}: {e}")
            raise TransientIOError("Failed to delete device") from e
    logger.info(f"Deleted device {row.device_id} for display {row.display_id}")
