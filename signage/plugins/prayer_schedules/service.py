"""
Service layer: store, look up and summarize prayer time rows.
"""
import logging
import os
import socket
import time
import uuid
from collections import namedtuple
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from signage.core.db import session_scope, utc_now
from signage.core.errors import TransientIOError
from signage.core.locks import KeyedLock
from signage.plugins.prayer_schedules.models import PrayerTimeRow, ScheduleLease

logger = logging.getLogger(__name__)

# Ingestion and deletion of one label never interleave; other labels run freely.
# label_locks covers threads of this process, the lease row covers other processes.
label_locks = KeyedLock()

# A lease older than this belongs to a writer that died without releasing it
LEASE_STALE_SECONDS = 600
LEASE_WAIT_SECONDS = 60
LEASE_POLL_SECONDS = 0.05

ScheduleSummary = namedtuple(
    "ScheduleSummary",
    ["label", "total_days", "most_recent_created_at"],
)


def _lease_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


def _try_acquire_lease(label: str, owner: str) -> bool:
    try:
        with session_scope() as session:
            session.add(ScheduleLease(label=label, owner=owner, acquired_at=utc_now()))
        return True
    except IntegrityError:
        pass
    stale_before = utc_now() - timedelta(seconds=LEASE_STALE_SECONDS)
    with session_scope() as session:
        result = session.execute(
            delete(ScheduleLease).where(ScheduleLease.label == label, ScheduleLease.acquired_at < stale_before)
        )
        if result.rowcount:
            logger.warning(f"Dropped stale lease on schedule '{label}'")
    return False


def _release_lease(label: str, owner: str) -> None:
    try:
        with session_scope() as session:
            session.execute(delete(ScheduleLease).where(ScheduleLease.label == label, ScheduleLease.owner == owner))
    except SQLAlchemyError as e:
        logger.error(f"Could not release lease on schedule '{label}', it expires after {LEASE_STALE_SECONDS}s: {e}")


@contextmanager
def hold_label(label: str, wait: float = LEASE_WAIT_SECONDS):
    """Exclusive hold on a label across threads and processes sharing the database.

    Raises TransientIOError if another writer keeps the label for longer than wait seconds.
    """
    with label_locks.hold(label):
        owner = _lease_owner()
        deadline = time.monotonic() + wait
        try:
            while not _try_acquire_lease(label, owner):
                if time.monotonic() >= deadline:
                    raise TransientIOError(f"Schedule '{label}' is being updated elsewhere, try again later")
                time.sleep(LEASE_POLL_SECONDS)
        except SQLAlchemyError as e:
            logger.error(f"Error locking schedule '{label}': {e}")
            raise TransientIOError(f"Failed to lock schedule '{label}'") from e
        logger.debug(f"Lease on schedule '{label}' taken by {owner}")
        try:
            yield
        finally:
            _release_lease(label, owner)


def delete_rows(label: str) -> int:
    """Delete every row for label without taking the label lock (caller holds it)."""
    with session_scope() as session:
        result = session.execute(delete(PrayerTimeRow).where(PrayerTimeRow.label == label))
        return result.rowcount or 0


def insert_rows(records: List[Dict[str, Any]], created_at: Optional[datetime] = None) -> None:
    """Insert one batch of records in a single transaction."""
    created_at = created_at or utc_now()
    with session_scope() as session:
        session.add_all(PrayerTimeRow(created_at=created_at, **record) for record in records)


def delete_schedule(label: str) -> int:
    """Remove a label's whole row set. Returns the number of rows removed (0 for an unknown label)."""
    with hold_label(label):
        try:
            deleted = delete_rows(label)
        except SQLAlchemyError as e:
            logger.error(f"Error deleting schedule '{label}': {e}")
            raise TransientIOError(f"Failed to delete schedule '{label}'") from e
    logger.info(f"Deleted schedule '{label}' ({deleted} rows)")
    return deleted


def resolve_prayer_times(label: str, month: int, day: int) -> Optional[PrayerTimeRow]:
    """Return the row for exactly (label, month, day), or None when the label has no row for that date."""
    try:
        with session_scope() as session:
            row = (
                session.execute(
                    select(PrayerTimeRow)
                    .where(
                        PrayerTimeRow.label == label,
                        PrayerTimeRow.month == month,
                        PrayerTimeRow.day == day,
                    )
                    .order_by(PrayerTimeRow.id.desc())
                    .limit(1)
                )
                .scalars().first()
            )
    except SQLAlchemyError as e:
        logger.error(f"Error resolving prayer times for {label} {month}/{day}: {e}")
        raise TransientIOError("Failed to read prayer times") from e
    if row is None:
        logger.info(f"No prayer times for {label} on {month}/{day}")
    return row


def count_rows(label: str) -> int:
    with session_scope() as session:
        return session.execute(
            select(func.count(PrayerTimeRow.id)).where(PrayerTimeRow.label == label)
        ).scalar_one()


def list_schedule_summaries() -> List[ScheduleSummary]:
    """Group rows by label: day count and latest upload time, most recent first."""
    try:
        with session_scope() as session:
            rows = session.execute(
                select(
                    PrayerTimeRow.label,
                    func.count(PrayerTimeRow.id),
                    func.max(PrayerTimeRow.created_at),
                )
                .group_by(PrayerTimeRow.label)
                .order_by(func.max(PrayerTimeRow.created_at).desc(), PrayerTimeRow.label)
            ).all()
    except SQLAlchemyError as e:
        logger.error(f"Error listing schedules: {e}")
        raise TransientIOError("Failed to fetch schedules") from e
    return [ScheduleSummary(label, total, created_at) for label, total, created_at in rows]
