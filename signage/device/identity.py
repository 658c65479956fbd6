"""
Durable device identity. Minted once on first run and kept in the device's
local store; only an explicit reset (operator unpairing) replaces it.
"""
import logging
import secrets
import string
import time
from datetime import datetime
from typing import Optional

from signage.core.errors import LocalStoreError
from signage.core.local_store import LocalStore

logger = logging.getLogger(__name__)

DEVICE_ID_KEY = "device_id"
_ALPHABET = string.digits + string.ascii_lowercase


def generate_device_id() -> str:
    """device_<epoch ms>_<9 random base36 chars>: unique across uncoordinated devices."""
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(9))
    return f"device_{int(time.time() * 1000)}_{suffix}"


class DeviceIdentity:
    def __init__(self, store: LocalStore):
        self.store = store

    def ensure_identity(self) -> str:
        """Stored id, minted on first use. An unreadable store raises LocalStoreError and is left untouched."""
        device_id = self.store.get(DEVICE_ID_KEY)
        if device_id:
            return device_id
        device_id = generate_device_id()
        self.store.set(DEVICE_ID_KEY, device_id)
        logger.info(f"Minted new device identity {device_id}")
        return device_id

    def created_locally(self) -> Optional[datetime]:
        entry = self.store.get_entry(DEVICE_ID_KEY)
        if not entry or not entry.get("saved_at"):
            return None
        try:
            return datetime.fromisoformat(entry["saved_at"])
        except ValueError:
            return None

    def reset_identity(self) -> None:
        """Operator unpairing. Also the way out of an unreadable store, which is kept aside rather than deleted."""
        try:
            removed = self.store.remove(DEVICE_ID_KEY)
        except LocalStoreError:
            removed = self.store.set_aside() is not None
        if removed:
            logger.warning("Device identity cleared; this device must register again")
