import os
import json
import tempfile
from datetime import datetime, timezone
import logging
from typing import Optional, Dict, Any

from signage.core.errors import LocalStoreError

logger = logging.getLogger(__name__)


class LocalStore:
    DEFAULT_STORAGE_DIR = "~/.signage/device"
    STORE_FILE = "local_store.json"

    def __init__(self, storage_dir: Optional[str] = None):
        """Durable key/value storage kept on the device itself
        Args:
            storage_dir: Directory from config, if None uses DEFAULT_STORAGE_DIR
        """
        self.storage_dir = os.path.expanduser(storage_dir or self.DEFAULT_STORAGE_DIR)
        os.makedirs(self.storage_dir, exist_ok=True)
        self.store_file = os.path.join(self.storage_dir, self.STORE_FILE)

    def _read_all(self) -> Dict[str, Any]:
        """Whole store; {} only when the file does not exist yet. Raises LocalStoreError otherwise."""
        try:
            with open(self.store_file, 'r') as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.error(f"Error reading local store {self.store_file}: {e}")
            raise LocalStoreError(self.store_file, e) from e
        if not isinstance(data, dict):
            logger.error(f"Malformed local store {self.store_file}: root is {type(data).__name__}")
            raise LocalStoreError(self.store_file, ValueError("root must be an object"))
        return data

    def _write_all(self, data: Dict[str, Any]) -> None:
        # Write to a temp file then rename so a crash never leaves a half-written store
        fd, tmp_path = tempfile.mkstemp(dir=self.storage_dir, prefix=".store-", suffix=".json")
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(data, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.store_file)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def get_entry(self, key: str) -> Optional[Dict[str, Any]]:
        """Return {'value': ..., 'saved_at': ...} for key, or None"""
        entry = self._read_all().get(key)
        if not isinstance(entry, dict) or 'value' not in entry:
            return None
        return entry

    def get(self, key: str) -> Optional[str]:
        entry = self.get_entry(key)
        return entry['value'] if entry else None

    def set(self, key: str, value: str) -> None:
        """Persist value under key with the current time. Raises OSError if it cannot be written."""
        data = self._read_all()
        data[key] = {
            'value': value,
            'saved_at': datetime.now(timezone.utc).isoformat(),
        }
        self._write_all(data)

    def remove(self, key: str) -> bool:
        data = self._read_all()
        if key not in data:
            return False
        del data[key]
        self._write_all(data)
        return True

    def set_aside(self) -> Optional[str]:
        """Move an unreadable store file out of the way, keeping it for inspection. Returns its new path."""
        if not os.path.exists(self.store_file):
            return None
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        damaged = f"{self.store_file}.damaged-{stamp}"
        os.replace(self.store_file, damaged)
        logger.warning(f"Moved unreadable local store to {damaged}")
        return damaged
