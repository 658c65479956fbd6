"""
HTTP client for the device pairing endpoints.
"""
import logging
from typing import Any, Dict, Optional

import requests

from signage.core.errors import TransientIOError

logger = logging.getLogger(__name__)


class DeviceAuthApi:
    """POSTs pairing requests to the server. Network trouble surfaces as TransientIOError."""

    AUTH_PATH = "/api/device/auth"
    REGISTER_PATH = "/api/device/register"

    def __init__(self, base_url: str, session: Optional[Any] = None, timeout: float = 10):
        self.base_url = (base_url or "").rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransientIOError(f"Request to {url} failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise TransientIOError(f"Invalid response from {url} (HTTP {response.status_code})") from e
        if not isinstance(data, dict):
            raise TransientIOError(f"Unexpected response from {url}")

        if response.status_code >= 500:
            raise TransientIOError(data.get("message") or f"Server error {response.status_code}")
        if response.status_code >= 400:
            logger.warning(f"{url} answered {response.status_code}: {data}")
            data.setdefault("success", False)
        return data

    def probe(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._post(self.AUTH_PATH, payload)

    def register(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._post(self.REGISTER_PATH, payload)
