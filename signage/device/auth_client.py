"""
Device-side authorization loop.

Probes the server on start and every poll interval so an out-of-band
revocation reaches the screen within one interval. The renderer reads
AuthState (or subscribes with add_listener) and shows content only while
is_authorized is true.

Failure handling: a transient error keeps the last known authorization and
only sets `error`; an explicit answer from the server (including rejected)
always replaces it.
"""
import logging
import threading
from collections import namedtuple
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from signage.core.config import MAX_POLL_INTERVAL
from signage.core.errors import TransientIOError
from signage.core.task_manager import TaskManager
from signage.device.identity import DeviceIdentity
from signage.device.transport import DeviceAuthApi

AuthState = namedtuple(
    "AuthState",
    [
        "is_authorized",
        "is_loading",
        "needs_registration",
        "status",
        "error",
        "device_id",
        "device_name",
        "last_checked_at",
    ],
    defaults=(False, True, False, None, None, None, None, None),
)


def clamp_poll_interval(seconds: Any) -> float:
    """Poll interval in (0, MAX_POLL_INTERVAL]; bad values fall back to the maximum."""
    try:
        value = float(seconds)
    except (TypeError, ValueError):
        return float(MAX_POLL_INTERVAL)
    if value <= 0 or value > MAX_POLL_INTERVAL:
        return float(MAX_POLL_INTERVAL)
    return value


class DeviceAuthClient:
    def __init__(
        self,
        display_id: str,
        identity: DeviceIdentity,
        api: DeviceAuthApi,
        task_manager: TaskManager,
        poll_interval: float = MAX_POLL_INTERVAL,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        self.display_id = display_id
        self.identity = identity
        self.api = api
        self.task_manager = task_manager
        self.poll_interval = clamp_poll_interval(poll_interval)
        self.metadata = metadata or {}
        self.task_name = f"device_auth:{display_id}"
        self.logger = logging.getLogger(self.__class__.__name__)

        self._state = AuthState()
        self._state_lock = threading.Lock()
        # Held for the whole of a probe or registration round trip
        self._in_flight = threading.Lock()
        self._listeners: List[Callable[[AuthState], None]] = []
        self._running = False

    @property
    def state(self) -> AuthState:
        with self._state_lock:
            return self._state

    @property
    def is_authorized(self) -> bool:
        return self.state.is_authorized

    def add_listener(self, callback: Callable[[AuthState], None]) -> None:
        self._listeners.append(callback)

    def _set_state(self, **changes: Any) -> AuthState:
        with self._state_lock:
            self._state = self._state._replace(**changes)
            state = self._state
        for callback in self._listeners:
            try:
                callback(state)
            except Exception as e:
                self.logger.exception(f"Auth state listener failed: {e}")
        return state

    def _payload(self, device_id: str) -> Dict[str, Any]:
        return {
            "deviceId": device_id,
            "displayId": self.display_id,
            "userAgent": self.metadata.get("user_agent"),
            "screenResolution": self.metadata.get("screen_resolution"),
        }

    def start(self) -> AuthState:
        """Probe once now, then keep probing every poll_interval seconds."""
        self._running = True
        self.identity.ensure_identity()
        state = self.check()
        self._arm_timer()
        return state

    def _arm_timer(self) -> None:
        if self._running:
            self.task_manager.schedule_task(self.task_name, self.check, self.poll_interval, one_time=False)

    def stop(self) -> None:
        self._running = False
        self.task_manager.cancel_task(self.task_name)
        self.logger.info(f"Stopped authorization polling for display {self.display_id}")

    def set_poll_interval(self, seconds: Any) -> None:
        interval = clamp_poll_interval(seconds)
        if interval != self.poll_interval:
            self.logger.info(f"Poll interval {self.poll_interval}s -> {interval}s")
            self.poll_interval = interval
            self._arm_timer()

    def check(self) -> AuthState:
        """One probe. Skipped (returning the current state) while another round trip is in flight."""
        if not self._in_flight.acquire(blocking=False):
            self.logger.debug("Probe already in flight, skipping this tick")
            return self.state
        try:
            return self._probe()
        finally:
            self._in_flight.release()

    def _probe(self) -> AuthState:
        device_id = self.identity.ensure_identity()
        self._set_state(is_loading=True, device_id=device_id)
        try:
            result = self.api.probe(self._payload(device_id))
        except TransientIOError as e:
            self.logger.warning(f"Authorization check failed, keeping last known state: {e.message}")
            return self._set_state(is_loading=False, error=e.message)

        if not result.get("success"):
            message = result.get("message") or "Authorization failed"
            self.logger.warning(f"Authorization check rejected by server: {message}")
            return self._set_state(is_loading=False, error=message)

        previous = self.state
        state = self._set_state(
            is_authorized=bool(result.get("authorized")),
            is_loading=False,
            needs_registration=bool(result.get("needsRegistration")),
            status=result.get("status"),
            error=None,
            device_name=result.get("deviceName"),
            last_checked_at=datetime.now(timezone.utc),
        )
        if previous.status != state.status or previous.is_authorized != state.is_authorized:
            self.logger.info(
                f"Display {self.display_id}: status {previous.status} -> {state.status} "
                f"(authorized={state.is_authorized})"
            )
        return state

    def register(self, device_name: str) -> Tuple[bool, Optional[str]]:
        """Ask the server to pair this device under device_name, then re-probe."""
        with self._in_flight:
            device_id = self.identity.ensure_identity()
            payload = self._payload(device_id)
            payload["deviceName"] = device_name
            try:
                result = self.api.register(payload)
            except TransientIOError as e:
                self.logger.warning(f"Registration failed: {e.message}")
                return False, e.message
            if not result.get("success"):
                message = result.get("message") or "Registration failed"
                self.logger.warning(f"Registration refused: {message}")
                return False, message
            self.logger.info(f"Registered as '{device_name}', status {result.get('status')}")
            # Probe under the same lock as the registration
            self._probe()
        return True, None

    def reset(self) -> AuthState:
        """Forget this device's identity (unpair) and probe again under a new one."""
        with self._in_flight:
            self.identity.reset_identity()
            self._set_state(
                is_authorized=False,
                needs_registration=False,
                status=None,
                device_name=None,
                device_id=None,
                error=None,
            )
            return self._probe()
