"""
Process that runs on the display device: keeps the authorization client
polling and brings the device through registration when the server asks.
"""
import logging
import platform
import sys
import threading
from typing import Any, Callable, Dict, Optional

from signage.core.config import Config
from signage.core.local_store import LocalStore
from signage.core.task_manager import TaskManager
from signage.device.auth_client import AuthState, DeviceAuthClient
from signage.device.identity import DeviceIdentity
from signage.device.transport import DeviceAuthApi


def _prompt_for_name() -> Optional[str]:
    if not sys.stdin.isatty():
        return None
    try:
        name = input("This display is not registered. Enter a device name: ")
    except EOFError:
        return None
    return name.strip() or None


def _default_user_agent() -> str:
    return f"signage-device/{platform.system()} {platform.release()} ({platform.node()})"


class DeviceAgent:
    def __init__(
        self,
        config: Config,
        display_id: Optional[str] = None,
        server_url: Optional[str] = None,
        device_name: Optional[str] = None,
        name_provider: Optional[Callable[[], Optional[str]]] = None,
        session: Optional[Any] = None,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.config = config
        device_config = config.section("device")

        self.display_id = display_id or device_config.get("display_id")
        if not self.display_id:
            raise ValueError("A display id is required (device.display_id or --display-id)")
        self.device_name = device_name or device_config.get("name")
        self.name_provider = name_provider or _prompt_for_name

        self.store = LocalStore(device_config.get("storage_dir"))
        self.identity = DeviceIdentity(self.store)
        self.task_manager = TaskManager()
        api = DeviceAuthApi(
            server_url or device_config.get("server_url"),
            session=session,
            timeout=float(device_config.get("request_timeout", 10)),
        )
        self.client = DeviceAuthClient(
            self.display_id,
            self.identity,
            api,
            self.task_manager,
            poll_interval=device_config.get("poll_interval"),
            metadata={
                "user_agent": device_config.get("user_agent") or _default_user_agent(),
                "screen_resolution": device_config.get("screen_resolution"),
            },
        )
        self.client.add_listener(self._on_state_change)
        self.config.register_change_callback(self.handle_config_change)

        self._registering = threading.Lock()
        self._stop_event = threading.Event()
        self._last_logged = None

    def handle_config_change(self, new_config: Dict[str, Any]) -> None:
        self.client.set_poll_interval(self.config.section("device").get("poll_interval"))

    def _on_state_change(self, state: AuthState) -> None:
        if state.is_loading:
            return
        summary = (state.status, state.is_authorized, state.error)
        if summary != self._last_logged:
            self._last_logged = summary
            if state.error:
                self.logger.warning(f"Authorization error: {state.error} (showing content: {state.is_authorized})")
            else:
                self.logger.info(f"Device {state.device_id}: {state.status}, showing content: {state.is_authorized}")

    def ensure_registered(self) -> bool:
        """Register when the server reports an unknown device and a name is available."""
        state = self.client.state
        if not state.needs_registration:
            return False
        if not self._registering.acquire(blocking=False):
            return False
        try:
            name = self.device_name or self.name_provider()
            if not name:
                self.logger.warning("Device needs registration; set device.name or run interactively")
                return False
            success, error = self.client.register(name)
            if not success:
                self.logger.error(f"Registration failed: {error}")
            return success
        finally:
            self._registering.release()

    def reset(self) -> AuthState:
        return self.client.reset()

    def start(self) -> AuthState:
        self.client.start()
        self.ensure_registered()
        return self.client.state

    def run(self) -> None:
        """Poll until interrupted."""
        self.start()
        try:
            while not self._stop_event.wait(self.client.poll_interval):
                self.ensure_registered()
        except KeyboardInterrupt:
            self.logger.info("Interrupted")
        finally:
            self.stop()

    def stop(self) -> None:
        self._stop_event.set()
        self.client.stop()
        self.task_manager.stop()
