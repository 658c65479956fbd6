from .models import DeviceStatus
from .service import decide, probe, register

__all__ = ["DeviceStatus", "decide", "probe", "register"]
