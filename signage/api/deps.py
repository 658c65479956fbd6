"""
Shared FastAPI dependencies for plugin routers.
"""
import hmac
import logging
from typing import Any, Callable, Optional

from fastapi import Header, HTTPException

logger = logging.getLogger(__name__)


def admin_guard(signage_app: Any) -> Callable[..., None]:
    """
    Dependency that checks X-Admin-Token against api.admin_token.
    Human login lives outside this service; when no token is configured admin routes are open.
    """

    def verify(x_admin_token: Optional[str] = Header(default=None)) -> None:
        expected = signage_app.config.section("api").get("admin_token")
        if not expected:
            return
        if not x_admin_token or not hmac.compare_digest(str(expected), x_admin_token):
            logger.warning("Rejected admin request with missing or invalid token")
            raise HTTPException(status_code=401, detail="Admin credentials required")

    return verify
