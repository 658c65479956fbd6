"""
FastAPI server for the signage backend. Run with run_api_server(app) (blocking).
Central endpoints: GET /api/health, GET /api/tasks. Per-plugin routes are mounted
from signage.plugins.<package>.api (get_router(signage_app)) under /api.
Docs: http://<host>:<port>/docs
"""
import importlib
import logging
import pkgutil
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from signage.core.errors import SignageError

logger = logging.getLogger(__name__)


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize datetime to ISO string (UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _mount_plugin_routers(app: FastAPI, signage_app: Any) -> None:
    """Mount per-plugin API routers from signage.plugins.<name>.api (get_router(signage_app))."""
    plugins_pkg = importlib.import_module("signage.plugins")
    for _mod, name, is_pkg in pkgutil.iter_modules(plugins_pkg.__path__):
        if not is_pkg:
            continue
        try:
            api_module = importlib.import_module(f"signage.plugins.{name}.api")
        except ModuleNotFoundError as e:
            if e.name != f"signage.plugins.{name}.api":
                raise
            logger.debug(f"Plugin {name} has no API module")
            continue
        if not callable(getattr(api_module, "get_router", None)):
            continue
        router = api_module.get_router(signage_app)
        if router is not None:
            app.include_router(router, prefix="/api")
            logger.debug(f"Mounted API router for plugin {name}")


def create_app(signage_app: Any) -> FastAPI:
    """Create FastAPI app with routes that use the given SignageApp instance."""
    app = FastAPI(title="Signage API", description="Device pairing, prayer schedules and previews")

    @app.exception_handler(SignageError)
    async def handle_signage_error(request: Request, exc: SignageError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/api/health")
    def health() -> Dict[str, Any]:
        return {"status": "ok", "time": _serialize_datetime(datetime.now(timezone.utc))}

    @app.get("/api/tasks")
    def list_tasks() -> Dict[str, Any]:
        """List active in-memory timers (preview purge and friends)."""
        active_timers = signage_app.task_manager.get_active_timers()
        return {
            "active_timers": [
                {"name": t["name"], "next_run_at": _serialize_datetime(t["next_run_at"])}
                for t in active_timers
            ]
        }

    _mount_plugin_routers(app, signage_app)
    return app


def run_api_server(signage_app: Any) -> None:
    """
    Serve the API in the foreground until interrupted.
    Reads api.host (default 127.0.0.1) and api.port (default 8765) from config.
    """
    import uvicorn

    api_config = signage_app.config.section("api")
    host = api_config.get("host", "127.0.0.1")
    port = int(api_config.get("port", 8765))
    fastapi_app = create_app(signage_app)
    logger.info(f"API server listening at http://{host}:{port} (docs at /docs)")
    uvicorn.run(fastapi_app, host=host, port=port, log_config=None)
