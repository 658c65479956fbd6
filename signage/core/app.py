from typing import Dict, Any, Optional
import logging
import sys
from .task_manager import TaskManager
from .config import Config
from .db import init_db, close_db

PREVIEW_PURGE_TASK = "preview_purge"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'


def setup_logging(logging_config: Dict[str, Any]) -> None:
    """Configure logging to write to both file (when configured) and stdout"""
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    level_name = str(logging_config.get("level", "INFO")).upper()
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))
    formatter = logging.Formatter(LOG_FORMAT)

    log_file = logging_config.get("file")
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)


class SignageApp:
    """Server process: configuration, database, maintenance timers and the HTTP API."""

    def __init__(self, config_path: Optional[str] = None, watch_config: bool = True, configure_logging: bool = True):
        self.logger = logging.getLogger(self.__class__.__name__)

        self.config = Config(config_path=config_path, watch=watch_config)
        self.config.register_change_callback(self.handle_config_change)

        self._configure_logging = configure_logging
        if configure_logging:
            setup_logging(self.config.section("logging"))
            logging.info("Signage server starting...")

        init_db(self.config.data)
        self.task_manager = TaskManager()

    def schedule_maintenance(self) -> None:
        """(Re)arm the recurring purge of expired preview tokens."""
        interval = int(self.config.section("preview").get("purge_interval", 300))
        self.task_manager.schedule_task(PREVIEW_PURGE_TASK, self._purge_previews, interval, one_time=False)

    def _purge_previews(self) -> None:
        from signage.plugins.previews.service import purge_expired_previews
        purge_expired_previews()

    def handle_config_change(self, new_config: Dict[str, Any]) -> None:
        self.logger.info("Applying configuration change")
        if self._configure_logging:
            setup_logging(self.config.section("logging"))
        if self.task_manager.get_active_timers():
            self.schedule_maintenance()

    def run(self) -> None:
        from signage.api.server import run_api_server
        self.schedule_maintenance()
        try:
            run_api_server(self)
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        self.logger.info("Shutting down")
        self.task_manager.stop()
        self.config.cleanup()
        close_db()
