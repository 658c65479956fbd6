"""
Single place for scheduling: named in-memory timers, one-shot or recurring.
"""
import logging
import threading
from datetime import datetime, timezone
from threading import Timer
from typing import Any, Callable, Dict, List


class TaskManager:
    def __init__(self):
        self.tasks: Dict[str, Timer] = {}
        self.logger = logging.getLogger("TaskManager")
        self._lock = threading.RLock()
        self._stopped = False

    def schedule_task(self, name: str, callback: Callable, delay: float, one_time: bool = True) -> None:
        """Schedule a task to run after delay seconds. Recurring tasks re-arm after each run."""
        with self._lock:
            if self._stopped:
                self.logger.debug(f"TaskManager stopped, not scheduling {name}")
                return
            self.logger.debug(f"Scheduling task {name} with delay {delay} seconds")
            if name in self.tasks:
                self.logger.debug(f"Cancelling existing task {name}")
                self.tasks[name].cancel()

            scheduled_time = datetime.now().timestamp() + delay
            timer = Timer(delay, self._run_task, args=(name, callback, delay, one_time))
            timer.daemon = True
            timer.scheduled_time = scheduled_time

            self.tasks[name] = timer
            timer.start()

    def _run_task(self, name: str, callback: Callable, delay: float, one_time: bool) -> None:
        """Run the task and reschedule if needed."""
        timer = threading.current_thread()
        try:
            callback()
        except Exception as e:
            self.logger.exception(f"Error running task {name}: {e}")
        finally:
            with self._lock:
                # A cancel or reschedule while the callback ran replaces or removes our entry
                if self.tasks.get(name) is not timer:
                    return
                if one_time or self._stopped:
                    del self.tasks[name]
                else:
                    self.schedule_task(name, callback, delay, one_time)

    def cancel_task(self, name: str) -> bool:
        """Cancel a scheduled task. A run already in progress finishes but is not re-armed."""
        with self._lock:
            timer = self.tasks.pop(name, None)
        if timer is None:
            return False
        timer.cancel()
        self.logger.debug(f"Cancelled task {name}")
        return True

    def get_active_timers(self) -> List[Dict[str, Any]]:
        """Return list of active timer names and their next run time (for API)."""
        result = []
        with self._lock:
            timers = list(self.tasks.items())
        for name, timer in timers:
            if getattr(timer, "scheduled_time", None) is not None:
                next_run = datetime.fromtimestamp(timer.scheduled_time, tz=timezone.utc)
                result.append({"name": name, "next_run_at": next_run})
        return result

    def stop(self) -> None:
        """Stop all scheduled tasks."""
        with self._lock:
            self._stopped = True
            timers = list(self.tasks.values())
            self.tasks.clear()
        for task in timers:
            task.cancel()
