"""
Heartbeat - periodic maintenance tasks such as the approval expiry sweep.
"""

import threading
import time
from typing import Any, Callable, Dict, List, Optional

from .config import get_sweep_interval, is_sweep_enabled, validate_approval_config
from ..util.logging import logger

SWEEP_TASK = "approval_sweep"


class Heartbeat:
    """
    Cooperative scheduler for short periodic tasks.

    A failing task is logged and the loop carries on. Runs either blocking
    via run() or in a daemon thread via start_background().
    """

    def __init__(self, tick_sec: float = 0.1, clock: Callable[[], float] = time.monotonic):
        self.tick_sec = tick_sec
        self._clock = clock
        self._tasks: Dict[str, Dict[str, Any]] = {}  # name -> {func, interval, last_run, failures}
        self._lock = threading.Lock()
        self._shutdown = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.running = False

    def register_task(self, name: str, interval_sec: int, func: Callable):
        """
        Register a task to be executed periodically.

        Args:
            name: Unique task identifier
            interval_sec: How often to run this task in seconds
            func: Function to call (should be fast and not block)
        """
        if not callable(func):
            raise ValueError(f"Task function must be callable: {func}")

        if interval_sec < 1:
            raise ValueError(f"Interval must be >= 1 second: {interval_sec}")

        with self._lock:
            self._tasks[name] = {
                "func": func,
                "interval": interval_sec,
                "last_run": None,
                "failures": 0,
            }
        logger.info(f"Registered heartbeat task '{name}' (every {interval_sec}s)")

    def unregister_task(self, name: str):
        with self._lock:
            removed = self._tasks.pop(name, None)
        if removed:
            logger.info(f"Unregistered heartbeat task '{name}'")

    def list_tasks(self) -> List[str]:
        with self._lock:
            return list(self._tasks)

    def reset_task(self, name: str):
        """Force a task to run on the next tick."""
        with self._lock:
            if name in self._tasks:
                self._tasks[name]["last_run"] = None

    def should_run_task(self, task_info: Dict[str, Any]) -> bool:
        if task_info["last_run"] is None:
            return True  # Run immediately if never run
        return self._clock() - task_info["last_run"] >= task_info["interval"]

    def run_pending(self) -> int:
        """Run every task that is due. Returns how many ran successfully."""
        with self._lock:
            due = [(name, info) for name, info in self._tasks.items() if self.should_run_task(info)]

        succeeded = 0
        for name, task_info in due:
            if self.run_task(name, task_info):
                succeeded += 1
        return succeeded

    def run_task(self, name: str, task_info: Dict[str, Any]) -> bool:
        """Execute one task, isolating its errors from the loop."""
        start_time = self._clock()
        try:
            result = task_info["func"]()
        except Exception as e:
            end_time = self._clock()
            task_info["last_run"] = end_time
            task_info["failures"] += 1
            logger.log_heartbeat_task(name, start_time, end_time, "failed", {"error": str(e)})
            return False

        end_time = self._clock()
        task_info["last_run"] = end_time
        details = {"result": result} if result is not None else None
        logger.log_heartbeat_task(name, start_time, end_time, "success", details)
        return True

    def run(self):
        """Run the loop in the calling thread until stop() or Ctrl+C."""
        if self.running:
            raise RuntimeError("Heartbeat already running")
        self._shutdown.clear()
        self._loop()

    def _loop(self):
        self.running = True
        logger.info(f"Starting heartbeat loop with tasks: {self.list_tasks()}")

        try:
            while not self._shutdown.is_set():
                self.run_pending()
                self._shutdown.wait(self.tick_sec)
        except KeyboardInterrupt:
            logger.info("Heartbeat interrupted by user")
        finally:
            self.running = False
            logger.info("Heartbeat loop stopped")

    def start_background(self) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("Heartbeat already running")
        # stop() may arrive before the thread is scheduled
        self._shutdown.clear()
        self._thread = threading.Thread(target=self._loop, name="reddog-heartbeat", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float = 5.0):
        """Stop the loop gracefully."""
        self._shutdown.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def get_status(self) -> Dict[str, Any]:
        """Current heartbeat status for monitoring."""
        with self._lock:
            tasks = {
                name: {
                    "interval_sec": info["interval"],
                    "last_run": info["last_run"],
                    "next_run": info["last_run"] + info["interval"] if info["last_run"] is not None else None,
                    "failures": info["failures"],
                }
                for name, info in self._tasks.items()
            }
        return {"status": "running" if self.running else "stopped", "tasks": tasks}


def register_sweep(heartbeat: Heartbeat, registry, interval_sec: Optional[int] = None) -> bool:
    """
    Schedule the approval expiry sweep.

    Returns False without registering when the sweep is disabled.
    """
    if not is_sweep_enabled():
        logger.info("Approval sweep disabled (APPROVAL_SWEEP_ENABLED=false)")
        return False

    issues = validate_approval_config()
    if issues:
        raise ValueError(f"Approval sweep configuration invalid: {issues}")

    heartbeat.register_task(SWEEP_TASK, interval_sec or get_sweep_interval(), registry.sweep_expired)
    return True
