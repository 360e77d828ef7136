"""
Throttled logging on top of stdlib logging.

Mirrors ``get_logger().warn(msg, throttle_duration_sec=...)`` from ROS nodes:
each key emits at most once per period; suppressed calls are counted and
reported with the next emitted line.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Tuple


class ThrottledLogger:
    def __init__(
        self,
        logger: logging.Logger,
        period_sec: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._logger = logger
        self._period = float(period_sec)
        self._clock = clock
        self._lock = threading.Lock()
        self._last: Dict[str, Tuple[float, int]] = {}

    def log(self, level: int, key: str, msg: str, *args) -> bool:
        """Log ``msg`` under ``key`` unless it was logged within the period."""
        now = self._clock()
        with self._lock:
            last, suppressed = self._last.get(key, (None, 0))
            if last is not None and now - last < self._period:
                self._last[key] = (last, suppressed + 1)
                return False
            self._last[key] = (now, 0)
        if suppressed:
            msg = f"{msg} (suppressed {suppressed} similar)"
        self._logger.log(level, msg, *args)
        return True

    def info(self, key: str, msg: str, *args) -> bool:
        return self.log(logging.INFO, key, msg, *args)

    def warning(self, key: str, msg: str, *args) -> bool:
        return self.log(logging.WARNING, key, msg, *args)
