"""
Output collaborators for world-frame clouds.

- MemorySink: thread-safe in-process list (tests, embedding)
- RerunCloudSink: log clouds as Points3D to a Rerun recording/viewer
"""

from __future__ import annotations

import logging
import threading
from typing import List, Optional, Protocol

import numpy as np

from lidar_deskew.common.messages import WorldCloud

_logger = logging.getLogger(__name__)


class CloudSink(Protocol):
    def publish(self, cloud: WorldCloud) -> None: ...


class MemorySink:
    def __init__(self) -> None:
        self._clouds: List[WorldCloud] = []
        self._lock = threading.Lock()

    def publish(self, cloud: WorldCloud) -> None:
        with self._lock:
            self._clouds.append(cloud)

    def clouds(self, kind: Optional[str] = None) -> List[WorldCloud]:
        with self._lock:
            return [c for c in self._clouds if kind is None or c.kind == kind]


def _ensure_rerun():
    """Lazy import so rerun is optional when no viewer is wanted."""
    try:
        import rerun as rr
        return rr
    except ImportError:
        return None


def _set_rerun_time(rr, time_sec: float) -> None:
    """Set current time on the 'time' timeline across rerun API versions."""
    if hasattr(rr, "set_time_seconds"):
        rr.set_time_seconds("time", time_sec)
    else:
        rr.set_time("time", timestamp=time_sec)


class RerunCloudSink:
    """
    Log distorted and deskewed clouds to Rerun under ``<root>/<frame_id>/<kind>``.

    Call init() once; publish() is a no-op until then or if rerun is missing.
    """

    def __init__(
        self,
        application_id: str = "lidar_deskew",
        spawn: bool = False,
        recording_path: Optional[str] = None,
        root: str = "deskew",
    ):
        self._application_id = application_id
        self._spawn = spawn
        self._recording_path = recording_path
        self._root = root
        self._initialized = False
        self._rr = None
        self._lock = threading.Lock()

    def init(self) -> bool:
        """Initialize Rerun (spawn viewer and/or record to file). Returns True if active."""
        if self._initialized:
            return self._rr is not None
        rr = _ensure_rerun()
        self._initialized = True
        if rr is None:
            _logger.warning("rerun-sdk not importable; %s disabled", type(self).__name__)
            return False
        self._rr = rr
        rr.init(
            application_id=self._application_id,
            default_enabled=True,
            spawn=self._spawn,
        )
        # If recording to file: must call save() before any log (Rerun API).
        if self._recording_path and not self._spawn:
            rr.save(self._recording_path)
        return True

    @property
    def active(self) -> bool:
        return self._rr is not None

    def publish(self, cloud: WorldCloud) -> None:
        if self._rr is None:
            return
        rr = self._rr
        pts = np.asarray(cloud.xyz, dtype=np.float32).reshape(-1, 3)
        with self._lock:
            _set_rerun_time(rr, cloud.stamp)
            rr.log(f"{self._root}/{cloud.frame_id}/{cloud.kind}", rr.Points3D(positions=pts))
