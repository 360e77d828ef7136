"""
Readiness gate between the pairing queue and the processing loop.

A paired item is processable only when:
  1. the pairing queue is non-empty,
  2. the IMU buffer is non-empty,
  3. the front pair's pose time >= the IMU buffer's front time
     (otherwise the pair is stale: it is dropped),
  4. the IMU buffer's back time > sweep end + margin.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Optional

from lidar_deskew.common import constants
from lidar_deskew.common.log_utils import ThrottledLogger
from lidar_deskew.common.messages import PairedItem
from lidar_deskew.frontend.buffers import ImuBuffer, PairingQueue

_logger = logging.getLogger(__name__)


class GateOutcome(Enum):
    READY = "ready"
    NOT_READY = "not_ready"
    STALE_DROPPED = "stale_dropped"


@dataclass(frozen=True)
class GateDecision:
    outcome: GateOutcome
    reason: str = ""
    item: Optional[PairedItem] = None

    @property
    def ready(self) -> bool:
        return self.outcome is GateOutcome.READY


class ReadinessGate:
    def __init__(
        self,
        queue: PairingQueue,
        imu: ImuBuffer,
        margin_sec: float = constants.READINESS_MARGIN_SEC,
        throttle: Optional[ThrottledLogger] = None,
    ) -> None:
        self.queue = queue
        self.imu = imu
        self.margin_sec = float(margin_sec)
        self._throttle = throttle or ThrottledLogger(_logger, constants.LOG_THROTTLE_SEC)
        self.stale_dropped = 0

    def _not_ready(self, key: str, reason: str) -> GateDecision:
        self._throttle.info(key, "Waiting for data: %s", reason)
        return GateDecision(GateOutcome.NOT_READY, reason)

    def check(self) -> GateDecision:
        item = self.queue.front()
        if item is None:
            return self._not_ready("pairs_empty", "pose/sweep pairing queue empty")

        imu_front = self.imu.front_timestamp()
        imu_back = self.imu.back_timestamp()
        if imu_front is None or imu_back is None:
            return self._not_ready("imu_empty", "IMU buffer empty")

        if item.pose.timestamp < imu_front:
            if self.queue.pop_front(expected=item) is None:
                # Evicted by a newer pair meanwhile; already accounted there.
                return GateDecision(GateOutcome.NOT_READY, "front pair replaced concurrently")
            self.stale_dropped += 1
            reason = (
                f"pose {item.pose.timestamp:.6f} older than IMU buffer front {imu_front:.6f}"
            )
            _logger.warning("Deleting stale pose/sweep pair: %s", reason)
            return GateDecision(GateOutcome.STALE_DROPPED, reason, item)

        needed = item.sweep.end_timestamp + self.margin_sec
        if not imu_back > needed:
            return self._not_ready(
                "imu_lookahead",
                f"IMU buffer ends {imu_back:.6f}, needs to pass {needed:.6f} to cover the sweep",
            )

        return GateDecision(GateOutcome.READY, "", item)
