"""
Sweep <-> pose pairing.

A staged sweep is paired with the pose bracket (p0, p1) that straddles its
start time, p0.timestamp <= t <= p1.timestamp, and emitted as (p0, sweep).
Leading poses are pruned while p1.timestamp <= t, so p0 is always the most
recent pose at or before the sweep start.

Pairing is attempted on every new pose and on every newly staged sweep.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from lidar_deskew.common.messages import PairedItem, PoseSample, Sweep
from lidar_deskew.frontend.buffers import PairingQueue, PoseBuffer, SweepSlot

_logger = logging.getLogger(__name__)


class SweepPosePairer:
    def __init__(
        self,
        poses: PoseBuffer,
        slot: SweepSlot,
        queue: PairingQueue,
        initial_skip: int = 0,
    ) -> None:
        self.poses = poses
        self.slot = slot
        self.queue = queue
        self._lock = threading.Lock()
        self._skip_remaining = int(initial_skip)
        self.pairs_emitted = 0
        self.pairs_skipped = 0

    @property
    def skip_remaining(self) -> int:
        return self._skip_remaining

    def on_pose(self, pose: PoseSample) -> Optional[PairedItem]:
        self.poses.push(pose)
        if self.slot.peek() is None:
            return None
        return self.try_pair()

    def on_sweep(self, sweep: Sweep) -> Optional[PairedItem]:
        self.slot.stage(sweep)
        if len(self.poses) == 0:
            return None
        return self.try_pair()

    def try_pair(self) -> Optional[PairedItem]:
        """
        Match the staged sweep against the pose buffer.

        Returns the emitted pair, or None if no bracket exists yet or the pair
        was consumed by the warm-up skip.
        """
        with self._lock:
            sweep = self.slot.peek()
            if sweep is None:
                return None
            t = sweep.start_timestamp

            self.poses.prune_before(t)
            bracket = self.poses.bracket()
            if bracket is None:
                return None
            p0, p1 = bracket
            if not (p0.timestamp <= t <= p1.timestamp):
                return None

            if self.slot.take(expected=sweep) is None:
                # Evicted by a newer sweep while matching; pair that one next time.
                return None
            item = PairedItem(pose=p0, sweep=sweep)

            if self._skip_remaining > 0:
                self._skip_remaining -= 1
                self.pairs_skipped += 1
                _logger.debug(
                    "Skipping warm-up sweep %.6f (%d more to skip)", t, self._skip_remaining
                )
                return None

            self.queue.put(item)
            self.pairs_emitted += 1
        return item
