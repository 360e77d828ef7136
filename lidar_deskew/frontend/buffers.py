"""
Thread-safe stream buffers.

Each buffer owns its lock; critical sections cover only the deque mutation
or copy, never any math done on the contents. Producers append, the
processing loop prunes and snapshots.
"""

from __future__ import annotations

from collections import deque
import logging
import threading
from typing import Deque, Generic, List, Optional, TypeVar

from lidar_deskew.common.messages import InertialSample, PairedItem, PoseSample, Sweep, Timestamped

_logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Timestamped)


class TimestampedBuffer(Generic[T]):
    """
    Strictly time-ordered bounded deque.

    Samples that do not advance time (late or duplicate) are rejected at push
    and counted; the buffer content therefore always has strictly increasing
    timestamps.
    """

    def __init__(self, name: str, maxlen: Optional[int] = None) -> None:
        self.name = name
        self._items: Deque[T] = deque(maxlen=maxlen)
        self._lock = threading.Lock()
        self.rejected_out_of_order = 0

    def push(self, item: T) -> bool:
        with self._lock:
            if self._items and item.timestamp <= self._items[-1].timestamp:
                self.rejected_out_of_order += 1
                back = self._items[-1].timestamp
                accepted = False
            else:
                self._items.append(item)
                accepted = True
        if not accepted:
            _logger.warning(
                "%s buffer: rejecting out-of-order sample %.6f (latest %.6f)",
                self.name, item.timestamp, back,
            )
        return accepted

    def prune_before(self, t: float) -> int:
        """Drop all but the last sample with timestamp <= t. Returns count dropped."""
        dropped = 0
        with self._lock:
            while len(self._items) >= 2 and self._items[1].timestamp <= t:
                self._items.popleft()
                dropped += 1
        return dropped

    def front_timestamp(self) -> Optional[float]:
        with self._lock:
            return self._items[0].timestamp if self._items else None

    def back_timestamp(self) -> Optional[float]:
        with self._lock:
            return self._items[-1].timestamp if self._items else None

    def snapshot(self) -> List[T]:
        with self._lock:
            return list(self._items)

    def snapshot_until(self, t_end: float) -> List[T]:
        """Copy samples from the front up to and including the first one past t_end."""
        out: List[T] = []
        with self._lock:
            for item in self._items:
                out.append(item)
                if item.timestamp > t_end:
                    break
        return out

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class ImuBuffer(TimestampedBuffer[InertialSample]):
    def __init__(self, maxlen: Optional[int] = None) -> None:
        super().__init__("IMU", maxlen=maxlen)


class PoseBuffer(TimestampedBuffer[PoseSample]):
    def __init__(self, maxlen: Optional[int] = None) -> None:
        super().__init__("Pose", maxlen=maxlen)

    def bracket(self) -> Optional[tuple[PoseSample, PoseSample]]:
        """The first two buffered poses, if present."""
        with self._lock:
            if len(self._items) < 2:
                return None
            return self._items[0], self._items[1]


class SweepSlot:
    """
    Capacity-one staging area for the newest unpaired sweep.

    Staging while occupied evicts the previous sweep (drop-oldest), which
    bounds memory and keeps sweeps in start-time order.
    """

    def __init__(self) -> None:
        self._sweep: Optional[Sweep] = None
        self._lock = threading.Lock()
        self.dropped = 0

    def stage(self, sweep: Sweep) -> Optional[Sweep]:
        """Stage ``sweep``; returns the evicted sweep, if any."""
        with self._lock:
            evicted = self._sweep
            self._sweep = sweep
            if evicted is not None:
                self.dropped += 1
        if evicted is not None:
            _logger.warning(
                "Dropping unpaired sweep %.6f (%d points): newer sweep %.6f arrived",
                evicted.start_timestamp, len(evicted), sweep.start_timestamp,
            )
        return evicted

    def peek(self) -> Optional[Sweep]:
        with self._lock:
            return self._sweep

    def take(self, expected: Optional[Sweep] = None) -> Optional[Sweep]:
        """Empty the slot. With ``expected``, only if it still holds that sweep."""
        with self._lock:
            if expected is not None and self._sweep is not expected:
                return None
            sweep, self._sweep = self._sweep, None
            return sweep


class PairingQueue:
    """
    Bounded FIFO of paired (pose, sweep) items awaiting the readiness gate.

    When full, putting a new item evicts the oldest one (drop-oldest, like
    SweepSlot), so at most ``maxlen`` sweeps are held while IMU lags.
    """

    def __init__(self, maxlen: Optional[int] = None) -> None:
        if maxlen is not None and maxlen < 1:
            raise ValueError(f"PairingQueue maxlen must be >= 1, got {maxlen}")
        self.maxlen = maxlen
        self._items: Deque[PairedItem] = deque()
        self._lock = threading.Lock()
        self.dropped = 0

    def put(self, item: PairedItem) -> Optional[PairedItem]:
        """Append ``item``; returns the evicted oldest item, if any."""
        evicted = None
        with self._lock:
            if self.maxlen is not None and len(self._items) >= self.maxlen:
                evicted = self._items.popleft()
                self.dropped += 1
            self._items.append(item)
        if evicted is not None:
            _logger.warning(
                "Dropping queued pose/sweep pair %.6f: pairing queue full, newer sweep %.6f paired",
                evicted.sweep.start_timestamp, item.sweep.start_timestamp,
            )
        return evicted

    def front(self) -> Optional[PairedItem]:
        with self._lock:
            return self._items[0] if self._items else None

    def pop_front(self, expected: Optional[PairedItem] = None) -> Optional[PairedItem]:
        """Pop the oldest item. With ``expected``, only if it is still at the front."""
        with self._lock:
            if not self._items:
                return None
            if expected is not None and self._items[0] is not expected:
                return None
            return self._items.popleft()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
