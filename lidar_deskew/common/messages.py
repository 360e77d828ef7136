"""
Sensor records exchanged between ingestion, buffers and the deskew pipeline.

All records are frozen; array fields are converted to float64 (int64 for
per-point nanosecond offsets) on construction and must not be mutated.
Every input record satisfies the ``Timestamped`` protocol so buffers can be
written once for all three streams.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol, Tuple, runtime_checkable

import numpy as np

from lidar_deskew.common import constants
from lidar_deskew.common.errors import OrderingViolationError, PairingInvariantError


@runtime_checkable
class Timestamped(Protocol):
    """Anything exposing a ``timestamp`` in seconds."""

    @property
    def timestamp(self) -> float: ...


def _vec3(value, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=np.float64).reshape(-1)
    if arr.shape != (3,):
        raise ValueError(f"{name} must have 3 components, got shape {arr.shape}")
    return arr


def _unit_quat_wxyz(value) -> np.ndarray:
    q = np.asarray(value, dtype=np.float64).reshape(-1)
    if q.shape != (4,):
        raise ValueError(f"orientation must be (w, x, y, z), got shape {q.shape}")
    n = float(np.linalg.norm(q))
    if n < 1e-12:
        raise ValueError("orientation quaternion has zero norm")
    return q / n


def require_strictly_increasing(stamps: np.ndarray, what: str) -> None:
    """Raise OrderingViolationError unless ``stamps`` strictly increase."""
    stamps = np.asarray(stamps, dtype=np.float64).reshape(-1)
    if stamps.shape[0] < 2:
        return
    steps = np.diff(stamps)
    if np.any(steps <= 0.0):
        k = int(np.argmax(steps <= 0.0))
        raise OrderingViolationError(
            f"{what} timestamps not strictly increasing at index {k + 1}: "
            f"{stamps[k]:.9f} -> {stamps[k + 1]:.9f}"
        )


@dataclass(frozen=True, eq=False)
class InertialSample:
    timestamp: float
    angular_velocity: np.ndarray     # (3,) rad/s, body frame
    linear_acceleration: np.ndarray  # (3,) m/s^2 specific force, body frame

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", float(self.timestamp))
        object.__setattr__(self, "angular_velocity", _vec3(self.angular_velocity, "angular_velocity"))
        object.__setattr__(self, "linear_acceleration", _vec3(self.linear_acceleration, "linear_acceleration"))


@dataclass(frozen=True, eq=False)
class PoseSample:
    """Externally estimated body state T_W_B at one instant."""

    timestamp: float
    orientation: np.ndarray      # (4,) unit quaternion (w, x, y, z), R_W_B
    position: np.ndarray         # (3,) p_W_B
    linear_velocity: np.ndarray  # (3,) body frame

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", float(self.timestamp))
        object.__setattr__(self, "orientation", _unit_quat_wxyz(self.orientation))
        object.__setattr__(self, "position", _vec3(self.position, "position"))
        object.__setattr__(self, "linear_velocity", _vec3(self.linear_velocity, "linear_velocity"))


@dataclass(frozen=True, eq=False)
class Sweep:
    """
    One LiDAR sweep stored column-wise.

    Points are not required to be ordered by ``relative_time_ns``; the sweep
    end is the latest point time, not the last point's time.
    """

    start_timestamp: float
    xyz: np.ndarray               # (N, 3) sensor frame
    relative_time_ns: np.ndarray  # (N,) int64, offset from start_timestamp
    intensity: np.ndarray         # (N,)
    reflectivity: np.ndarray      # (N,)

    def __post_init__(self) -> None:
        xyz = np.asarray(self.xyz, dtype=np.float64).reshape(-1, 3)
        n = xyz.shape[0]
        rel = np.asarray(self.relative_time_ns, dtype=np.int64).reshape(-1)
        intensity = np.asarray(self.intensity, dtype=np.float64).reshape(-1)
        reflectivity = np.asarray(self.reflectivity, dtype=np.float64).reshape(-1)
        for name, col in (("relative_time_ns", rel), ("intensity", intensity), ("reflectivity", reflectivity)):
            if col.shape[0] != n:
                raise ValueError(f"{name} has {col.shape[0]} entries for {n} points")
        if n and int(rel.min()) < 0:
            raise ValueError("relative_time_ns must be non-negative")
        object.__setattr__(self, "start_timestamp", float(self.start_timestamp))
        object.__setattr__(self, "xyz", xyz)
        object.__setattr__(self, "relative_time_ns", rel)
        object.__setattr__(self, "intensity", intensity)
        object.__setattr__(self, "reflectivity", reflectivity)

    @classmethod
    def from_points(
        cls,
        start_timestamp: float,
        points: Iterable[Tuple[float, float, float, int, float, float]],
    ) -> "Sweep":
        """Build from (x, y, z, relative_time_ns, intensity, reflectivity) rows."""
        rows = list(points)
        if not rows:
            return cls(start_timestamp, np.zeros((0, 3)), np.zeros(0), np.zeros(0), np.zeros(0))
        xyz = np.array([r[0:3] for r in rows], dtype=np.float64)
        rel = np.array([r[3] for r in rows], dtype=np.int64)
        intensity = np.array([r[4] for r in rows], dtype=np.float64)
        reflectivity = np.array([r[5] for r in rows], dtype=np.float64)
        return cls(start_timestamp, xyz, rel, intensity, reflectivity)

    @property
    def timestamp(self) -> float:
        return self.start_timestamp

    @property
    def duration_sec(self) -> float:
        if self.relative_time_ns.shape[0] == 0:
            return 0.0
        return float(self.relative_time_ns.max()) / constants.NS_PER_SEC

    @property
    def end_timestamp(self) -> float:
        return self.start_timestamp + self.duration_sec

    def point_times(self) -> np.ndarray:
        """Absolute acquisition time of every point (seconds)."""
        return self.start_timestamp + self.relative_time_ns.astype(np.float64) / constants.NS_PER_SEC

    def __len__(self) -> int:
        return int(self.xyz.shape[0])


@dataclass(frozen=True, eq=False)
class PairedItem:
    """A sweep and the latest pose at or before its start."""

    pose: PoseSample
    sweep: Sweep

    def __post_init__(self) -> None:
        if self.pose.timestamp > self.sweep.start_timestamp:
            raise PairingInvariantError(
                f"pose {self.pose.timestamp:.6f} is newer than sweep start {self.sweep.start_timestamp:.6f}"
            )


@dataclass(frozen=True, eq=False)
class ImuWindow:
    """Resampled IMU sequence whose ends sit exactly on the window bounds."""

    timestamps: np.ndarray  # (M,)
    gyro: np.ndarray        # (M, 3)
    accel: np.ndarray       # (M, 3)

    def __len__(self) -> int:
        return int(self.timestamps.shape[0])


@dataclass(frozen=True, eq=False)
class PropagatedTrajectory:
    timestamps: np.ndarray    # (M,) strictly increasing
    orientations: np.ndarray  # (M, 4) (w, x, y, z), R_W_B
    positions: np.ndarray     # (M, 3)
    velocities: np.ndarray    # (M, 3) world frame

    def __post_init__(self) -> None:
        stamps = np.asarray(self.timestamps, dtype=np.float64).reshape(-1)
        m = stamps.shape[0]
        orientations = np.asarray(self.orientations, dtype=np.float64).reshape(m, 4)
        positions = np.asarray(self.positions, dtype=np.float64).reshape(m, 3)
        velocities = np.asarray(self.velocities, dtype=np.float64).reshape(m, 3)
        require_strictly_increasing(stamps, "trajectory")
        object.__setattr__(self, "timestamps", stamps)
        object.__setattr__(self, "orientations", orientations)
        object.__setattr__(self, "positions", positions)
        object.__setattr__(self, "velocities", velocities)

    @property
    def start_time(self) -> float:
        return float(self.timestamps[0])

    @property
    def end_time(self) -> float:
        return float(self.timestamps[-1])

    def covers(self, t0: float, t1: float) -> bool:
        return len(self) > 0 and self.start_time <= t0 and t1 <= self.end_time

    def __len__(self) -> int:
        return int(self.timestamps.shape[0])


@dataclass(frozen=True, eq=False)
class WorldCloud:
    """A sweep expressed in the world frame, ready for the output collaborator."""

    stamp: float
    frame_id: str
    kind: str                     # "distorted" | "deskewed"
    xyz: np.ndarray               # (N, 3) world frame
    intensity: np.ndarray
    reflectivity: np.ndarray
    relative_time_ns: np.ndarray

    def __len__(self) -> int:
        return int(self.xyz.shape[0])
