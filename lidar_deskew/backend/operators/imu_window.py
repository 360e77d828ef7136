"""
IMU window extraction with boundary interpolation.

Output timestamps are [t_start, interior samples..., t_end]. The first and
last entries are linearly interpolated between their bracketing samples:

    s = (t - t_B) / (t_E - t_B),   x(t) = (1 - s) x_B + s x_E

Interior samples strictly inside (t_start, t_end) are copied unchanged.
"""

from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np

from lidar_deskew.common import constants
from lidar_deskew.common.errors import InsufficientImuError, WindowCoverageError
from lidar_deskew.common.messages import ImuWindow, InertialSample, require_strictly_increasing


def _interpolate_at(
    t: float,
    stamps: np.ndarray,
    gyro: np.ndarray,
    accel: np.ndarray,
    idx: int,
) -> Tuple[np.ndarray, np.ndarray]:
    t_b = stamps[idx]
    t_e = stamps[idx + 1]
    s = (t - t_b) / (t_e - t_b)
    return (1.0 - s) * gyro[idx] + s * gyro[idx + 1], (1.0 - s) * accel[idx] + s * accel[idx + 1]


def extract_imu_window(
    samples: Sequence[InertialSample],
    t_start: float,
    t_end: float,
    min_samples: int = constants.MIN_IMU_SAMPLES,
) -> ImuWindow:
    """
    Resample ``samples`` onto [t_start, t_end].

    Raises:
        OrderingViolationError: sample timestamps are not strictly increasing.
        WindowCoverageError: samples do not bracket both window ends.
        InsufficientImuError: fewer than ``min_samples`` resampled entries.
    """
    t_start = float(t_start)
    t_end = float(t_end)
    if not t_end > t_start:
        raise ValueError(f"IMU window end {t_end:.9f} must be after start {t_start:.9f}")
    if len(samples) < 2:
        raise InsufficientImuError(len(samples), max(2, min_samples))

    stamps = np.array([s.timestamp for s in samples], dtype=np.float64)
    require_strictly_increasing(stamps, "IMU")
    if stamps[0] > t_start or stamps[-1] < t_end:
        raise WindowCoverageError(
            f"IMU {stamps[0]:.6f} -> {stamps[-1]:.6f} does not cover window {t_start:.6f} -> {t_end:.6f}"
        )

    gyro = np.stack([s.angular_velocity for s in samples])
    accel = np.stack([s.linear_acceleration for s in samples])
    last_pair = stamps.shape[0] - 2

    # Bracket for t_start: last sample <= t_start (s = 0 on an exact hit).
    i_start = min(int(np.searchsorted(stamps, t_start, side="right")) - 1, last_pair)
    # Bracket for t_end: first sample >= t_end is the upper end (s = 1 on an exact hit).
    i_end = max(int(np.searchsorted(stamps, t_end, side="left")) - 1, 0)

    gyro_start, accel_start = _interpolate_at(t_start, stamps, gyro, accel, i_start)
    gyro_end, accel_end = _interpolate_at(t_end, stamps, gyro, accel, i_end)

    interior = (stamps > t_start) & (stamps < t_end)
    ts = np.concatenate([[t_start], stamps[interior], [t_end]])
    if ts.shape[0] < min_samples:
        raise InsufficientImuError(int(ts.shape[0]), min_samples)

    return ImuWindow(
        timestamps=ts,
        gyro=np.vstack([gyro_start, gyro[interior], gyro_end]),
        accel=np.vstack([accel_start, accel[interior], accel_end]),
    )
