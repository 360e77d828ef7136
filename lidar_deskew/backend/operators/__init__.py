"""
Deskew operators.

- imu_window: resample IMU samples onto a [t_start, t_end] window
- imu_propagation: strap-down propagation from a pose through the window
- deskew_trajectory: per-point trajectory interpolation and world transform
"""

from lidar_deskew.backend.operators.imu_window import extract_imu_window
from lidar_deskew.backend.operators.imu_propagation import (
    PropagationConstants,
    propagate_imu,
)
from lidar_deskew.backend.operators.deskew_trajectory import (
    DeskewResult,
    PointDeskewer,
)

__all__ = [
    "extract_imu_window",
    "PropagationConstants",
    "propagate_imu",
    "DeskewResult",
    "PointDeskewer",
]
