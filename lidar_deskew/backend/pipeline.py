"""
Per-sweep deskew pipeline.

Given a paired (pose, sweep) item and a snapshot of IMU samples:
  1. map the sweep to world with the paired pose only ("distorted")
  2. extract the IMU window [pose time, sweep end]
  3. propagate the pose through the window
  4. deskew every point at its own acquisition time ("deskewed")

Recoverable data faults are turned into a SweepOutcome; nothing here
raises past process().
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Optional, Sequence

import numpy as np

from lidar_deskew.common import constants
from lidar_deskew.common.errors import (
    InsufficientImuError,
    OrderingViolationError,
    WindowCoverageError,
)
from lidar_deskew.common.log_utils import ThrottledLogger
from lidar_deskew.common.messages import (
    InertialSample,
    PairedItem,
    PropagatedTrajectory,
    Sweep,
    WorldCloud,
)
from lidar_deskew.common.param_models import DeskewParams
from lidar_deskew.common.transforms.se3 import RigidTransform, quat_to_ypr_deg
from lidar_deskew.backend.operators import (
    PointDeskewer,
    PropagationConstants,
    extract_imu_window,
    propagate_imu,
)

_logger = logging.getLogger(__name__)


# =============================================================================
# Pipeline Configuration
# =============================================================================


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable startup configuration for the per-sweep pipeline."""
    extrinsic: RigidTransform            # T_B_L, LiDAR -> body
    calib: PropagationConstants
    min_imu_samples: int = constants.MIN_IMU_SAMPLES
    distorted_frame_id: str = constants.DISTORTED_FRAME_ID
    deskewed_frame_id: str = constants.DESKEWED_FRAME_ID

    @classmethod
    def from_params(cls, params: DeskewParams) -> "PipelineConfig":
        """Raises ValueError on a malformed extrinsic (fatal at startup)."""
        return cls(
            extrinsic=RigidTransform.from_matrix(params.extrinsic_matrix),
            calib=PropagationConstants.create(
                gravity=params.gravity,
                gyro_bias=params.gyro_bias,
                accel_bias=params.accel_bias,
            ),
            min_imu_samples=params.min_imu_samples,
            distorted_frame_id=params.distorted_frame_id,
            deskewed_frame_id=params.deskewed_frame_id,
        )


# =============================================================================
# Per-Sweep Pipeline Result
# =============================================================================


class SweepOutcome(Enum):
    DESKEWED = "deskewed"
    INSUFFICIENT_DATA = "insufficient_data"
    WINDOW_UNCOVERED = "window_uncovered"
    ORDERING_VIOLATION = "ordering_violation"


@dataclass
class SweepPipelineResult:
    outcome: SweepOutcome
    stamp: float
    distorted: Optional[WorldCloud] = None
    deskewed: Optional[WorldCloud] = None
    trajectory: Optional[PropagatedTrajectory] = None
    imu_count: int = 0
    n_fallback_points: int = 0
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is SweepOutcome.DESKEWED


def _world_cloud(sweep: Sweep, xyz: np.ndarray, frame_id: str, kind: str) -> WorldCloud:
    return WorldCloud(
        stamp=sweep.start_timestamp,
        frame_id=frame_id,
        kind=kind,
        xyz=xyz,
        intensity=sweep.intensity,
        reflectivity=sweep.reflectivity,
        relative_time_ns=sweep.relative_time_ns,
    )


def _log_trajectory(trajectory: PropagatedTrajectory) -> None:
    if not _logger.isEnabledFor(logging.DEBUG):
        return
    for i in range(len(trajectory)):
        yaw, pitch, roll = quat_to_ypr_deg(trajectory.orientations[i])
        x, y, z = trajectory.positions[i]
        _logger.debug(
            "IMU prop %2d. Time: %.3f. YPR: %8.3f, %8.3f, %8.3f. XYZ: %.3f, %.3f, %.3f.",
            i, trajectory.timestamps[i], yaw, pitch, roll, x, y, z,
        )


# =============================================================================
# Main Pipeline
# =============================================================================


class DeskewPipeline:
    def __init__(
        self,
        config: PipelineConfig,
        workers: Optional[int] = None,
        throttle: Optional[ThrottledLogger] = None,
    ) -> None:
        self.config = config
        self._throttle = throttle or ThrottledLogger(_logger, constants.LOG_THROTTLE_SEC)
        self.deskewer = PointDeskewer(workers=workers)

    def close(self) -> None:
        self.deskewer.close()

    def __enter__(self) -> "DeskewPipeline":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def distort(self, item: PairedItem) -> WorldCloud:
        """World-frame cloud using only the paired pose."""
        T_W_B = RigidTransform.from_quat(item.pose.orientation, item.pose.position)
        xyz = T_W_B.compose(self.config.extrinsic).apply(item.sweep.xyz)
        return _world_cloud(item.sweep, xyz, self.config.distorted_frame_id, "distorted")

    def process(self, item: PairedItem, imu_samples: Sequence[InertialSample]) -> SweepPipelineResult:
        pose, sweep = item.pose, item.sweep
        stamp = sweep.start_timestamp
        t_start = pose.timestamp
        t_end = sweep.end_timestamp
        n_imu = len(imu_samples)

        if n_imu < 2 or imu_samples[-1].timestamp < t_start:
            reason = f"IMU snapshot of {n_imu} samples does not reach pose time {t_start:.6f}"
            self._throttle.warning("window_uncovered", "Sweep %.6f outside IMU buffer window: %s", stamp, reason)
            return SweepPipelineResult(SweepOutcome.WINDOW_UNCOVERED, stamp, imu_count=n_imu, reason=reason)

        if t_end <= t_start:
            # Instantaneous sweep stamped exactly at the pose: nothing to propagate.
            distorted = self.distort(item)
            deskewed = _world_cloud(sweep, distorted.xyz.copy(), self.config.deskewed_frame_id, "deskewed")
            return SweepPipelineResult(SweepOutcome.DESKEWED, stamp, distorted, deskewed, imu_count=n_imu)

        try:
            window = extract_imu_window(imu_samples, t_start, t_end, self.config.min_imu_samples)
        except OrderingViolationError as e:
            _logger.warning("Dropping sweep %.6f: %s", stamp, e)
            return SweepPipelineResult(SweepOutcome.ORDERING_VIOLATION, stamp, imu_count=n_imu, reason=str(e))
        except WindowCoverageError as e:
            self._throttle.warning("window_uncovered", "Sweep %.6f outside IMU buffer window: %s", stamp, e)
            return SweepPipelineResult(SweepOutcome.WINDOW_UNCOVERED, stamp, imu_count=n_imu, reason=str(e))
        except InsufficientImuError as e:
            # Ordering and coverage already passed, so the distorted cloud is still valid.
            _logger.warning("Short/empty IMU sequence for sweep %.6f, skipping deskew: %s", stamp, e)
            return SweepPipelineResult(
                SweepOutcome.INSUFFICIENT_DATA, stamp, self.distort(item), imu_count=e.count, reason=str(e)
            )

        distorted = self.distort(item)
        try:
            trajectory = propagate_imu(pose, window, self.config.calib)
        except OrderingViolationError as e:
            _logger.warning("Dropping sweep %.6f: %s", stamp, e)
            return SweepPipelineResult(SweepOutcome.ORDERING_VIOLATION, stamp, distorted, imu_count=len(window), reason=str(e))
        _log_trajectory(trajectory)

        fallback = RigidTransform.from_quat(pose.orientation, pose.position)
        result = self.deskewer.deskew(sweep, trajectory, self.config.extrinsic, fallback)
        if result.n_fallback:
            _logger.warning(
                "Sweep %.6f: %d/%d points outside propagated trajectory, left undeskewed",
                stamp, result.n_fallback, len(sweep),
            )
        deskewed = _world_cloud(sweep, result.points, self.config.deskewed_frame_id, "deskewed")
        return SweepPipelineResult(
            SweepOutcome.DESKEWED,
            stamp,
            distorted,
            deskewed,
            trajectory=trajectory,
            imu_count=len(window),
            n_fallback_points=result.n_fallback,
        )
