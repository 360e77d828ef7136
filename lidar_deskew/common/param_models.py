"""Pydantic parameter models for the LiDAR deskew node."""

from __future__ import annotations

import os
from typing import Any, Dict, List

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from lidar_deskew.common import constants


def _vec3_field(default) -> Any:
    return Field(default_factory=lambda: list(default), min_length=3, max_length=3)


class DeskewParams(BaseModel):
    """Startup constants for buffering, propagation and deskew. Not reloadable."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    # Calibration (process-wide, fixed)
    extrinsic_matrix: List[List[float]] = Field(
        default_factory=lambda: [list(row) for row in constants.EXTRINSIC_T_B_L_DEFAULT],
        min_length=4,
        max_length=4,
    )
    gravity: List[float] = _vec3_field(constants.GRAVITY_W_DEFAULT)
    gyro_bias: List[float] = _vec3_field(constants.GYRO_BIAS_DEFAULT)
    accel_bias: List[float] = _vec3_field(constants.ACCEL_BIAS_DEFAULT)

    # Synchronization
    readiness_margin_sec: float = Field(constants.READINESS_MARGIN_SEC, ge=0.0)
    min_imu_samples: int = Field(constants.MIN_IMU_SAMPLES, ge=2)
    initial_sweep_skip: int = Field(constants.INITIAL_SWEEP_SKIP, ge=0)
    imu_buffer_max_length: int = Field(constants.IMU_BUFFER_MAX_LENGTH, ge=2)
    pose_buffer_max_length: int = Field(constants.POSE_BUFFER_MAX_LENGTH, ge=2)
    pairing_queue_max_length: int = Field(constants.PAIRING_QUEUE_MAX_LENGTH, ge=1)

    # Processing loop
    poll_interval_sec: float = Field(constants.POLL_INTERVAL_SEC, gt=0.0)
    log_throttle_sec: float = Field(constants.LOG_THROTTLE_SEC, ge=0.0)
    deskew_workers: int = Field(0, ge=0)  # 0 = os.cpu_count()

    # Output
    distorted_frame_id: str = constants.DISTORTED_FRAME_ID
    deskewed_frame_id: str = constants.DESKEWED_FRAME_ID

    @field_validator("extrinsic_matrix")
    @classmethod
    def _check_rows(cls, rows: List[List[float]]) -> List[List[float]]:
        for row in rows:
            if len(row) != 4:
                raise ValueError(f"extrinsic_matrix rows must have 4 entries, got {len(row)}")
        return rows

    def resolved_workers(self) -> int:
        return self.deskew_workers or (os.cpu_count() or 1)


def _load_yaml_file(path: str) -> Dict[str, Any]:
    """Load a YAML config file, handling the ros__parameters wrapper."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at top level")
    # ROS2 YAML files wrap parameters in /**:/ros__parameters:
    if "/**" in data and "ros__parameters" in (data.get("/**") or {}):
        return data["/**"]["ros__parameters"] or {}
    return data


def load_params(path: str, **overrides: Any) -> DeskewParams:
    """Load and validate DeskewParams from YAML; keyword overrides win."""
    values = _load_yaml_file(path)
    values.update(overrides)
    return DeskewParams(**values)
