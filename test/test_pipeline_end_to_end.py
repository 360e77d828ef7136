"""
End-to-end tests for the per-sweep pipeline: distort, extract, propagate, deskew.
"""

import logging

import numpy as np
import pytest

from lidar_deskew.backend.pipeline import DeskewPipeline, PipelineConfig, SweepOutcome
from lidar_deskew.common.messages import PairedItem
from lidar_deskew.common.param_models import DeskewParams


@pytest.fixture
def pipeline(test_params_dict):
    p = DeskewPipeline(PipelineConfig.from_params(DeskewParams(**test_params_dict)), workers=2)
    yield p
    p.close()


@pytest.fixture
def yaw_scene(make_pose, make_sweep, make_imu_stream):
    """Stationary pose at t=0, 0.1 s sweep, body yawing at 0.1 rad/s."""
    item = PairedItem(make_pose(0.0), make_sweep(0.0, n=4096, duration=0.1))
    imu = make_imu_stream(-0.01, 0.18, rate_hz=100.0, gyro=(0.0, 0.0, 0.1))
    return item, imu


def test_yawing_sweep_deskewed(pipeline, yaw_scene):
    item, imu = yaw_scene
    assert len(imu) == 20

    result = pipeline.process(item, imu)

    assert result.outcome is SweepOutcome.DESKEWED
    assert result.ok
    assert result.n_fallback_points == 0
    distorted = result.distorted.xyz
    deskewed = result.deskewed.xyz
    assert result.distorted.frame_id == "world"
    assert result.deskewed.frame_id == "world_shifted"
    assert result.distorted.kind == "distorted"
    assert result.deskewed.kind == "deskewed"

    # Distorted cloud uses the paired (identity) pose only.
    assert np.allclose(distorted, item.sweep.xyz)
    # First point is acquired at the pose time: no correction.
    assert np.allclose(deskewed[0], distorted[0], atol=1e-10)

    angles = np.arctan2(deskewed[:, 1], deskewed[:, 0])
    assert np.all(np.diff(angles) >= 0.0)
    assert angles[-1] == pytest.approx(0.01, abs=1e-9)
    assert np.linalg.norm(deskewed[-1] - distorted[-1]) == pytest.approx(10.0 * 0.01, rel=1e-3)

    # Attributes are carried through unchanged.
    assert np.array_equal(result.deskewed.intensity, item.sweep.intensity)
    assert np.array_equal(result.deskewed.relative_time_ns, item.sweep.relative_time_ns)
    assert result.trajectory.covers(item.pose.timestamp, item.sweep.end_timestamp)


def test_trajectory_logged_at_debug(pipeline, yaw_scene, caplog):
    caplog.set_level(logging.DEBUG, logger="lidar_deskew.backend.pipeline")
    item, imu = yaw_scene
    pipeline.process(item, imu)
    assert any("IMU prop" in r.getMessage() for r in caplog.records)


def test_insufficient_imu_density(test_params_dict, yaw_scene):
    params = DeskewParams(**{**test_params_dict, "min_imu_samples": 50})
    item, imu = yaw_scene
    with DeskewPipeline(PipelineConfig.from_params(params), workers=1) as pipeline:
        result = pipeline.process(item, imu)

    assert result.outcome is SweepOutcome.INSUFFICIENT_DATA
    assert result.distorted is not None
    assert result.deskewed is None


def test_window_not_covered(pipeline, make_pose, make_sweep, make_imu_stream):
    item = PairedItem(make_pose(0.0), make_sweep(0.0, duration=0.1))
    result = pipeline.process(item, make_imu_stream(-0.01, 0.05))
    assert result.outcome is SweepOutcome.WINDOW_UNCOVERED
    assert result.distorted is None and result.deskewed is None


def test_snapshot_before_pose(pipeline, make_pose, make_sweep, make_imu_stream):
    item = PairedItem(make_pose(1.0), make_sweep(1.0))
    result = pipeline.process(item, make_imu_stream(0.0, 0.5))
    assert result.outcome is SweepOutcome.WINDOW_UNCOVERED


def test_ordering_violation(pipeline, yaw_scene):
    item, imu = yaw_scene
    imu = list(imu)
    imu[4], imu[5] = imu[5], imu[4]
    result = pipeline.process(item, imu)
    assert result.outcome is SweepOutcome.ORDERING_VIOLATION
    assert result.deskewed is None


def test_instantaneous_sweep(pipeline, make_pose, make_sweep, make_imu_stream):
    item = PairedItem(make_pose(0.0, position=(0.0, 0.0, 1.0)), make_sweep(0.0, duration=0.0))
    result = pipeline.process(item, make_imu_stream(-0.01, 0.2))
    assert result.outcome is SweepOutcome.DESKEWED
    assert np.allclose(result.deskewed.xyz, result.distorted.xyz)


def test_distort_applies_extrinsic(test_params_dict, make_pose, make_sweep):
    extrinsic = [[-1, 0, 0, 0.5], [0, -1, 0, 0], [0, 0, 1, 0], [0, 0, 0, 1]]
    params = DeskewParams(**{**test_params_dict, "extrinsic_matrix": extrinsic})
    item = PairedItem(make_pose(0.0, yaw=np.pi / 2, position=(1.0, 0.0, 0.0)), make_sweep(0.0, n=4))
    with DeskewPipeline(PipelineConfig.from_params(params), workers=1) as pipeline:
        cloud = pipeline.distort(item)
    # L (10,0,0) -> B (-9.5,0,0) -> W yaw 90deg + (1,0,0) = (1,-9.5,0)
    assert np.allclose(cloud.xyz, [1.0, -9.5, 0.0])


def test_malformed_extrinsic_is_fatal(test_params_dict):
    reflection = [[1, 0, 0, 0], [0, 1, 0, 0], [0, 0, -1, 0], [0, 0, 0, 1]]
    params = DeskewParams(**{**test_params_dict, "extrinsic_matrix": reflection})
    with pytest.raises(ValueError):
        PipelineConfig.from_params(params)

