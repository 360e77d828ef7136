import os
import sys
from typing import Any, Callable, Dict, List, Sequence

import numpy as np
import pytest

# Ensure local package import works for pytest collection.
_TEST_DIR = os.path.dirname(__file__)
_PKG_ROOT = os.path.abspath(os.path.join(_TEST_DIR, ".."))
if _PKG_ROOT not in sys.path:
    sys.path.insert(0, _PKG_ROOT)

from lidar_deskew.common.messages import InertialSample, PoseSample, Sweep  # noqa: E402

GRAVITY_MAG = 9.82


# =============================================================================
# Production Config Fixtures
# =============================================================================


@pytest.fixture
def config_path() -> str:
    """Path to the shipped node configuration."""
    path = os.path.join(_PKG_ROOT, "config", "lidar_deskew.yaml")
    if not os.path.exists(path):
        pytest.skip("config/lidar_deskew.yaml not found")
    return path


@pytest.fixture
def test_params_dict() -> Dict[str, Any]:
    """
    Parameters for synthetic-stream tests.

    Zero biases and Z-up gravity so a hovering body with specific force
    (0, 0, 9.82) does not move; no warm-up skip.
    """
    return {
        "gravity": [0.0, 0.0, -GRAVITY_MAG],
        "gyro_bias": [0.0, 0.0, 0.0],
        "accel_bias": [0.0, 0.0, 0.0],
        "extrinsic_matrix": np.eye(4).tolist(),
        "initial_sweep_skip": 0,
        "deskew_workers": 2,
        "poll_interval_sec": 0.01,
        "log_throttle_sec": 0.0,
    }


# =============================================================================
# Synthetic Stream Fixtures
# =============================================================================


def quat_yaw(yaw: float) -> np.ndarray:
    """(w, x, y, z) for a rotation of ``yaw`` radians about world Z."""
    return np.array([np.cos(0.5 * yaw), 0.0, 0.0, np.sin(0.5 * yaw)])


@pytest.fixture
def make_imu_stream() -> Callable[..., List[InertialSample]]:
    """Factory: evenly spaced IMU samples with constant rate and specific force."""

    def _make(
        t0: float,
        t1: float,
        rate_hz: float = 100.0,
        gyro: Sequence[float] = (0.0, 0.0, 0.0),
        accel: Sequence[float] = (0.0, 0.0, GRAVITY_MAG),
    ) -> List[InertialSample]:
        n = int(round((t1 - t0) * rate_hz)) + 1
        return [
            InertialSample(t0 + k / rate_hz, np.array(gyro, dtype=float), np.array(accel, dtype=float))
            for k in range(n)
        ]

    return _make


@pytest.fixture
def make_pose() -> Callable[..., PoseSample]:
    """Factory: pose at time t with yaw, position and body-frame velocity."""

    def _make(
        t: float,
        yaw: float = 0.0,
        position: Sequence[float] = (0.0, 0.0, 0.0),
        velocity: Sequence[float] = (0.0, 0.0, 0.0),
    ) -> PoseSample:
        return PoseSample(t, quat_yaw(yaw), np.array(position, dtype=float), np.array(velocity, dtype=float))

    return _make


@pytest.fixture
def make_sweep() -> Callable[..., Sweep]:
    """
    Factory: sweep of ``n`` points at range ``radius`` along sensor +X,
    acquired uniformly over ``duration`` seconds.
    """

    def _make(start: float, n: int = 64, duration: float = 0.1, radius: float = 10.0) -> Sweep:
        xyz = np.tile([radius, 0.0, 0.0], (n, 1))
        rel = np.linspace(0.0, duration * 1e9, n).astype(np.int64)
        intensity = np.arange(n, dtype=float)
        reflectivity = np.full(n, 7.0)
        return Sweep(start, xyz, rel, intensity, reflectivity)

    return _make


# =============================================================================
# Test Utility Fixtures
# =============================================================================


@pytest.fixture
def numpy_seed():
    """Set numpy random seed for reproducible tests."""
    np.random.seed(42)
    yield
