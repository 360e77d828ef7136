"""
Strap-down IMU propagation from a pose through a resampled IMU window.

Implements a deterministic, fixed-cost discrete-time integration over
consecutive window samples (t_{n-1} -> t_n), holding the rates measured at
t_{n-1} over the interval:
  - orientation:  q_n = q_{n-1} ⊗ Exp((ω_{n-1} - b_g) dt)
  - velocity:     v_n = v_{n-1} + (q_{n-1} ⊙ (f_{n-1} - b_a) + g_W) dt       (Euler)
  - position:     p_n = p_{n-1} + v_{n-1} dt + ½ (q_{n-1} ⊙ (f_{n-1} - b_a) + g_W) dt²
                      = p_{n-1} + ½ (v_{n-1} + v_n) dt                     (trapezoidal)

The initial state comes from the paired pose: q_0, p_0 directly and
v_0 = q_0 ⊙ v_body.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from lidar_deskew.common import constants
from lidar_deskew.common.errors import InsufficientImuError
from lidar_deskew.common.geometry import quat_jax
from lidar_deskew.common.jax_init import jax, jnp
from lidar_deskew.common.messages import (
    ImuWindow,
    PoseSample,
    PropagatedTrajectory,
    require_strictly_increasing,
)
from lidar_deskew.common.transforms.se3 import quat_rotate


@dataclass(frozen=True, eq=False)
class PropagationConstants:
    """Fixed calibration constants, set once at startup."""

    gravity: np.ndarray     # (3,) world frame
    gyro_bias: np.ndarray   # (3,)
    accel_bias: np.ndarray  # (3,)

    @classmethod
    def create(cls, gravity=constants.GRAVITY_W_DEFAULT,
               gyro_bias=constants.GYRO_BIAS_DEFAULT,
               accel_bias=constants.ACCEL_BIAS_DEFAULT) -> "PropagationConstants":
        return cls(
            gravity=np.asarray(gravity, dtype=np.float64).reshape(3),
            gyro_bias=np.asarray(gyro_bias, dtype=np.float64).reshape(3),
            accel_bias=np.asarray(accel_bias, dtype=np.float64).reshape(3),
        )


@jax.jit
def _propagate_imu_jax(
    dt: jnp.ndarray,          # (K,) interval lengths; zero-padded
    gyro: jnp.ndarray,        # (K, 3) rate at interval start
    accel: jnp.ndarray,       # (K, 3) specific force at interval start
    q0: jnp.ndarray,          # (4,)
    v0: jnp.ndarray,          # (3,)
    p0: jnp.ndarray,          # (3,)
    gyro_bias: jnp.ndarray,
    accel_bias: jnp.ndarray,
    gravity_W: jnp.ndarray,
) -> tuple[jnp.ndarray, jnp.ndarray, jnp.ndarray]:
    def step(carry, inp):
        q_k, v_k, p_k = carry
        gyro_i, accel_i, dt_i = inp

        omega = gyro_i - gyro_bias
        q_next = quat_jax.quat_normalize(quat_jax.quat_multiply(q_k, quat_jax.quat_exp(omega * dt_i)))

        a_world = quat_jax.quat_rotate(q_k, accel_i - accel_bias) + gravity_W
        v_next = v_k + a_world * dt_i
        p_next = p_k + v_k * dt_i + 0.5 * a_world * (dt_i * dt_i)
        return (q_next, v_next, p_next), (q_next, v_next, p_next)

    _, (qs, vs, ps) = jax.lax.scan(step, (q0, v0, p0), (gyro, accel, dt))
    return qs, vs, ps


def _padded_length(n: int) -> int:
    pad = constants.IMU_PROPAGATION_PAD_LEN
    return max(pad, ((n + pad - 1) // pad) * pad)


def propagate_imu(
    pose: PoseSample,
    window: ImuWindow,
    calib: PropagationConstants,
) -> PropagatedTrajectory:
    """
    Propagate ``pose`` through ``window``; one trajectory entry per window sample.

    The first entry is the pose state at window.timestamps[0]; the terminal
    state is the last entry.

    Raises:
        OrderingViolationError: window timestamps are not strictly increasing.
        InsufficientImuError: fewer than two window samples.
    """
    m = len(window)
    if m < 2:
        raise InsufficientImuError(m, 2)
    stamps = np.asarray(window.timestamps, dtype=np.float64)
    require_strictly_increasing(stamps, "IMU window")

    q0 = np.asarray(pose.orientation, dtype=np.float64)
    p0 = np.asarray(pose.position, dtype=np.float64)
    v0 = quat_rotate(q0, pose.linear_velocity)

    # Zero-dt padding leaves the state unchanged; outputs past m-1 are discarded.
    k = m - 1
    k_pad = _padded_length(k)
    dt = np.zeros(k_pad, dtype=np.float64)
    dt[:k] = np.diff(stamps)
    gyro = np.zeros((k_pad, 3), dtype=np.float64)
    gyro[:k] = window.gyro[:-1]
    accel = np.zeros((k_pad, 3), dtype=np.float64)
    accel[:k] = window.accel[:-1]

    qs, vs, ps = _propagate_imu_jax(
        jnp.asarray(dt),
        jnp.asarray(gyro),
        jnp.asarray(accel),
        jnp.asarray(q0),
        jnp.asarray(v0),
        jnp.asarray(p0),
        jnp.asarray(calib.gyro_bias),
        jnp.asarray(calib.accel_bias),
        jnp.asarray(calib.gravity),
    )

    orientations = np.vstack([q0[None, :], np.asarray(qs)[:k]])
    velocities = np.vstack([v0[None, :], np.asarray(vs)[:k]])
    positions = np.vstack([p0[None, :], np.asarray(ps)[:k]])
    return PropagatedTrajectory(
        timestamps=stamps.copy(),
        orientations=orientations,
        positions=positions,
        velocities=velocities,
    )
