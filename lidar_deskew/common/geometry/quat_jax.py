"""
JAX unit-quaternion operators for strap-down propagation.

All operations are compatible with JAX transformations (jit, vmap, scan).
Quaternions are (w, x, y, z), Hamilton product.

THIS MODULE REQUIRES JAX. There is no NumPy fallback; the NumPy
equivalents used outside jitted code live in common/transforms/se3.py.

Reference: Sola (2017), Quaternion kinematics for the error-state KF.
"""

from __future__ import annotations

from jax import jit

from lidar_deskew.common import constants
from lidar_deskew.common.jax_init import jnp


SMALL_ANGLE_THRESHOLD = constants.SMALL_ANGLE_THRESHOLD


@jit
def quat_multiply(a: jnp.ndarray, b: jnp.ndarray) -> jnp.ndarray:
    """Hamilton product a ⊗ b."""
    aw, ax, ay, az = a[0], a[1], a[2], a[3]
    bw, bx, by, bz = b[0], b[1], b[2], b[3]
    return jnp.array([
        aw * bw - ax * bx - ay * by - az * bz,
        aw * bx + ax * bw + ay * bz - az * by,
        aw * by - ax * bz + ay * bw + az * bx,
        aw * bz + ax * by - ay * bx + az * bw,
    ])


@jit
def quat_normalize(q: jnp.ndarray) -> jnp.ndarray:
    return q / jnp.linalg.norm(q)


@jit
def quat_exp(theta: jnp.ndarray) -> jnp.ndarray:
    """
    Quaternion increment Δq for rotation vector θ.

        Δq = [cos(|θ|/2), sin(|θ|/2) θ/|θ|]

    For |θ| below SMALL_ANGLE_THRESHOLD uses the first-order form
    Δq ≈ [1, θ/2] (then normalized), which is exact to machine precision there.
    """
    theta = jnp.asarray(theta, dtype=jnp.float64).reshape(-1)
    angle = jnp.sqrt(jnp.dot(theta, theta))
    small = angle < SMALL_ANGLE_THRESHOLD
    safe_angle = jnp.where(small, 1.0, angle)
    half = 0.5 * safe_angle
    w = jnp.where(small, 1.0, jnp.cos(half))
    xyz_coeff = jnp.where(small, 0.5, jnp.sin(half) / safe_angle)
    return quat_normalize(jnp.concatenate([jnp.reshape(w, (1,)), xyz_coeff * theta]))


@jit
def quat_to_rotmat(q: jnp.ndarray) -> jnp.ndarray:
    q = quat_normalize(q)
    w, x, y, z = q[0], q[1], q[2], q[3]
    return jnp.array([
        [1.0 - 2.0 * (y * y + z * z), 2.0 * (x * y - w * z), 2.0 * (x * z + w * y)],
        [2.0 * (x * y + w * z), 1.0 - 2.0 * (x * x + z * z), 2.0 * (y * z - w * x)],
        [2.0 * (x * z - w * y), 2.0 * (y * z + w * x), 1.0 - 2.0 * (x * x + y * y)],
    ])


@jit
def quat_rotate(q: jnp.ndarray, v: jnp.ndarray) -> jnp.ndarray:
    """q ⊙ v."""
    return quat_to_rotmat(q) @ v
