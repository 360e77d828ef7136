"""
SE(3) and unit-quaternion geometry in NumPy.

Quaternions are (w, x, y, z), Hamilton convention, and every function here
accepts either a single quaternion (4,) or a batch (N, 4). Nothing in this
module loops in Python over points. scipy Rotation uses (x, y, z, w); the
reordering lives only in quat_to_rotation / rotation_to_quat.

Numerical Policy:
    ROTATION_EPSILON = 1e-10: below this angle Rodrigues falls back to its
    first-order Taylor form.
"""

from __future__ import annotations

from dataclasses import dataclass
import math

import numpy as np
from scipy.spatial.transform import Rotation

from lidar_deskew.common import constants


ROTATION_EPSILON: float = 1e-10


# =============================================================================
# Rotation vector <-> Rotation matrix
# =============================================================================


def skew(v: np.ndarray) -> np.ndarray:
    """Skew-symmetric matrix from 3-vector (hat operator)."""
    v = np.asarray(v, dtype=float).reshape(-1)
    return np.array([
        [0.0, -v[2], v[1]],
        [v[2], 0.0, -v[0]],
        [-v[1], v[0], 0.0]
    ], dtype=float)


def rotvec_to_rotmat(rotvec: np.ndarray) -> np.ndarray:
    """
    Exponential map so(3) -> SO(3) via Rodrigues' formula.

    R = I + sin(θ)[ω]_× + (1-cos(θ))[ω]_×²
    """
    rotvec = np.asarray(rotvec, dtype=float).reshape(-1)
    theta = np.linalg.norm(rotvec)
    if theta < ROTATION_EPSILON:
        return np.eye(3, dtype=float) + skew(rotvec)
    K = skew(rotvec / theta)
    return np.eye(3, dtype=float) + math.sin(theta) * K + (1.0 - math.cos(theta)) * (K @ K)


# =============================================================================
# Quaternion algebra (w, x, y, z)
# =============================================================================


def quat_normalize(q: np.ndarray) -> np.ndarray:
    q = np.asarray(q, dtype=float)
    return q / np.linalg.norm(q, axis=-1, keepdims=True)


def quat_multiply(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Hamilton product a ⊗ b (broadcasts over leading dimensions)."""
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    aw, ax, ay, az = a[..., 0], a[..., 1], a[..., 2], a[..., 3]
    bw, bx, by, bz = b[..., 0], b[..., 1], b[..., 2], b[..., 3]
    return np.stack([
        aw * bw - ax * bx - ay * by - az * bz,
        aw * bx + ax * bw + ay * bz - az * by,
        aw * by - ax * bz + ay * bw + az * bx,
        aw * bz + ax * by - ay * bx + az * bw,
    ], axis=-1)


def quat_to_rotmat(q: np.ndarray) -> np.ndarray:
    """Rotation matrix from quaternion: (4,) -> (3,3) or (N,4) -> (N,3,3)."""
    q = quat_normalize(q)
    w, x, y, z = q[..., 0], q[..., 1], q[..., 2], q[..., 3]
    xx, yy, zz = x * x, y * y, z * z
    xy, xz, yz = x * y, x * z, y * z
    wx, wy, wz = w * x, w * y, w * z
    R = np.stack([
        np.stack([1.0 - 2.0 * (yy + zz), 2.0 * (xy - wz), 2.0 * (xz + wy)], axis=-1),
        np.stack([2.0 * (xy + wz), 1.0 - 2.0 * (xx + zz), 2.0 * (yz - wx)], axis=-1),
        np.stack([2.0 * (xz - wy), 2.0 * (yz + wx), 1.0 - 2.0 * (xx + yy)], axis=-1),
    ], axis=-2)
    return R


def rotmat_to_quat(R: np.ndarray) -> np.ndarray:
    """Quaternion (w, x, y, z) from a rotation matrix, w >= 0."""
    xyzw = Rotation.from_matrix(np.asarray(R, dtype=float)).as_quat()
    q = np.array([xyzw[3], xyzw[0], xyzw[1], xyzw[2]], dtype=float)
    return -q if q[0] < 0.0 else q


def quat_rotate(q: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Rotate vector(s) v by quaternion(s) q: q ⊙ v."""
    R = quat_to_rotmat(q)
    v = np.asarray(v, dtype=float)
    return np.einsum("...ij,...j->...i", R, v)


def quat_to_rotation(q: np.ndarray) -> Rotation:
    """scipy Rotation from (w, x, y, z) quaternion(s)."""
    q = np.asarray(q, dtype=float)
    return Rotation.from_quat(q[..., [1, 2, 3, 0]])


def rotation_to_quat(rot: Rotation) -> np.ndarray:
    """(w, x, y, z) quaternion(s) from a scipy Rotation."""
    return np.asarray(rot.as_quat())[..., [3, 0, 1, 2]]


def quat_to_ypr_deg(q: np.ndarray) -> np.ndarray:
    """Yaw, pitch, roll (degrees, ZYX intrinsic) for reporting."""
    return quat_to_rotation(np.asarray(q, dtype=float).reshape(4)).as_euler("ZYX", degrees=True)


# =============================================================================
# Rigid transforms
# =============================================================================


@dataclass(frozen=True, eq=False)
class RigidTransform:
    """
    Rigid transform p_out = R @ p_in + t.

    Immutable; used for the process-wide LiDAR -> body extrinsic and for the
    per-sweep body -> world pose.
    """

    rotation: np.ndarray     # (3, 3)
    translation: np.ndarray  # (3,)

    @classmethod
    def identity(cls) -> "RigidTransform":
        return cls(np.eye(3, dtype=float), np.zeros(3, dtype=float))

    @classmethod
    def from_matrix(cls, T, tol: float = constants.ROTATION_ORTHONORMAL_TOL) -> "RigidTransform":
        """
        Validate and build from a 4x4 homogeneous matrix.

        Raises ValueError if the matrix is not a proper rigid transform.
        """
        M = np.asarray(T, dtype=float)
        if M.shape != (4, 4):
            raise ValueError(f"Expected 4x4 rigid transform, got shape {M.shape}")
        if not np.all(np.isfinite(M)):
            raise ValueError("Rigid transform contains non-finite values")
        if not np.allclose(M[3], [0.0, 0.0, 0.0, 1.0], atol=tol):
            raise ValueError(f"Rigid transform bottom row must be [0, 0, 0, 1], got {M[3].tolist()}")
        R = M[:3, :3]
        if not np.allclose(R.T @ R, np.eye(3), atol=tol):
            raise ValueError("Rigid transform rotation is not orthonormal")
        if np.linalg.det(R) <= 0.0:
            raise ValueError("Rigid transform rotation has negative determinant (reflection)")
        return cls(R.copy(), M[:3, 3].copy())

    @classmethod
    def from_quat(cls, q_wxyz: np.ndarray, translation: np.ndarray) -> "RigidTransform":
        return cls(quat_to_rotmat(q_wxyz), np.asarray(translation, dtype=float).reshape(3))

    def as_matrix(self) -> np.ndarray:
        T = np.eye(4, dtype=float)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def apply(self, points: np.ndarray) -> np.ndarray:
        """Transform points (N, 3) or (3,)."""
        points = np.asarray(points, dtype=float)
        return points @ self.rotation.T + self.translation

    def inverse(self) -> "RigidTransform":
        R_inv = self.rotation.T
        return RigidTransform(R_inv, -R_inv @ self.translation)

    def compose(self, other: "RigidTransform") -> "RigidTransform":
        """self ∘ other: apply ``other`` first."""
        return RigidTransform(
            self.rotation @ other.rotation,
            self.rotation @ other.translation + self.translation,
        )
