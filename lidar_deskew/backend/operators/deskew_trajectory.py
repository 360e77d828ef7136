"""
Per-point deskew against a propagated trajectory.

For each point with acquisition time t_i, bracketed by trajectory samples
T[j] <= t_i <= T[j+1] (points may be unsorted):
  q(t_i) = slerp(q_j, q_{j+1}, s),  p(t_i) = lerp(p_j, p_{j+1}, s),
  s = (t_i - T[j]) / (T[j+1] - T[j])
  p_W = q(t_i) ⊙ (R_B_L p_L + t_B_L) + p(t_i)

Points outside the trajectory span keep their distorted world position
(fallback pose applied to the body-frame point) instead of being dropped.

Points are split into contiguous index ranges, one task per worker; each
task writes only its own slice of a preallocated output array. Trajectory
and extrinsic are shared read-only.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import os
from typing import List, Optional

import numpy as np
from scipy.spatial.transform import Slerp

from lidar_deskew.common.messages import PropagatedTrajectory, Sweep
from lidar_deskew.common.transforms.se3 import RigidTransform, quat_to_rotation


@dataclass
class DeskewResult:
    points: np.ndarray  # (N, 3) world frame
    n_fallback: int     # points outside trajectory coverage


def _deskew_range(
    out: np.ndarray,
    fallback_mask: np.ndarray,
    lo: int,
    hi: int,
    points_body: np.ndarray,
    point_times: np.ndarray,
    trajectory: PropagatedTrajectory,
    orientation_at: Slerp,
    fallback: RigidTransform,
) -> None:
    stamps = trajectory.timestamps
    pb = points_body[lo:hi]
    ti = point_times[lo:hi]

    inside = (ti >= stamps[0]) & (ti <= stamps[-1])
    # Outside points are evaluated at the nearest end and overwritten below.
    tc = np.clip(ti, stamps[0], stamps[-1])
    p_ti = np.column_stack([np.interp(tc, stamps, trajectory.positions[:, k]) for k in range(3)])
    world = orientation_at(tc).apply(pb) + p_ti

    if not np.all(inside):
        outside = ~inside
        world[outside] = fallback.apply(pb[outside])
        fallback_mask[lo:hi] = outside
    out[lo:hi] = world


class PointDeskewer:
    """
    Deskews sweeps on a thread pool sized to the available cores.

    The pool is created once and reused across sweeps; call close() (or use as
    a context manager) to shut it down.
    """

    def __init__(self, workers: Optional[int] = None, min_points_per_task: int = 1024) -> None:
        self.workers = max(1, int(workers or os.cpu_count() or 1))
        self.min_points_per_task = max(1, int(min_points_per_task))
        self._executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="deskew")

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "PointDeskewer":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _ranges(self, n: int) -> List[tuple[int, int]]:
        tasks = max(1, min(self.workers, n // self.min_points_per_task))
        bounds = np.linspace(0, n, tasks + 1).astype(int)
        return [(int(bounds[k]), int(bounds[k + 1])) for k in range(tasks) if bounds[k + 1] > bounds[k]]

    def deskew(
        self,
        sweep: Sweep,
        trajectory: PropagatedTrajectory,
        extrinsic: RigidTransform,
        fallback_pose: RigidTransform,
    ) -> DeskewResult:
        """
        Transform every point of ``sweep`` into the world frame at its own time.

        ``fallback_pose`` is the body -> world pose used for points outside the
        trajectory span (normally the paired pose).
        """
        n = len(sweep)
        out = np.empty((n, 3), dtype=np.float64)
        if n == 0:
            return DeskewResult(points=out, n_fallback=0)
        if len(trajectory) < 2:
            return DeskewResult(points=fallback_pose.compose(extrinsic).apply(sweep.xyz), n_fallback=n)

        points_body = extrinsic.apply(sweep.xyz)
        point_times = sweep.point_times()
        fallback_mask = np.zeros(n, dtype=bool)
        # Read-only across tasks.
        orientation_at = Slerp(trajectory.timestamps, quat_to_rotation(trajectory.orientations))

        futures = [
            self._executor.submit(
                _deskew_range, out, fallback_mask, lo, hi,
                points_body, point_times, trajectory, orientation_at, fallback_pose,
            )
            for lo, hi in self._ranges(n)
        ]
        for fut in futures:
            fut.result()
        return DeskewResult(points=out, n_fallback=int(np.count_nonzero(fallback_mask)))
