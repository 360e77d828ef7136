"""
LiDAR deskew constants.

=============================================================================
CONVENTION QUICK REFERENCE
=============================================================================

QUATERNIONS:
  Stored as (w, x, y, z) float64 arrays, unit norm, Hamilton product.
  scipy.spatial.transform.Rotation expects (x, y, z, w); convert at the edge.

FRAMES:
  L = ranging sensor (LiDAR), B = body / IMU, W = world.
  Extrinsic T_B_L:  p_B = R_B_L @ p_L + t_B_L
  Pose T_W_B(t):    p_W = R_W_B(t) @ p_B + p_W_B(t)

GRAVITY:
  World Z-UP, gravity points DOWN. The accelerometer measures specific force,
  which is +9.82 on z when the body is level and at rest.

TIME:
  Timestamps are float64 seconds. Per-point offsets are int64 nanoseconds
  relative to the sweep start.
=============================================================================
"""

# World gravity (m/s^2).
GRAVITY_W_DEFAULT = (0.0, 0.0, -9.82)

# Fixed IMU bias corrections (rad/s, m/s^2). Zero unless calibrated.
GYRO_BIAS_DEFAULT = (0.0, 0.0, 0.0)
ACCEL_BIAS_DEFAULT = (0.0, 0.0, 0.0)

# Ouster OS1 LiDAR mounted upside-down about z relative to its IMU.
EXTRINSIC_T_B_L_DEFAULT = (
    (-1.0, 0.0, 0.0, -0.006253),
    (0.0, -1.0, 0.0, 0.011775),
    (0.0, 0.0, 1.0, 0.028535),
    (0.0, 0.0, 0.0, 1.0),
)

# Readiness: IMU must extend this far past the sweep end before processing.
READINESS_MARGIN_SEC = 0.125

# Extraction: minimum resampled IMU entries for a usable window.
MIN_IMU_SAMPLES = 8

# Pairing: sweeps discarded at startup while the pose estimator warms up.
INITIAL_SWEEP_SKIP = 10

# Processing loop back-off when the gate reports not-ready.
POLL_INTERVAL_SEC = 0.05

# Minimum period between repeated throttled log lines.
LOG_THROTTLE_SEC = 1.0

# Bounded buffer lengths (~20 s of IMU at 200 Hz, ~10 s of pose at 100 Hz).
IMU_BUFFER_MAX_LENGTH = 4000
POSE_BUFFER_MAX_LENGTH = 1000

# Output frame identifiers.
DISTORTED_FRAME_ID = "world"
DESKEWED_FRAME_ID = "world_shifted"

# Numerical thresholds.
# Below this rotation angle the quaternion exponential uses its first-order form.
SMALL_ANGLE_THRESHOLD = 1e-7
# Tolerance for accepting an extrinsic rotation as orthonormal.
ROTATION_ORTHONORMAL_TOL = 1e-6

# Nanoseconds per second.
NS_PER_SEC = 1.0e9

# Propagation: pad IMU windows to a multiple of this length so the jitted
# scan compiles once per bucket instead of once per window size.
IMU_PROPAGATION_PAD_LEN = 64

# Paired sweeps waiting on IMU lookahead. One keeps at most a single sweep
# queued; a newer pair evicts the older one.
PAIRING_QUEUE_MAX_LENGTH = 1
