"""Typed, recoverable data faults raised by the deskew operators."""

from __future__ import annotations


class OrderingViolationError(ValueError):
    """Timestamps that must be strictly increasing are not."""


class InsufficientImuError(ValueError):
    """Too few IMU samples in or around a propagation window."""

    def __init__(self, count: int, required: int) -> None:
        super().__init__(f"insufficient inertial density: {count} samples, need {required}")
        self.count = count
        self.required = required


class PairingInvariantError(ValueError):
    """A pose paired with a sweep is newer than the sweep start."""


class WindowCoverageError(ValueError):
    """IMU samples do not bracket the requested propagation window."""
