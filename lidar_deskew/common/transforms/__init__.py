"""Rigid-body transforms and quaternion helpers (NumPy)."""
