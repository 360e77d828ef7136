"""
Common JAX Initialization Module.

This module initializes JAX once at import time. All other modules should
import JAX from here instead of importing jax directly so the platform and
x64 precision are configured consistently.

Usage:
    from lidar_deskew.common.jax_init import jax, jnp
"""

from __future__ import annotations

import os

# Configure JAX environment variables BEFORE importing JAX.
# Propagation windows are a few dozen samples; CPU is the default platform.
os.environ.setdefault("JAX_PLATFORMS", "cpu")
os.environ.setdefault("XLA_PYTHON_CLIENT_PREALLOCATE", "false")

import jax
import jax.numpy as jnp

# Quaternion integration over many steps needs float64.
jax.config.update("jax_enable_x64", True)

__all__ = ["jax", "jnp"]
