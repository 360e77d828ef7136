"""
Shared utilities for the deskew frontend and backend.

Subpackages:
- transforms/: SE(3) helpers (NumPy)
- geometry/: quaternion kernels (JAX)
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "constants",
    "errors",
]

_LAZY_ATTRS: dict[str, tuple[str, str | None]] = {
    # Expose these as submodules, but do not eagerly import them at package import time.
    "constants": ("lidar_deskew.common.constants", None),
    "errors": ("lidar_deskew.common.errors", None),
}


def __getattr__(name: str) -> Any:
    target = _LAZY_ATTRS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    module = import_module(module_name)
    return module if attr_name is None else getattr(module, attr_name)


def __dir__() -> list[str]:
    return sorted(set(globals().keys()) | set(_LAZY_ATTRS.keys()))
