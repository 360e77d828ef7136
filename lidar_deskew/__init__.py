"""
LiDAR motion compensation (deskew) from IMU + pose streams.

Subpackages:
- common/: constants, parameters, message records, transforms
- frontend/: stream buffers and sweep/pose pairing
- backend/: readiness gate, deskew operators, pipeline, node, sinks
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "DeskewNode",
    "DeskewParams",
    "load_params",
    "MemorySink",
    "RerunCloudSink",
]

_LAZY_ATTRS: dict[str, tuple[str, str]] = {
    "DeskewNode": ("lidar_deskew.backend.deskew_node", "DeskewNode"),
    "DeskewParams": ("lidar_deskew.common.param_models", "DeskewParams"),
    "load_params": ("lidar_deskew.common.param_models", "load_params"),
    "MemorySink": ("lidar_deskew.backend.sinks", "MemorySink"),
    "RerunCloudSink": ("lidar_deskew.backend.sinks", "RerunCloudSink"),
}


def __getattr__(name: str) -> Any:
    target = _LAZY_ATTRS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    return getattr(import_module(module_name), attr_name)


def __dir__() -> list[str]:
    return sorted(set(globals().keys()) | set(_LAZY_ATTRS.keys()))
