"""
Deskew backend.

Structure:
- operators/: IMU window extraction, propagation, per-point deskew
- readiness.py: gate between the pairing queue and processing
- pipeline.py: per-sweep pipeline (distort, propagate, deskew)
- deskew_node.py: buffers + gate + pipeline + consumer thread
- sinks.py: output collaborators (in-memory, rerun)
"""

# Lazy imports so the operators (and JAX) load only when used
__all__ = [
    "DeskewPipeline",
    "PipelineConfig",
    "DeskewNode",
]


def __getattr__(name):
    if name == "DeskewPipeline":
        from lidar_deskew.backend.pipeline import DeskewPipeline
        return DeskewPipeline
    elif name == "PipelineConfig":
        from lidar_deskew.backend.pipeline import PipelineConfig
        return PipelineConfig
    elif name == "DeskewNode":
        from lidar_deskew.backend.deskew_node import DeskewNode
        return DeskewNode
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
