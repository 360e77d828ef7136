"""
LiDAR deskew node.

Owns the stream buffers, the pairer, the readiness gate and the per-sweep
pipeline, and runs a single consumer thread that polls the gate, pops the
oldest ready pair and hands the resulting clouds to the output sink.

Ingestion (transport callbacks) calls on_imu / on_pose / on_sweep from any
thread; those only touch buffers.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional, Tuple

from lidar_deskew.common.log_utils import ThrottledLogger
from lidar_deskew.common.messages import InertialSample, PoseSample, Sweep
from lidar_deskew.common.param_models import DeskewParams, load_params
from lidar_deskew.backend.pipeline import (
    DeskewPipeline,
    PipelineConfig,
    SweepOutcome,
    SweepPipelineResult,
)
from lidar_deskew.backend.readiness import GateDecision, GateOutcome, ReadinessGate
from lidar_deskew.backend.sinks import CloudSink
from lidar_deskew.frontend.buffers import ImuBuffer, PairingQueue, PoseBuffer, SweepSlot
from lidar_deskew.frontend.pairing import SweepPosePairer

_logger = logging.getLogger(__name__)


class DeskewNode:
    """
    Motion-compensation node: IMU + pose + sweeps in, world clouds out.

    Sweeps are processed strictly in start-time order, one at a time.
    """

    def __init__(self, params: DeskewParams, sink: CloudSink) -> None:
        self.params = params
        self.sink = sink

        # Fatal on malformed extrinsic: fail before any thread starts.
        config = PipelineConfig.from_params(params)

        self.imu_buffer = ImuBuffer(maxlen=params.imu_buffer_max_length)
        self.pose_buffer = PoseBuffer(maxlen=params.pose_buffer_max_length)
        self.sweep_slot = SweepSlot()
        self.pairing_queue = PairingQueue(maxlen=params.pairing_queue_max_length)
        self.pairer = SweepPosePairer(
            self.pose_buffer,
            self.sweep_slot,
            self.pairing_queue,
            initial_skip=params.initial_sweep_skip,
        )
        self._throttle = ThrottledLogger(_logger, params.log_throttle_sec)
        self.gate = ReadinessGate(
            self.pairing_queue,
            self.imu_buffer,
            margin_sec=params.readiness_margin_sec,
            throttle=self._throttle,
        )
        self.pipeline = DeskewPipeline(
            config, workers=params.resolved_workers(), throttle=self._throttle
        )

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.sweeps_processed = 0
        self.sweeps_deskewed = 0
        self.sweeps_skipped = 0
        self.clouds_published = 0

        _logger.info("=" * 60)
        _logger.info("LIDAR DESKEW NODE")
        _logger.info("  readiness margin: %.3f s", params.readiness_margin_sec)
        _logger.info("  min IMU samples: %d", params.min_imu_samples)
        _logger.info("  warm-up sweeps skipped: %d", params.initial_sweep_skip)
        _logger.info("  pairing queue capacity: %d", params.pairing_queue_max_length)
        _logger.info("  deskew workers: %d", self.pipeline.deskewer.workers)
        _logger.info("=" * 60)

    @classmethod
    def from_yaml(cls, path: str, sink: CloudSink, **overrides) -> "DeskewNode":
        return cls(load_params(path, **overrides), sink)

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    def on_imu(self, sample: InertialSample) -> None:
        self.imu_buffer.push(sample)

    def on_pose(self, pose: PoseSample) -> None:
        self.pairer.on_pose(pose)

    def on_sweep(self, sweep: Sweep) -> None:
        self.pairer.on_sweep(sweep)

    @property
    def sweeps_dropped_stale(self) -> int:
        return self.gate.stale_dropped

    @property
    def sweeps_dropped_unpaired(self) -> int:
        return self.sweep_slot.dropped

    @property
    def sweeps_dropped_overflow(self) -> int:
        return self.pairing_queue.dropped

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    def _step(self) -> Tuple[GateDecision, Optional[SweepPipelineResult]]:
        decision = self.gate.check()
        if not decision.ready:
            return decision, None

        item = self.pairing_queue.pop_front(expected=decision.item)
        if item is None:
            return GateDecision(GateOutcome.NOT_READY, "pair consumed concurrently"), None

        t_start = item.pose.timestamp
        t_end = item.sweep.end_timestamp
        self.imu_buffer.prune_before(t_start)
        imu_seq = self.imu_buffer.snapshot_until(t_end)

        result = self.pipeline.process(item, imu_seq)
        self._report(result, t_start, t_end, imu_seq)
        self._publish(result)
        return decision, result

    def _report(self, result: SweepPipelineResult, t_start: float, t_end: float, imu_seq) -> None:
        count = self.sweeps_processed
        self.sweeps_processed += 1
        if result.ok:
            self.sweeps_deskewed += 1
        else:
            self.sweeps_skipped += 1
        imu_span = (imu_seq[0].timestamp, imu_seq[-1].timestamp) if imu_seq else (float("nan"), float("nan"))
        _logger.info(
            "Count %3d. Pose: %.3f. Sweep: %.3f -> %.3f. Imu: %d, %.3f -> %.3f. "
            "Buf: OC: %3d. Imu: %d. Outcome: %s",
            count, t_start, result.stamp, t_end,
            len(imu_seq), imu_span[0], imu_span[1],
            len(self.pairing_queue), len(self.imu_buffer), result.outcome.value,
        )

    def _publish(self, result: SweepPipelineResult) -> None:
        if result.distorted is not None:
            self.sink.publish(result.distorted)
            self.clouds_published += 1
        if result.deskewed is not None:
            self.sink.publish(result.deskewed)
            self.clouds_published += 1

    def spin_once(self) -> Optional[SweepPipelineResult]:
        """One poll of the gate; processes at most one sweep."""
        _, result = self._step()
        return result

    def spin_until_idle(self) -> list[SweepPipelineResult]:
        """Process every currently-ready pair without sleeping."""
        results = []
        while True:
            decision, result = self._step()
            if result is not None:
                results.append(result)
            elif decision.outcome is GateOutcome.NOT_READY:
                return results

    def _run(self) -> None:
        while not self._stop_event.is_set():
            decision, _ = self._step()
            if decision.outcome is GateOutcome.NOT_READY:
                self._stop_event.wait(self.params.poll_interval_sec)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            # Still draining after a timed-out stop(): keep it running.
            self._stop_event.clear()
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="deskew-processing", daemon=True)
        self._thread.start()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Signal the consumer to exit and join it. Returns False if it is still running."""
        self._stop_event.set()
        if self._thread is None:
            return True
        self._thread.join(timeout)
        if self._thread.is_alive():
            # Keep the handle so close() can still wait for the in-flight sweep.
            _logger.warning("Processing thread still running after %.3f s stop timeout", timeout)
            return False
        self._thread = None
        return True

    def close(self) -> None:
        self.stop()
        self.pipeline.close()

    def __enter__(self) -> "DeskewNode":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


__all__ = ["DeskewNode", "SweepOutcome"]
