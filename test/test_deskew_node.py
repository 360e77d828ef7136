"""
Tests for the deskew node: ingestion, gating, processing and output.
"""

import logging
import threading
import time

import pytest

from lidar_deskew.backend.deskew_node import DeskewNode
from lidar_deskew.backend.pipeline import SweepOutcome
from lidar_deskew.backend.sinks import MemorySink
from lidar_deskew.common.param_models import DeskewParams


@pytest.fixture
def sink():
    return MemorySink()


@pytest.fixture
def node(test_params_dict, sink):
    n = DeskewNode(DeskewParams(**test_params_dict), sink)
    yield n
    n.close()


def _feed_poses(node, make_pose, stamps):
    for t in stamps:
        node.on_pose(make_pose(t))


def _feed_imu(node, samples):
    for s in samples:
        node.on_imu(s)


def test_single_sweep_flow(node, sink, make_pose, make_sweep, make_imu_stream):
    _feed_imu(node, make_imu_stream(0.0, 0.5, gyro=(0.0, 0.0, 0.1)))
    _feed_poses(node, make_pose, (0.0, 0.1, 0.2))
    node.on_sweep(make_sweep(0.05, n=256, duration=0.1))

    result = node.spin_once()

    assert result is not None
    assert result.outcome is SweepOutcome.DESKEWED
    assert result.stamp == 0.05
    assert len(sink.clouds("distorted")) == 1
    assert len(sink.clouds("deskewed")) == 1
    assert node.sweeps_processed == 1
    assert node.sweeps_deskewed == 1
    assert node.clouds_published == 2
    # Nothing left to do.
    assert node.spin_once() is None


def test_waits_for_imu_lookahead(node, sink, make_pose, make_sweep, make_imu_stream):
    _feed_imu(node, make_imu_stream(0.0, 0.2))
    _feed_poses(node, make_pose, (0.0, 0.1))
    node.on_sweep(make_sweep(0.05, duration=0.1))

    # IMU must extend past 0.15 + 0.125.
    assert node.spin_once() is None
    assert sink.clouds() == []

    _feed_imu(node, make_imu_stream(0.21, 0.3))
    assert node.spin_once() is not None


def test_stale_pair_dropped(node, sink, make_pose, make_sweep, make_imu_stream):
    _feed_imu(node, make_imu_stream(1.0, 1.5))
    _feed_poses(node, make_pose, (0.0, 0.1))
    node.on_sweep(make_sweep(0.05))

    assert node.spin_once() is None
    assert node.sweeps_dropped_stale == 1
    assert len(node.pairing_queue) == 0
    assert sink.clouds() == []


def test_warm_up_sweeps_skipped(test_params_dict, sink, make_pose, make_sweep, make_imu_stream):
    params = DeskewParams(**{**test_params_dict, "initial_sweep_skip": 1})
    with DeskewNode(params, sink) as node:
        _feed_imu(node, make_imu_stream(0.0, 0.5))
        _feed_poses(node, make_pose, (0.0, 0.1, 0.2, 0.3))
        node.on_sweep(make_sweep(0.05))
        node.on_sweep(make_sweep(0.15))

        results = node.spin_until_idle()

    assert [r.stamp for r in results] == [0.15]
    assert node.pairer.pairs_skipped == 1


def test_insufficient_density_publishes_distorted_only(test_params_dict, sink, make_pose, make_sweep, make_imu_stream):
    params = DeskewParams(**{**test_params_dict, "min_imu_samples": 100})
    with DeskewNode(params, sink) as node:
        _feed_imu(node, make_imu_stream(0.0, 0.5))
        _feed_poses(node, make_pose, (0.0, 0.1))
        node.on_sweep(make_sweep(0.05))
        result = node.spin_once()

    assert result.outcome is SweepOutcome.INSUFFICIENT_DATA
    assert len(sink.clouds("distorted")) == 1
    assert sink.clouds("deskewed") == []
    assert node.sweeps_skipped == 1


def test_sweeps_processed_in_order(test_params_dict, sink, make_pose, make_sweep, make_imu_stream):
    params = DeskewParams(**{**test_params_dict, "pairing_queue_max_length": 4})
    with DeskewNode(params, sink) as node:
        _feed_imu(node, make_imu_stream(0.0, 1.0))
        _feed_poses(node, make_pose, [0.1 * k for k in range(8)])
        for start in (0.05, 0.15, 0.25, 0.35):
            node.on_sweep(make_sweep(start))
        assert len(node.pairing_queue) == 4

        results = node.spin_until_idle()

    assert [r.stamp for r in results] == [0.05, 0.15, 0.25, 0.35]
    assert all(r.ok for r in results)
    assert [c.stamp for c in sink.clouds("deskewed")] == [0.05, 0.15, 0.25, 0.35]


def test_background_thread(node, sink, make_pose, make_sweep, make_imu_stream):
    node.start()
    try:
        _feed_poses(node, make_pose, (0.0, 0.1, 0.2))
        node.on_sweep(make_sweep(0.05))
        _feed_imu(node, make_imu_stream(0.0, 0.5))

        deadline = time.monotonic() + 30.0
        while len(sink.clouds()) < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        node.stop(timeout=5.0)

    assert len(sink.clouds("deskewed")) == 1
    assert node.sweeps_processed == 1


def test_close_waits_for_inflight_sweep(node, sink, make_pose, make_sweep, make_imu_stream, monkeypatch):
    entered = threading.Event()
    release = threading.Event()
    process = node.pipeline.process

    def held_process(item, imu_samples):
        entered.set()
        release.wait(10.0)
        return process(item, imu_samples)

    monkeypatch.setattr(node.pipeline, "process", held_process)
    _feed_imu(node, make_imu_stream(0.0, 0.5))
    _feed_poses(node, make_pose, (0.0, 0.1, 0.2))
    node.on_sweep(make_sweep(0.05))

    node.start()
    assert entered.wait(10.0)

    assert node.stop(timeout=0.05) is False
    assert node.is_running

    release.set()
    node.close()

    assert not node.is_running
    assert node.sweeps_deskewed == 1
    assert len(sink.clouds("deskewed")) == 1


def test_pairing_queue_bounded_while_imu_absent(node, sink, make_pose, make_sweep, make_imu_stream, caplog):
    caplog.set_level(logging.WARNING, logger="lidar_deskew.frontend.buffers")
    node.on_pose(make_pose(0.0))
    for k in range(200):
        node.on_pose(make_pose(0.1 * (k + 1)))
        node.on_sweep(make_sweep(0.1 * k + 0.05, n=8))
        assert node.spin_once() is None
        assert len(node.pairing_queue) <= 1

    assert node.sweeps_dropped_overflow == 199
    assert "pairing queue full" in caplog.text
    assert sink.clouds() == []

    # Only the newest pair survives to be processed once IMU arrives.
    _feed_imu(node, make_imu_stream(19.8, 20.4))
    results = node.spin_until_idle()
    assert [r.stamp for r in results] == [pytest.approx(0.1 * 199 + 0.05)]


def test_concurrent_producers_with_background_consumer(node, sink, make_pose, make_sweep, make_imu_stream):
    imu = make_imu_stream(0.0, 2.2, rate_hz=200.0)
    poses = [make_pose(0.05 * k) for k in range(45)]
    sweeps = [make_sweep(0.05 + 0.1 * k, n=32) for k in range(19)]
    errors = []

    def produce(callback, items, every, pause):
        try:
            for i, item in enumerate(items):
                callback(item)
                if i % every == 0:
                    time.sleep(pause)
        except Exception as exc:
            errors.append(exc)

    producers = [
        threading.Thread(target=produce, args=(node.on_imu, imu, 10, 0.005)),
        threading.Thread(target=produce, args=(node.on_pose, poses, 1, 0.002)),
        threading.Thread(target=produce, args=(node.on_sweep, sweeps, 1, 0.004)),
    ]
    node.start()
    for t in producers:
        t.start()
    for t in producers:
        t.join(30.0)

    deadline = time.monotonic() + 60.0
    while (len(node.pairing_queue) or node.sweep_slot.peek() is not None) and time.monotonic() < deadline:
        time.sleep(0.01)

    assert node.is_running
    assert node.stop(timeout=30.0)

    assert errors == []
    assert not any(t.is_alive() for t in producers)

    stamps = [c.stamp for c in sink.clouds("deskewed")]
    assert stamps
    assert all(a < b for a, b in zip(stamps, stamps[1:]))
    assert len(stamps) == node.sweeps_deskewed

    accounted = (
        node.sweeps_processed
        + node.sweeps_dropped_stale
        + node.sweeps_dropped_unpaired
        + node.sweeps_dropped_overflow
        + node.pairer.pairs_skipped
        + len(node.pairing_queue)
        + (1 if node.sweep_slot.peek() is not None else 0)
    )
    assert accounted == len(sweeps)


def test_from_yaml(config_path, sink):
    with DeskewNode.from_yaml(config_path, sink, deskew_workers=1) as node:
        assert node.pairer.skip_remaining == 10
        assert node.gate.margin_sec == pytest.approx(0.125)
