"""Tests for the per-cluster grasp fan-out."""

from __future__ import annotations

import threading

import numpy as np
import pytest

from conftest import StubGraspComputer, make_box
from tabletop_grasp.orchestrator import FrameSuperseded, GraspTargetOrchestrator
from tabletop_grasp.scene import Cluster, SurfaceModel


def make_surface() -> SurfaceModel:
    return SurfaceModel(
        coefficients=[0.0, 0.0, 1.0, -1.0],
        inlier_indices=np.arange(4),
        points=np.array([[0, 0, 1.0], [1, 0, 1.0], [0, 1, 1.0], [1, 1, 1.0]]),
    )


def make_clusters(n: int):
    return tuple(
        Cluster(index=i, indices=np.arange(27), points=make_box(center=(0.1 * i, 0, 0.9), shape=(3, 3, 3)))
        for i in range(n)
    )


@pytest.fixture(params=[1, 4], ids=["sequential", "threaded"])
def max_workers(request):
    return request.param


def test_one_call_per_cluster_in_order(max_workers):
    computer = StubGraspComputer()
    orch = GraspTargetOrchestrator(computer, max_workers=max_workers)
    clusters = make_clusters(5)
    try:
        grasps = orch.run(make_surface(), clusters)
    finally:
        orch.close()
    assert list(grasps) == list(clusters)
    assert sorted(computer.calls) == [0, 1, 2, 3, 4]
    for cluster, grasp in grasps.items():
        np.testing.assert_allclose(grasp.midpoint, cluster.centroid)


def test_declined_and_raising_clusters_map_to_none(max_workers):
    computer = StubGraspComputer(fail_indices={1}, raise_indices={3})
    orch = GraspTargetOrchestrator(computer, max_workers=max_workers)
    clusters = make_clusters(5)
    try:
        grasps = orch.run(make_surface(), clusters)
    finally:
        orch.close()
    assert [grasps[c] is None for c in clusters] == [False, True, False, True, False]


def test_non_grasp_return_value_treated_as_failure():
    class Weird:
        def compute_grasp(self, surface, cluster):
            return (1, 2)

    grasps = GraspTargetOrchestrator(Weird()).run(make_surface(), make_clusters(2))
    assert list(grasps.values()) == [None, None]


def test_empty_cluster_set():
    assert GraspTargetOrchestrator(StubGraspComputer()).run(make_surface(), ()) == {}


def test_order_kept_when_completion_order_differs():
    class Reversed(StubGraspComputer):
        def compute_grasp(self, surface, cluster):
            # Earlier clusters finish later
            threading.Event().wait(0.02 * (4 - cluster.index))
            return super().compute_grasp(surface, cluster)

    orch = GraspTargetOrchestrator(Reversed(), max_workers=4)
    clusters = make_clusters(4)
    try:
        grasps = orch.run(make_surface(), clusters)
    finally:
        orch.close()
    assert [c.index for c in grasps] == [0, 1, 2, 3]


def test_cancel_before_start_sequential():
    cancel = threading.Event()
    cancel.set()
    computer = StubGraspComputer()
    with pytest.raises(FrameSuperseded):
        GraspTargetOrchestrator(computer).run(make_surface(), make_clusters(3), cancel_event=cancel)
    assert computer.calls == []


def test_cancel_during_threaded_run():
    cancel = threading.Event()
    computer = StubGraspComputer(delay=0.2)
    orch = GraspTargetOrchestrator(computer, max_workers=2, poll_interval=0.01)
    timer = threading.Timer(0.05, cancel.set)
    timer.start()
    try:
        with pytest.raises(FrameSuperseded):
            orch.run(make_surface(), make_clusters(6), cancel_event=cancel)
    finally:
        timer.cancel()
        orch.close()
    # Queued clusters never started
    assert len(computer.calls) < 6
