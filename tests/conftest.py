"""Shared fixtures and synthetic scene factories for the tabletop tests."""

from __future__ import annotations

import threading
from typing import List, Optional

import numpy as np
import pytest

from tabletop_grasp.clustering import PointCloudProcessor
from tabletop_grasp.scene import GraspPair, make_point_cloud


# ---------------------------------------------------------------------------
# Synthetic scene factories
# ---------------------------------------------------------------------------

def make_table(nx: int = 40, ny: int = 25, spacing: float = 0.01, z: float = 1.0) -> np.ndarray:
    """Flat grid of nx*ny points at depth z (1000 points by default)."""
    xs = (np.arange(nx) - nx / 2) * spacing
    ys = (np.arange(ny) - ny / 2) * spacing
    gx, gy = np.meshgrid(xs, ys, indexing="ij")
    return np.column_stack([gx.ravel(), gy.ravel(), np.full(gx.size, z)])


def make_box(
    center=(0.0, 0.0, 0.92),
    shape=(8, 10, 10),
    spacing: float = 0.005,
) -> np.ndarray:
    """Solid grid of points, internally connected for any tolerance > spacing*sqrt(3)."""
    axes = [(np.arange(n) - (n - 1) / 2) * spacing for n in shape]
    gx, gy, gz = np.meshgrid(*axes, indexing="ij")
    return np.column_stack([gx.ravel(), gy.ravel(), gz.ravel()]) + np.asarray(center)


def make_scene(with_objects: bool = True) -> np.ndarray:
    """1000-point table plus two 800-point boxes 0.4 m apart, above the table."""
    parts = [make_table()]
    if with_objects:
        parts.append(make_box(center=(-0.2, 0.0, 0.92)))
        parts.append(make_box(center=(0.2, 0.0, 0.92)))
    return np.vstack(parts)


def rows(points: np.ndarray) -> List[tuple]:
    """Sorted list of point tuples, for multiset comparisons."""
    return sorted(map(tuple, np.round(np.asarray(points), 9)))


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

class StubGraspComputer:
    """Returns a fixed-width pair around each centroid; fails for chosen sizes or indices."""

    def __init__(self, fail_indices=(), raise_indices=(), delay: float = 0.0):
        self.fail_indices = set(fail_indices)
        self.raise_indices = set(raise_indices)
        self.delay = delay
        self.calls: List[int] = []
        self._lock = threading.Lock()

    def compute_grasp(self, surface, cluster) -> Optional[GraspPair]:
        with self._lock:
            self.calls.append(cluster.index)
        if self.delay:
            threading.Event().wait(self.delay)
        if cluster.index in self.raise_indices:
            raise RuntimeError(f"degenerate object {cluster.index}")
        if cluster.index in self.fail_indices:
            return None
        c = cluster.centroid
        return GraspPair(first_point=c - [0.01, 0, 0], second_point=c + [0.01, 0, 0])


class RecordingSink:
    """Sink that keeps every presented frame."""

    closed = False

    def __init__(self):
        self.frames = []
        self.polls = 0
        self.presented = threading.Event()

    def present(self, surface, objects, grasps, cloud=None):
        self.frames.append((surface, tuple(objects), dict(grasps), cloud))
        self.presented.set()

    def poll(self):
        self.polls += 1

    def close(self):
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def processor() -> PointCloudProcessor:
    return PointCloudProcessor(plane_num_iterations=1000)


@pytest.fixture
def scene_cloud():
    return make_point_cloud(make_scene())


@pytest.fixture
def table_cloud():
    return make_point_cloud(make_table())
