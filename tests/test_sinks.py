"""Tests for scene sinks (no window is opened)."""

from __future__ import annotations

import logging

import numpy as np
import open3d as o3d

from conftest import make_box
from tabletop_grasp.scene import Cluster, GraspPair, SurfaceModel, make_point_cloud
from tabletop_grasp.sinks import PLANE_COLOR, LoggingSceneSink, Open3DSceneSink


def make_surface():
    pts = np.array([[0, 0, 1.0], [0.1, 0, 1.0], [0, 0.1, 1.0]])
    return SurfaceModel(coefficients=[0, 0, 1.0, -1.0], inlier_indices=np.arange(3), points=pts)


def make_objects():
    a = Cluster(index=0, indices=np.arange(27), points=make_box(center=(-0.1, 0, 0.9), shape=(3, 3, 3)))
    b = Cluster(index=1, indices=np.arange(27), points=make_box(center=(0.1, 0, 0.9), shape=(3, 3, 3)))
    grasps = {a: GraspPair(first_point=[-0.11, 0, 0.9], second_point=[-0.09, 0, 0.9]), b: None}
    return (a, b), grasps


def test_logging_sink_reports_each_object(caplog):
    objects, grasps = make_objects()
    sink = LoggingSceneSink()
    with caplog.at_level(logging.INFO, logger="tabletop_grasp.sinks"):
        sink.present(make_surface(), objects, grasps)
    text = caplog.text
    assert "3 plane points, 2 objects, 1 grasps" in text
    assert "object 1 (27 points): no grasp" in text
    assert sink.frames == 1


def test_logging_sink_without_surface(caplog):
    with caplog.at_level(logging.INFO, logger="tabletop_grasp.sinks"):
        LoggingSceneSink().present(None, (), {})
    assert "no plane, 0 objects" in caplog.text


def test_geometries_with_objects():
    objects, grasps = make_objects()
    geometries = Open3DSceneSink().build_geometries(make_surface(), objects, grasps)
    clouds = [g for g in geometries if isinstance(g, o3d.geometry.PointCloud)]
    meshes = [g for g in geometries if isinstance(g, o3d.geometry.TriangleMesh)]
    # plane + two objects
    assert len(clouds) == 3
    # coordinate frame + two grasp spheres for the one grasped object
    assert len(meshes) == 3
    sphere_centers = sorted(float(m.get_center()[0]) for m in meshes[1:])
    np.testing.assert_allclose(sphere_centers, [-0.11, -0.09], atol=1e-6)


def test_geometries_without_objects_paint_plane():
    raw = make_point_cloud(np.array([[0, 0, 0.5], [0.1, 0, 0.5]]))
    geometries = Open3DSceneSink().build_geometries(make_surface(), (), {}, cloud=raw)
    clouds = [g for g in geometries if isinstance(g, o3d.geometry.PointCloud)]
    assert clouds[0] is raw
    np.testing.assert_allclose(np.asarray(clouds[1].colors), np.tile([0.0, 1.0, 0.0], (3, 1)))
    assert PLANE_COLOR == (0.0, 1.0, 0.0)


def test_geometries_raw_cloud_only():
    raw = make_point_cloud(np.array([[0, 0, 0.5]]))
    geometries = Open3DSceneSink().build_geometries(None, (), {}, cloud=raw)
    assert geometries[-1] is raw
    assert len(geometries) == 2


def test_closed_sink_ignores_frames():
    sink = Open3DSceneSink()
    sink.close()
    sink.present(None, (), {})
    sink.poll()
    assert sink.closed


def test_plane_keeps_own_colors_with_objects():
    objects, grasps = make_objects()
    surface = SurfaceModel(
        coefficients=[0, 0, 1.0, -1.0],
        inlier_indices=np.arange(3),
        points=np.array([[0, 0, 1.0], [0.1, 0, 1.0], [0, 0.1, 1.0]]),
        colors=np.tile([0.5, 0.4, 0.3], (3, 1)),
    )
    geometries = Open3DSceneSink().build_geometries(surface, objects, grasps)
    np.testing.assert_allclose(np.asarray(geometries[1].colors), np.tile([0.5, 0.4, 0.3], (3, 1)))
