"""
Scene Sink Module

Consumers of finished frames. A sink is owned by a single consumer thread;
nothing in here blocks waiting for user input.
"""

import logging
from typing import Dict, Optional, Sequence

import numpy as np
import open3d as o3d

from .scene import Cluster, GraspPair, SurfaceModel

logger = logging.getLogger(__name__)

PLANE_COLOR = (0.0, 1.0, 0.0)
FIRST_GRASP_COLOR = (0.0, 0.0, 1.0)
SECOND_GRASP_COLOR = (1.0, 0.0, 0.0)
GRASP_SPHERE_RADIUS = 0.01
AXES_SIZE = 0.1


class SceneSink:
    """Receives the surface, objects and grasps of each completed frame."""

    closed = False

    def present(
        self,
        surface: Optional[SurfaceModel],
        objects: Sequence[Cluster],
        grasps: Dict[Cluster, Optional[GraspPair]],
        cloud: Optional[o3d.geometry.PointCloud] = None
    ) -> None:
        raise NotImplementedError

    def poll(self) -> None:
        """Give the sink a chance to service its display between frames."""

    def close(self) -> None:
        self.closed = True


class LoggingSceneSink(SceneSink):
    """Logs a one-line summary of every frame."""

    def __init__(self, level: int = logging.INFO):
        self.level = level
        self.frames = 0

    def present(self, surface, objects, grasps, cloud=None):
        self.frames += 1
        plane = f"{surface.num_inliers} plane points" if surface is not None else "no plane"
        found = sum(1 for g in grasps.values() if g is not None)
        logger.log(self.level, "Scene %d: %s, %d objects, %d grasps", self.frames, plane, len(objects), found)
        for cluster in objects:
            grasp = grasps.get(cluster)
            if grasp is not None:
                logger.log(
                    self.level, "  object %d (%d points): grasp width %.4f at %s",
                    cluster.index, cluster.size, grasp.width, np.round(grasp.midpoint, 4)
                )
            else:
                logger.log(self.level, "  object %d (%d points): no grasp", cluster.index, cluster.size)


class Open3DSceneSink(SceneSink):
    """
    Renders frames in one Open3D window.

    The window is created on the first call, so it belongs to whichever
    thread consumes the sink; only that thread may call present/poll/close.
    """

    def __init__(self, window_name: str = "Cloud viewer", width: int = 1280, height: int = 720):
        self.window_name = window_name
        self.width = width
        self.height = height
        self._vis = None
        self._first_frame = True

    def _ensure_window(self) -> bool:
        if self.closed:
            return False
        if self._vis is None:
            self._vis = o3d.visualization.Visualizer()
            if not self._vis.create_window(window_name=self.window_name, width=self.width, height=self.height):
                logger.warning("Could not open viewer window; rendering disabled")
                self._vis = None
                self.closed = True
                return False
        return True

    def build_geometries(self, surface, objects, grasps, cloud=None):
        """Geometries for one frame, in drawing order."""
        geometries = [o3d.geometry.TriangleMesh.create_coordinate_frame(size=AXES_SIZE)]

        if not objects:
            if cloud is not None and len(cloud.points) > 0:
                geometries.append(cloud)
            if surface is not None:
                plane = surface.to_point_cloud()
                plane.paint_uniform_color(PLANE_COLOR)
                geometries.append(plane)
            return geometries

        if surface is not None:
            geometries.append(surface.to_point_cloud())
        for cluster in objects:
            geometries.append(cluster.to_point_cloud())
            grasp = grasps.get(cluster)
            if grasp is None:
                continue
            for point, color in ((grasp.first_point, FIRST_GRASP_COLOR), (grasp.second_point, SECOND_GRASP_COLOR)):
                sphere = o3d.geometry.TriangleMesh.create_sphere(radius=GRASP_SPHERE_RADIUS)
                sphere.translate(np.asarray(point, dtype=np.float64))
                sphere.paint_uniform_color(color)
                geometries.append(sphere)
        return geometries

    def present(self, surface, objects, grasps, cloud=None):
        if not self._ensure_window():
            return
        self._vis.clear_geometries()
        for geometry in self.build_geometries(surface, objects, grasps, cloud):
            self._vis.add_geometry(geometry, reset_bounding_box=self._first_frame)
        self._first_frame = False
        self.poll()

    def poll(self):
        if self._vis is None:
            return
        if not self._vis.poll_events():
            logger.info("Viewer window closed")
            self.close()
            return
        self._vis.update_renderer()

    def close(self):
        if self._vis is not None:
            self._vis.destroy_window()
            self._vis = None
        self.closed = True
