"""
Cloud Ingestion Module

Turns an incoming frame into a dense working point cloud.
"""

import logging
from pathlib import Path
from typing import Optional, Union

import numpy as np
import open3d as o3d

from .scene import make_point_cloud

logger = logging.getLogger(__name__)

Frame = Union[o3d.geometry.PointCloud, np.ndarray]


def to_point_cloud(frame: Frame, color_max: Optional[float] = None) -> o3d.geometry.PointCloud:
    """
    Convert a frame into a new cloud with every non-finite point removed.

    Args:
        frame: Open3D point cloud, (N, 3) XYZ array or (N, 6) XYZRGB array.
               RGB may be in [0, 1] or [0, 255].
        color_max: Full-scale RGB value of an array frame (1.0 or 255.0).
                   When None, integer arrays are read as 0-255 and float
                   arrays as 0-255 only if some channel exceeds 1.
                   Open3D clouds always carry colours in [0, 1].

    Returns:
        Dense point cloud (the input is never modified)
    """
    if color_max is not None and color_max <= 0:
        raise ValueError(f"color_max must be positive, got {color_max}")

    if isinstance(frame, o3d.geometry.PointCloud):
        points = np.asarray(frame.points)
        colors = np.asarray(frame.colors) if frame.has_colors() else None
        color_max = 1.0
    else:
        raw = np.asarray(frame)
        if color_max is None and np.issubdtype(raw.dtype, np.integer):
            color_max = 255.0
        data = raw.astype(np.float64)
        if data.size == 0:
            return o3d.geometry.PointCloud()
        if data.ndim != 2 or data.shape[1] not in (3, 6):
            raise ValueError(f"Expected an (N, 3) or (N, 6) array, got shape {data.shape}")
        points = data[:, :3]
        colors = data[:, 3:6] if data.shape[1] == 6 else None

    if len(points) == 0:
        return o3d.geometry.PointCloud()

    finite = np.isfinite(points).all(axis=1)
    num_dropped = int(len(points) - finite.sum())
    if num_dropped:
        logger.debug("Dropped %d non-finite points out of %d", num_dropped, len(points))

    if colors is not None:
        colors = np.nan_to_num(colors[finite], nan=0.0, posinf=0.0, neginf=0.0)
        if color_max is None:
            color_max = 255.0 if colors.size and colors.max() > 1.0 else 1.0
        colors = colors / color_max
        colors = np.clip(colors, 0.0, 1.0)

    return make_point_cloud(points[finite], colors)


def read_point_cloud(path: Union[str, Path]) -> o3d.geometry.PointCloud:
    """Read a PCD/PLY/XYZ file and make it dense."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Point cloud file not found: {path}")
    pcd = o3d.io.read_point_cloud(str(path), remove_nan_points=False, remove_infinite_points=False)
    logger.debug("Read %d points from %s", len(pcd.points), path)
    return to_point_cloud(pcd)
