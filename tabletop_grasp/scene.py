"""
Scene Data Module

Frame-scoped data produced by the tabletop pipeline: the support surface,
the object clusters resting on it, and the grasp pairs computed for them.
Arrays held by these objects are read-only once built.
"""

import enum
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np
import open3d as o3d


def _frozen_array(values, dtype=np.float64, width: int = 3) -> np.ndarray:
    arr = np.array(values, dtype=dtype, copy=True)
    if width and arr.size == 0:
        arr = arr.reshape(0, width)
    arr.flags.writeable = False
    return arr


def cloud_arrays(point_cloud: o3d.geometry.PointCloud) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """Return (points, colors) of a cloud; colors is None when the cloud has none."""
    points = np.asarray(point_cloud.points)
    colors = np.asarray(point_cloud.colors) if point_cloud.has_colors() else None
    return points, colors


def make_point_cloud(points: np.ndarray, colors: Optional[np.ndarray] = None) -> o3d.geometry.PointCloud:
    """Build a new Open3D cloud from (N, 3) points and optional (N, 3) colors."""
    pcd = o3d.geometry.PointCloud()
    if len(points) > 0:
        pcd.points = o3d.utility.Vector3dVector(np.asarray(points, dtype=np.float64))
        if colors is not None and len(colors) == len(points):
            pcd.colors = o3d.utility.Vector3dVector(np.asarray(colors, dtype=np.float64))
    return pcd


@dataclass(frozen=True, eq=False)
class SurfaceModel:
    """
    Support plane found in one frame.

    Attributes:
        coefficients: [a, b, c, d] with unit normal (a, b, c)
        inlier_indices: Sorted indices of the inliers in the segmented cloud
        points: (N, 3) inlier coordinates
        colors: (N, 3) inlier colors in [0, 1], or None
    """
    coefficients: np.ndarray
    inlier_indices: np.ndarray
    points: np.ndarray
    colors: Optional[np.ndarray] = None

    def __post_init__(self):
        object.__setattr__(self, "coefficients", _frozen_array(self.coefficients, width=0))
        object.__setattr__(self, "inlier_indices", _frozen_array(self.inlier_indices, dtype=np.intp, width=0))
        object.__setattr__(self, "points", _frozen_array(self.points))
        if self.colors is not None:
            object.__setattr__(self, "colors", _frozen_array(self.colors))

    @property
    def num_inliers(self) -> int:
        return int(self.inlier_indices.shape[0])

    @property
    def normal(self) -> np.ndarray:
        return self.coefficients[:3]

    @property
    def offset(self) -> float:
        return float(self.coefficients[3])

    def distance_to(self, points: np.ndarray) -> np.ndarray:
        """Signed distance of each point to the plane."""
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        return points @ self.normal + self.offset

    def to_point_cloud(self) -> o3d.geometry.PointCloud:
        return make_point_cloud(self.points, self.colors)


@dataclass(frozen=True, eq=False)
class Cluster:
    """
    One object candidate: a connected component of the off-plane points.

    Clusters compare by identity so they can key the per-frame grasp map.
    """
    index: int
    indices: np.ndarray
    points: np.ndarray
    colors: Optional[np.ndarray] = None

    def __post_init__(self):
        object.__setattr__(self, "indices", _frozen_array(self.indices, dtype=np.intp, width=0))
        object.__setattr__(self, "points", _frozen_array(self.points))
        if self.colors is not None:
            object.__setattr__(self, "colors", _frozen_array(self.colors))

    @property
    def size(self) -> int:
        return int(self.points.shape[0])

    @property
    def centroid(self) -> np.ndarray:
        return self.points.mean(axis=0)

    def to_point_cloud(self) -> o3d.geometry.PointCloud:
        return make_point_cloud(self.points, self.colors)

    def __len__(self) -> int:
        return self.size

    def __repr__(self) -> str:
        return f"Cluster(index={self.index}, size={self.size})"


@dataclass(frozen=True, eq=False)
class GraspPair:
    """Two opposing contact points for a parallel gripper."""
    first_point: np.ndarray
    second_point: np.ndarray
    score: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "first_point", _frozen_array(self.first_point, width=0).reshape(3))
        object.__setattr__(self, "second_point", _frozen_array(self.second_point, width=0).reshape(3))

    @property
    def width(self) -> float:
        return float(np.linalg.norm(self.second_point - self.first_point))

    @property
    def midpoint(self) -> np.ndarray:
        return 0.5 * (self.first_point + self.second_point)


class FrameOutcome(enum.Enum):
    """Terminal state reached by a frame."""
    EMPTY_FRAME = "empty_frame"
    NO_SURFACE = "no_surface"
    NO_CLUSTERS = "no_clusters"
    GRASPS_COMPUTED = "grasps_computed"


@dataclass
class FrameResult:
    """
    Everything computed for one frame, handed to the sink as-is.

    Attributes:
        frame_id: Sequence number assigned at ingestion
        outcome: Terminal state of the frame
        cloud: Filtered cloud (the raw view when no surface was found)
        surface: Support plane, or None
        remainder: Points left after removing the plane
        clusters: ClusterSet, largest first
        grasps: Cluster -> GraspPair (None when grasping failed), in cluster order
    """
    frame_id: int
    outcome: FrameOutcome
    cloud: o3d.geometry.PointCloud
    surface: Optional[SurfaceModel] = None
    remainder: Optional[o3d.geometry.PointCloud] = None
    clusters: Tuple[Cluster, ...] = ()
    grasps: Dict[Cluster, Optional[GraspPair]] = field(default_factory=dict)

    @property
    def num_grasps(self) -> int:
        return sum(1 for g in self.grasps.values() if g is not None)

    @property
    def failed_clusters(self) -> Tuple[Cluster, ...]:
        return tuple(c for c, g in self.grasps.items() if g is None)
