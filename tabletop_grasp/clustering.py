"""
Point Cloud Clustering Module

This module handles region-of-interest filtering, support plane segmentation
and Euclidean clustering of tabletop point clouds.
"""

import logging
from typing import List, Optional, Tuple

import numpy as np
import open3d as o3d

from .config import AXES
from .scene import Cluster, SurfaceModel, cloud_arrays, make_point_cloud

logger = logging.getLogger(__name__)


def _select(point_cloud: o3d.geometry.PointCloud, indices: np.ndarray, invert: bool = False) -> o3d.geometry.PointCloud:
    points, colors = cloud_arrays(point_cloud)
    mask = np.zeros(len(points), dtype=bool)
    mask[np.asarray(indices, dtype=np.intp)] = True
    if invert:
        mask = ~mask
    return make_point_cloud(points[mask], colors[mask] if colors is not None else None)


class PointCloudProcessor:
    """
    Decomposes a tabletop point cloud into a support surface and object clusters.

    This class provides methods for passthrough filtering, RANSAC plane
    segmentation and Euclidean cluster extraction of 3D point cloud data.
    """

    def __init__(
        self,
        crop_axis: str = "z",
        crop_min: float = 0.0,
        crop_max: float = 1.5,
        plane_distance_threshold: float = 0.01,
        plane_num_iterations: int = 50,
        plane_seed: Optional[int] = 0,
        plane_refine: bool = True,
        cluster_tolerance: float = 0.01,
        min_cluster_size: int = 750,
        max_cluster_size: Optional[int] = None
    ):
        """
        Initialize the point cloud processor with configurable parameters.

        Args:
            crop_axis: Axis of the passthrough filter ('x', 'y' or 'z')
            crop_min: Lower passthrough limit, inclusive (m)
            crop_max: Upper passthrough limit, inclusive (m)
            plane_distance_threshold: Distance threshold for RANSAC plane segmentation (m)
            plane_num_iterations: Number of RANSAC iterations
            plane_seed: Seed of the RANSAC sampler (None draws fresh entropy)
            plane_refine: Refit the winning plane to its inliers
            cluster_tolerance: Maximum neighbour distance inside a cluster (m)
            min_cluster_size: Minimum points required to keep a cluster
            max_cluster_size: Maximum points allowed in a cluster (None for no limit)
        """
        if crop_axis not in AXES:
            raise ValueError(f"crop_axis must be one of {AXES}, got {crop_axis!r}")
        if crop_min > crop_max:
            raise ValueError(f"crop_min ({crop_min}) exceeds crop_max ({crop_max})")

        self.crop_axis = crop_axis
        self.crop_min = crop_min
        self.crop_max = crop_max
        self.plane_distance_threshold = plane_distance_threshold
        self.plane_num_iterations = plane_num_iterations
        self.plane_seed = plane_seed
        self.plane_refine = plane_refine
        self.cluster_tolerance = cluster_tolerance
        self.min_cluster_size = min_cluster_size
        self.max_cluster_size = max_cluster_size

    @classmethod
    def from_config(cls, config) -> "PointCloudProcessor":
        """Build a processor from a SceneConfig."""
        return cls(
            crop_axis=config.crop.axis,
            crop_min=config.crop.min_value,
            crop_max=config.crop.max_value,
            plane_distance_threshold=config.plane.distance_threshold,
            plane_num_iterations=config.plane.max_iterations,
            plane_seed=config.plane.seed,
            plane_refine=config.plane.refine_coefficients,
            cluster_tolerance=config.cluster.tolerance,
            min_cluster_size=config.cluster.min_cluster_size,
            max_cluster_size=config.cluster.max_cluster_size
        )

    def crop_axis_range(self, point_cloud: o3d.geometry.PointCloud) -> o3d.geometry.PointCloud:
        """
        Keep the points whose coordinate on the crop axis lies in [crop_min, crop_max].

        Args:
            point_cloud: Input point cloud

        Returns:
            New, possibly empty, point cloud
        """
        points, colors = cloud_arrays(point_cloud)
        if len(points) == 0:
            return o3d.geometry.PointCloud()

        values = points[:, AXES.index(self.crop_axis)]
        mask = (values >= self.crop_min) & (values <= self.crop_max)
        return make_point_cloud(points[mask], colors[mask] if colors is not None else None)

    def segment_plane(
        self,
        point_cloud: o3d.geometry.PointCloud,
        num_iterations: Optional[int] = None
    ) -> Optional[SurfaceModel]:
        """
        Segment the dominant plane (typically the table) using RANSAC.

        Every iteration draws three distinct indices from a generator seeded
        with plane_seed, so a run with a larger budget replays the hypotheses
        of a smaller one before trying new ones.

        Args:
            point_cloud: Input point cloud
            num_iterations: Override of the iteration budget

        Returns:
            SurfaceModel of the best plane, or None when no plane was found
        """
        points, colors = cloud_arrays(point_cloud)
        n = len(points)
        if n < 3:
            return None

        iterations = self.plane_num_iterations if num_iterations is None else num_iterations
        rng = np.random.default_rng(self.plane_seed)

        best_count = 0
        best_model = None
        best_mask = None

        for _ in range(iterations):
            sample = points[rng.choice(n, size=3, replace=False)]
            normal = np.cross(sample[1] - sample[0], sample[2] - sample[0])
            norm = np.linalg.norm(normal)
            if norm < 1e-12:
                # Collinear sample
                continue
            normal = normal / norm
            d = -float(normal @ sample[0])

            mask = np.abs(points @ normal + d) <= self.plane_distance_threshold
            count = int(mask.sum())
            if count > best_count:
                best_count = count
                best_model = np.append(normal, d)
                best_mask = mask

        if best_model is None:
            logger.debug("No plane hypothesis in %d iterations over %d points", iterations, n)
            return None

        inliers = np.flatnonzero(best_mask)
        if self.plane_refine and inliers.size >= 3:
            best_model = self._refine_plane(points[inliers], best_model)

        logger.debug("Plane %s with %d/%d inliers", np.round(best_model, 4), inliers.size, n)
        return SurfaceModel(
            coefficients=best_model,
            inlier_indices=inliers,
            points=points[inliers],
            colors=colors[inliers] if colors is not None else None
        )

    @staticmethod
    def _refine_plane(points: np.ndarray, model: np.ndarray) -> np.ndarray:
        """Least-squares plane through points, oriented like model."""
        centroid = points.mean(axis=0)
        _, _, vt = np.linalg.svd(points - centroid, full_matrices=False)
        normal = vt[-1]
        if normal @ model[:3] < 0:
            normal = -normal
        return np.append(normal, -float(normal @ centroid))

    def split_by_plane(
        self,
        point_cloud: o3d.geometry.PointCloud,
        surface: SurfaceModel
    ) -> Tuple[o3d.geometry.PointCloud, o3d.geometry.PointCloud]:
        """
        Partition a cloud into plane inliers and the remainder.

        Args:
            point_cloud: Cloud the surface was segmented from
            surface: Result of segment_plane on that cloud

        Returns:
            Tuple of (surface cloud, remainder cloud)
        """
        return (
            _select(point_cloud, surface.inlier_indices),
            _select(point_cloud, surface.inlier_indices, invert=True)
        )

    def euclidean_components(self, point_cloud: o3d.geometry.PointCloud) -> List[np.ndarray]:
        """
        Connected components under cluster_tolerance, unfiltered.

        DBSCAN with min_points=1 makes every point a core point, so its labels
        are exactly the Euclidean components of the KD-tree radius graph.
        Labels are renumbered by the first point of each component.

        Args:
            point_cloud: Cloud to split

        Returns:
            List of sorted index arrays, one per component, in seed order
        """
        if len(point_cloud.points) == 0:
            return []

        labels = np.asarray(
            point_cloud.cluster_dbscan(
                eps=self.cluster_tolerance,
                min_points=1,
                print_progress=False
            )
        )
        _, first_index, inverse = np.unique(labels, return_index=True, return_inverse=True)
        # Rank of each label by where its component starts
        rank = np.empty(len(first_index), dtype=np.intp)
        rank[np.argsort(first_index, kind="stable")] = np.arange(len(first_index))
        component_of = rank[inverse.reshape(-1)]

        order = np.argsort(component_of, kind="stable")
        bounds = np.cumsum(np.bincount(component_of, minlength=len(first_index)))[:-1]
        return np.split(order.astype(np.intp), bounds)

    def extract_clusters(self, point_cloud: o3d.geometry.PointCloud) -> Tuple[Cluster, ...]:
        """
        Extract individual object clusters from the off-plane points.

        Args:
            point_cloud: Remainder cloud (after plane removal)

        Returns:
            ClusterSet ordered by size, largest first
        """
        components = self.euclidean_components(point_cloud)
        if not components:
            return ()

        kept = [
            idx for idx in components
            if idx.size >= self.min_cluster_size
            and (self.max_cluster_size is None or idx.size <= self.max_cluster_size)
        ]
        logger.debug(
            "%d components, %d within size limits [%s, %s]",
            len(components), len(kept), self.min_cluster_size, self.max_cluster_size
        )

        # Stable sort keeps seed order among equal sizes
        kept.sort(key=lambda idx: idx.size, reverse=True)

        points, colors = cloud_arrays(point_cloud)
        return tuple(
            Cluster(
                index=i,
                indices=idx,
                points=points[idx],
                colors=colors[idx] if colors is not None else None
            )
            for i, idx in enumerate(kept)
        )
