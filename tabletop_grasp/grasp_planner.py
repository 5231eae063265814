"""
Grasp Planning Module

Reference grasp collaborator for the tabletop pipeline. It places the two
contacts of a parallel gripper across the narrow side of an object, using
PCA of the object's footprint on the support plane.
"""

import logging
from typing import Dict, Optional, Tuple

import numpy as np

from .scene import Cluster, GraspPair, SurfaceModel

logger = logging.getLogger(__name__)


# Default gripper specifications
DEFAULT_GRIPPER_SPECS = {
    "finger_gripper": {
        "max_width": 0.085,        # m - maximum jaw opening
        "min_width": 0.005,        # m - narrowest object the jaws can hold
        "slice_fraction": 0.2      # share of the major extent used for the contact slice
    }
}


class GraspComputer:
    """
    Interface of the grasp collaborator called once per cluster.

    Implementations return None when they decline the object.
    """

    def compute_grasp(self, surface: SurfaceModel, cluster: Cluster) -> Optional[GraspPair]:
        raise NotImplementedError


class PrincipalAxisGraspPlanner(GraspComputer):
    """
    Plans a two-finger grasp across the minor principal axis of an object.

    The object is projected onto the support plane; the contacts are the
    extreme points along the minor axis among the points in a slice through
    the centroid.
    """

    def __init__(self, gripper_specs: Dict = None, min_points: int = 10):
        """
        Initialize grasp planner with gripper specifications.

        Args:
            gripper_specs: Dictionary of gripper specifications
                          (uses defaults if not provided)
            min_points: Smallest cluster the planner accepts
        """
        self.gripper_specs = gripper_specs or DEFAULT_GRIPPER_SPECS
        self.min_points = min_points

    @staticmethod
    def plane_basis(normal: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Two orthonormal vectors spanning the plane with the given normal.

        Args:
            normal: Unit plane normal

        Returns:
            Tuple of (u, v) in-plane unit vectors
        """
        helper = np.array([1.0, 0.0, 0.0])
        if abs(normal @ helper) > 0.9:
            helper = np.array([0.0, 1.0, 0.0])
        u = np.cross(normal, helper)
        u /= np.linalg.norm(u)
        v = np.cross(normal, u)
        return u, v

    @staticmethod
    def estimate_footprint_axes(coords_2d: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Principal axes of a 2D point set.

        Args:
            coords_2d: Nx2 in-plane coordinates

        Returns:
            Tuple of (eigenvalues largest first, 2x2 matrix of axes as columns)
        """
        centered = coords_2d - coords_2d.mean(axis=0)
        cov = np.cov(centered.T)
        eigvals, eigvecs = np.linalg.eigh(cov)

        # Sort by eigenvalue (largest first)
        order = np.argsort(eigvals)[::-1]
        return eigvals[order], eigvecs[:, order]

    def compute_grasp(self, surface: SurfaceModel, cluster: Cluster) -> Optional[GraspPair]:
        """
        Compute the contact pair for one object.

        Args:
            surface: Support plane of the frame
            cluster: Object points

        Returns:
            GraspPair, or None when the object is too small, degenerate or
            does not fit the gripper
        """
        specs = self.gripper_specs["finger_gripper"]
        points = cluster.points
        if cluster.size < self.min_points:
            logger.debug("Cluster %d: %d points, below %d", cluster.index, cluster.size, self.min_points)
            return None

        normal = surface.normal / np.linalg.norm(surface.normal)
        u, v = self.plane_basis(normal)
        coords = np.column_stack([points @ u, points @ v])

        eigvals, axes = self.estimate_footprint_axes(coords)
        if eigvals[1] <= 1e-12:
            logger.debug("Cluster %d: degenerate footprint", cluster.index)
            return None

        major, minor = axes[:, 0], axes[:, 1]
        centered = coords - coords.mean(axis=0)
        along_major = centered @ major
        along_minor = centered @ minor

        # Contact slice across the centroid
        half_slice = 0.5 * specs["slice_fraction"] * float(np.ptp(along_major))
        in_slice = np.abs(along_major) <= half_slice
        if in_slice.sum() < 2:
            return None

        slice_idx = np.flatnonzero(in_slice)
        first = slice_idx[np.argmin(along_minor[slice_idx])]
        second = slice_idx[np.argmax(along_minor[slice_idx])]

        # Contacts sit at the mid height of the object above the plane
        heights = np.abs(surface.distance_to(points))
        mid_height = 0.5 * (heights.min() + heights.max())
        side = np.sign(np.median(surface.distance_to(points))) or 1.0
        first_point = self._at_height(points[first], surface, normal, side * mid_height)
        second_point = self._at_height(points[second], surface, normal, side * mid_height)

        width = float(np.linalg.norm(second_point - first_point))
        if not specs["min_width"] <= width <= specs["max_width"]:
            logger.debug(
                "Cluster %d: grasp width %.4f outside [%.4f, %.4f]",
                cluster.index, width, specs["min_width"], specs["max_width"]
            )
            return None

        score = float(np.clip(in_slice.sum() / cluster.size, 0.0, 1.0))
        return GraspPair(first_point=first_point, second_point=second_point, score=score)

    @staticmethod
    def _at_height(point: np.ndarray, surface: SurfaceModel, normal: np.ndarray, height: float) -> np.ndarray:
        """Move point along the normal so that its signed plane distance equals height."""
        return point + (height - float(surface.distance_to(point)[0])) * normal
