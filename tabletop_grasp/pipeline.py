"""
Tabletop Pipeline Module

This module runs one frame through the complete decomposition: ingestion,
passthrough filtering, plane segmentation, Euclidean clustering and the
per-object grasp fan-out.
"""

import logging
import threading
from collections import Counter
from typing import Dict, Iterable, Optional

import numpy as np

from .clustering import PointCloudProcessor
from .config import SceneConfig
from .ingest import Frame, to_point_cloud
from .orchestrator import GraspTargetOrchestrator
from .scene import FrameOutcome, FrameResult

logger = logging.getLogger(__name__)


class TabletopGraspSystem:
    """
    Per-frame scene decomposition and grasp orchestration.

    Every failure degrades the frame instead of aborting it: an empty frame,
    a missing plane or a missing object each end the frame early with what
    was computed so far.
    """

    def __init__(
        self,
        grasp_computer,
        processor: Optional[PointCloudProcessor] = None,
        max_workers: int = 1,
        poll_interval: float = 0.05,
        color_max: Optional[float] = None
    ):
        """
        Initialize the system.

        Args:
            grasp_computer: External grasp collaborator (compute_grasp(surface, cluster))
            processor: Point cloud processor (defaults if None)
            max_workers: Worker threads for per-cluster grasps
            poll_interval: Seconds between cancellation checks
            color_max: Full-scale RGB value of array frames, inferred when None
        """
        self.processor = processor or PointCloudProcessor()
        self.color_max = color_max
        self.orchestrator = GraspTargetOrchestrator(
            grasp_computer, max_workers=max_workers, poll_interval=poll_interval
        )

    @classmethod
    def from_config(cls, config: SceneConfig, grasp_computer) -> "TabletopGraspSystem":
        return cls(
            grasp_computer,
            processor=PointCloudProcessor.from_config(config),
            max_workers=config.grasp.max_workers,
            poll_interval=config.grasp.poll_interval,
            color_max=config.ingest.color_max
        )

    def process_frame(
        self,
        frame: Frame,
        frame_id: int = 0,
        cancel_event: Optional[threading.Event] = None
    ) -> FrameResult:
        """
        Complete frame processing: decomposition + grasp planning.

        Args:
            frame: Incoming point cloud or XYZ(RGB) array
            frame_id: Sequence number reported in the result
            cancel_event: Set by the caller to abandon the grasp stage

        Returns:
            FrameResult in one of the terminal outcomes

        Raises:
            FrameSuperseded: cancel_event was set during the grasp stage
        """
        cloud = to_point_cloud(frame, color_max=self.color_max)
        filtered = self.processor.crop_axis_range(cloud)
        logger.debug("Frame %d: %d points, %d after crop", frame_id, len(cloud.points), len(filtered.points))

        if len(filtered.points) == 0:
            logger.info("Frame %d: no points in range", frame_id)
            return FrameResult(frame_id=frame_id, outcome=FrameOutcome.EMPTY_FRAME, cloud=filtered)

        surface = self.processor.segment_plane(filtered)
        if surface is None:
            logger.info("Frame %d: no support surface found", frame_id)
            return FrameResult(frame_id=frame_id, outcome=FrameOutcome.NO_SURFACE, cloud=filtered)

        _, remainder = self.processor.split_by_plane(filtered, surface)
        logger.debug("Frame %d: plane with %d inliers, %d points remain",
                     frame_id, surface.num_inliers, len(remainder.points))

        clusters = self.processor.extract_clusters(remainder)
        if not clusters:
            logger.info("Frame %d: no object clusters", frame_id)
            return FrameResult(
                frame_id=frame_id,
                outcome=FrameOutcome.NO_CLUSTERS,
                cloud=filtered,
                surface=surface,
                remainder=remainder
            )

        logger.debug("Frame %d: %d clusters %s", frame_id, len(clusters), [c.size for c in clusters])
        grasps = self.orchestrator.run(surface, clusters, cancel_event=cancel_event)

        result = FrameResult(
            frame_id=frame_id,
            outcome=FrameOutcome.GRASPS_COMPUTED,
            cloud=filtered,
            surface=surface,
            remainder=remainder,
            clusters=clusters,
            grasps=grasps
        )
        logger.info("Frame %d: %d objects, %d grasps", frame_id, len(clusters), result.num_grasps)
        return result

    def close(self):
        self.orchestrator.close()


def summarize(results: Iterable[FrameResult]) -> Dict:
    """
    Aggregate statistics over processed frames.

    Args:
        results: FrameResults from process_frame

    Returns:
        Dictionary with analysis statistics
    """
    outcomes = Counter()
    total_clusters = 0
    widths = []
    failures = 0
    frames = 0

    for result in results:
        frames += 1
        outcomes[result.outcome.value] += 1
        total_clusters += len(result.clusters)
        failures += len(result.failed_clusters)
        widths.extend(g.width for g in result.grasps.values() if g is not None)

    return {
        'total_frames': frames,
        'outcomes': {o.value: outcomes.get(o.value, 0) for o in FrameOutcome},
        'total_clusters': total_clusters,
        'grasp_count': len(widths),
        'grasp_failures': failures,
        'grasp_success_percentage': len(widths) / total_clusters * 100 if total_clusters else 0.0,
        'mean_grasp_width': float(np.mean(widths)) if widths else 0.0
    }
