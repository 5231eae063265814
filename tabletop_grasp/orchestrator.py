"""
Grasp Orchestration Module

Fans the clusters of one frame out to the grasp collaborator and joins the
results back in cluster order.
"""

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Dict, Optional, Sequence

from .scene import Cluster, GraspPair, SurfaceModel

logger = logging.getLogger(__name__)


class FrameSuperseded(RuntimeError):
    """Raised when a frame is cancelled because a newer one arrived."""


class GraspTargetOrchestrator:
    """
    Invokes the grasp collaborator once per cluster.

    A cluster whose grasp raises or is declined maps to None; the remaining
    clusters are unaffected.
    """

    def __init__(self, grasp_computer, max_workers: int = 1, poll_interval: float = 0.05):
        """
        Args:
            grasp_computer: Object with compute_grasp(surface, cluster) -> Optional[GraspPair]
            max_workers: Worker threads for the fan-out; 1 runs clusters in the caller thread
            poll_interval: Seconds between cancellation checks while waiting on workers
        """
        self.grasp_computer = grasp_computer
        self.max_workers = max(1, int(max_workers))
        self.poll_interval = poll_interval
        self._executor = None
        self._lock = threading.Lock()

    def _get_executor(self) -> ThreadPoolExecutor:
        """Create the worker pool on first use."""
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="grasp"
                )
            return self._executor

    def _grasp_one(self, surface: SurfaceModel, cluster: Cluster) -> Optional[GraspPair]:
        """
        Call the collaborator for one cluster.

        Args:
            surface: Support surface of the frame
            cluster: Object to grasp

        Returns:
            The GraspPair, or None when declined or of the wrong type
        """
        grasp = self.grasp_computer.compute_grasp(surface, cluster)
        if grasp is not None and not isinstance(grasp, GraspPair):
            logger.warning(
                "Cluster %d: grasp computer returned %s instead of a GraspPair",
                cluster.index, type(grasp).__name__
            )
            return None
        return grasp

    def _outcome(self, cluster: Cluster, future: Future) -> Optional[GraspPair]:
        """Result of a finished future, with a raised exception mapped to None."""
        exc = future.exception()
        if exc is not None:
            logger.warning("Cluster %d: grasp computation failed: %s", cluster.index, exc)
            return None
        return future.result()

    def run(
        self,
        surface: SurfaceModel,
        clusters: Sequence[Cluster],
        cancel_event: Optional[threading.Event] = None
    ) -> Dict[Cluster, Optional[GraspPair]]:
        """
        Compute a grasp for every cluster.

        Args:
            surface: Support plane of the frame
            clusters: ClusterSet of the frame
            cancel_event: Set by the caller when the frame is superseded

        Returns:
            Dictionary cluster -> GraspPair or None, in cluster order

        Raises:
            FrameSuperseded: cancel_event was set before all clusters finished
        """
        if self.max_workers == 1 or len(clusters) <= 1:
            grasps = self._run_sequential(surface, clusters, cancel_event)
        else:
            grasps = self._run_parallel(surface, clusters, cancel_event)

        for cluster, grasp in grasps.items():
            if grasp is None:
                logger.info("Cluster %d (%d points): no grasp", cluster.index, cluster.size)
        return grasps

    def _run_sequential(
        self,
        surface: SurfaceModel,
        clusters: Sequence[Cluster],
        cancel_event: Optional[threading.Event]
    ) -> Dict[Cluster, Optional[GraspPair]]:
        """
        Call the collaborator for each cluster in turn on the calling thread.

        Args:
            surface: Support surface of the frame
            clusters: ClusterSet of the frame
            cancel_event: Checked before each cluster

        Returns:
            Dictionary mapping each cluster to its grasp or None

        Raises:
            FrameSuperseded: If cancel_event is set between clusters
        """
        grasps = {}
        for cluster in clusters:
            if cancel_event is not None and cancel_event.is_set():
                raise FrameSuperseded(f"cancelled after {len(grasps)}/{len(clusters)} clusters")
            try:
                grasps[cluster] = self._grasp_one(surface, cluster)
            except Exception as exc:
                logger.warning("Cluster %d: grasp computation failed: %s", cluster.index, exc)
                grasps[cluster] = None
        return grasps

    def _run_parallel(
        self,
        surface: SurfaceModel,
        clusters: Sequence[Cluster],
        cancel_event: Optional[threading.Event]
    ) -> Dict[Cluster, Optional[GraspPair]]:
        """
        Submit every cluster to the worker pool and join in cluster order.

        Args:
            surface: Support surface of the frame
            clusters: ClusterSet of the frame
            cancel_event: Polled every poll_interval while futures are pending

        Returns:
            Dictionary mapping each cluster to its grasp or None

        Raises:
            FrameSuperseded: If cancel_event is set before all futures finish
        """
        executor = self._get_executor()
        futures = [executor.submit(self._grasp_one, surface, cluster) for cluster in clusters]

        pending = set(futures)
        while pending:
            if cancel_event is not None and cancel_event.is_set():
                for future in pending:
                    future.cancel()
                raise FrameSuperseded(
                    f"cancelled with {len(pending)}/{len(clusters)} clusters outstanding"
                )
            _, pending = wait(pending, timeout=self.poll_interval, return_when=FIRST_COMPLETED)

        return {cluster: self._outcome(cluster, future) for cluster, future in zip(clusters, futures)}

    def close(self) -> None:
        """Shut down the worker pool, dropping queued work."""
        with self._lock:
            if self._executor is not None:
                self._executor.shutdown(wait=False, cancel_futures=True)
                self._executor = None
