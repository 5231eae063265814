"""
Tabletop Grasping

Decomposes a depth-sensor point cloud into a support surface and the
objects resting on it, and dispatches grasp planning per object.
"""

from .clustering import PointCloudProcessor
from .config import IngestConfig, SceneConfig, load_config, save_config
from .grasp_planner import GraspComputer, PrincipalAxisGraspPlanner, DEFAULT_GRIPPER_SPECS
from .ingest import read_point_cloud, to_point_cloud
from .orchestrator import FrameSuperseded, GraspTargetOrchestrator
from .pipeline import TabletopGraspSystem, summarize
from .runtime import FrameBus, LatestSlot, SceneRuntime
from .scene import Cluster, FrameOutcome, FrameResult, GraspPair, SurfaceModel
from .sinks import LoggingSceneSink, Open3DSceneSink, SceneSink

__version__ = "1.0.0"

__all__ = [
    "PointCloudProcessor",
    "IngestConfig",
    "SceneConfig",
    "load_config",
    "save_config",
    "GraspComputer",
    "PrincipalAxisGraspPlanner",
    "DEFAULT_GRIPPER_SPECS",
    "read_point_cloud",
    "to_point_cloud",
    "FrameSuperseded",
    "GraspTargetOrchestrator",
    "TabletopGraspSystem",
    "summarize",
    "FrameBus",
    "LatestSlot",
    "SceneRuntime",
    "Cluster",
    "FrameOutcome",
    "FrameResult",
    "GraspPair",
    "SurfaceModel",
    "SceneSink",
    "LoggingSceneSink",
    "Open3DSceneSink",
]
