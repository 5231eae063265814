"""
Command line entry point: replay point cloud files through the pipeline.
"""

import argparse
import logging
import sys
import time
from typing import List, Optional

import yaml

from .config import SceneConfig, load_config
from .grasp_planner import PrincipalAxisGraspPlanner
from .ingest import read_point_cloud
from .pipeline import TabletopGraspSystem, summarize
from .runtime import FrameBus, SceneRuntime
from .sinks import LoggingSceneSink, Open3DSceneSink

logger = logging.getLogger("tabletop_grasp")

HISTORY_SIZE = 1000


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tabletop-grasp",
        description="Segment tabletop point clouds into a support plane and objects, and plan grasps."
    )
    parser.add_argument("clouds", nargs="+", help="Point cloud files (PCD, PLY, XYZ) replayed as frames")
    parser.add_argument("--config", default=None, help="YAML configuration file")
    parser.add_argument("--topic", default=None, help="Frame channel name (overrides the config)")
    parser.add_argument("--rate", type=float, default=1.0, help="Frames per second to publish")
    parser.add_argument("--loop", action="store_true", help="Replay the files until interrupted")
    parser.add_argument("--no-viewer", action="store_true", help="Log results instead of opening a window")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        config = load_config(args.config) if args.config else SceneConfig()
        if args.topic:
            config.topic = args.topic
        config.validate()
    except (FileNotFoundError, ValueError, yaml.YAMLError) as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2
    if args.rate <= 0:
        logger.error("--rate must be positive")
        return 2

    system = TabletopGraspSystem.from_config(config, PrincipalAxisGraspPlanner())
    sink = LoggingSceneSink() if args.no_viewer else Open3DSceneSink()
    bus = FrameBus()
    runtime = SceneRuntime.from_config(config, system, sink, bus, history_size=HISTORY_SIZE)

    with runtime:
        try:
            while True:
                published = 0
                for path in args.clouds:
                    try:
                        frame = read_point_cloud(path)
                    except (FileNotFoundError, ValueError) as exc:
                        logger.error("Skipping %s: %s", path, exc)
                        continue
                    bus.publish(config.topic, frame)
                    published += 1
                    time.sleep(1.0 / args.rate)
                if not args.loop:
                    break
                if not published:
                    logger.error("None of the %d clouds could be read; stopping replay", len(args.clouds))
                    break
            runtime.wait_idle(timeout=60.0)
        except KeyboardInterrupt:
            logger.info("Interrupted")

    logger.info("Runtime counters: %s", dict(runtime.results))
    logger.info("Summary of last %d frames: %s", len(runtime.history), summarize(runtime.history))
    return 0


if __name__ == "__main__":
    sys.exit(main())
