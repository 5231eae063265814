"""
Configuration Module

Dataclass configuration for the tabletop pipeline. Defaults reproduce the
constants the pipeline was tuned with (metres); everything can be
overridden from a YAML file.
"""

from dataclasses import asdict, dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union, get_args, get_origin

import yaml


AXES = ("x", "y", "z")


def _matches(value: Any, annotation: Any) -> bool:
    """Whether value fits a config field annotation (bools are not numbers)."""
    if get_origin(annotation) is Union:
        return any(
            value is None if arg is type(None) else _matches(value, arg)
            for arg in get_args(annotation)
        )
    if isinstance(value, bool):
        return annotation is bool
    if annotation is float:
        return isinstance(value, (int, float))
    return isinstance(value, annotation)


def _check_types(section: Any, prefix: str = "") -> None:
    for field_info in fields(section):
        value = getattr(section, field_info.name)
        name = prefix + field_info.name
        if is_dataclass(field_info.type):
            if not isinstance(value, field_info.type):
                raise ValueError(f"{name} must be a mapping, got {value!r}")
            _check_types(value, name + ".")
        elif not _matches(value, field_info.type):
            raise ValueError(f"{name} has invalid value {value!r}")


@dataclass
class IngestConfig:
    """Frame conversion; color_max is the full-scale RGB value of array frames (None infers it)."""
    color_max: Optional[float] = None


@dataclass
class CropConfig:
    """Passthrough limits on one axis, inclusive."""
    axis: str = "z"
    min_value: float = 0.0
    max_value: float = 1.5


@dataclass
class PlaneConfig:
    """RANSAC plane segmentation."""
    distance_threshold: float = 0.01
    max_iterations: int = 50
    seed: Optional[int] = 0
    refine_coefficients: bool = True


@dataclass
class ClusterConfig:
    """Euclidean cluster extraction."""
    tolerance: float = 0.01
    min_cluster_size: int = 750
    max_cluster_size: Optional[int] = None


@dataclass
class GraspConfig:
    """Per-cluster grasp dispatch."""
    max_workers: int = 1
    poll_interval: float = 0.05


@dataclass
class RuntimeConfig:
    """Frame and sink threads."""
    cancel_superseded: bool = False
    take_timeout: float = 0.1


@dataclass
class SceneConfig:
    """Top-level configuration; ``topic`` names the source of incoming frames."""
    topic: str = "cloud"
    ingest: IngestConfig = field(default_factory=IngestConfig)
    crop: CropConfig = field(default_factory=CropConfig)
    plane: PlaneConfig = field(default_factory=PlaneConfig)
    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    grasp: GraspConfig = field(default_factory=GraspConfig)
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self) -> "SceneConfig":
        """Raise ValueError on values the pipeline cannot run with."""
        _check_types(self)
        if not self.topic:
            raise ValueError("topic must be a non-empty string")
        if self.ingest.color_max is not None and self.ingest.color_max <= 0:
            raise ValueError("ingest.color_max must be positive")
        if self.crop.axis not in AXES:
            raise ValueError(f"crop.axis must be one of {AXES}, got {self.crop.axis!r}")
        if self.crop.min_value > self.crop.max_value:
            raise ValueError(
                f"crop.min_value ({self.crop.min_value}) exceeds crop.max_value ({self.crop.max_value})"
            )
        if self.plane.distance_threshold <= 0:
            raise ValueError("plane.distance_threshold must be positive")
        if self.plane.max_iterations < 1:
            raise ValueError("plane.max_iterations must be at least 1")
        if self.cluster.tolerance <= 0:
            raise ValueError("cluster.tolerance must be positive")
        if self.cluster.min_cluster_size < 1:
            raise ValueError("cluster.min_cluster_size must be at least 1")
        if (self.cluster.max_cluster_size is not None
                and self.cluster.max_cluster_size < self.cluster.min_cluster_size):
            raise ValueError("cluster.max_cluster_size is smaller than cluster.min_cluster_size")
        if self.grasp.poll_interval <= 0:
            raise ValueError("grasp.poll_interval must be positive")
        if self.runtime.take_timeout <= 0:
            raise ValueError("runtime.take_timeout must be positive")
        return self


def _build_from_dict(cls, raw: Dict[str, Any]):
    """Recursively construct a config dataclass from a dict, ignoring unknown keys."""
    if not isinstance(raw, dict):
        return cls()
    kwargs = {}
    for name, field_info in cls.__dataclass_fields__.items():
        if name not in raw:
            continue
        val = raw[name]
        sub_cls = field_info.default_factory
        if isinstance(sub_cls, type) and hasattr(sub_cls, "__dataclass_fields__"):
            kwargs[name] = _build_from_dict(sub_cls, val)
        else:
            kwargs[name] = val
    return cls(**kwargs)


def config_from_dict(raw: Dict[str, Any]) -> SceneConfig:
    return _build_from_dict(SceneConfig, raw).validate()


def load_config(path: Union[str, Path]) -> SceneConfig:
    """Load SceneConfig from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return config_from_dict(data)


def save_config(config: SceneConfig, path: Union[str, Path]) -> None:
    """Save SceneConfig to a YAML file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config.to_dict(), f, sort_keys=False)
