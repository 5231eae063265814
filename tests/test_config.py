"""Tests for SceneConfig and YAML loading/saving."""

from __future__ import annotations

import pytest
import yaml

from tabletop_grasp.config import (
    ClusterConfig,
    CropConfig,
    PlaneConfig,
    SceneConfig,
    config_from_dict,
    load_config,
    save_config,
)


class TestDefaultValues:

    def test_crop_defaults(self):
        c = CropConfig()
        assert c.axis == "z"
        assert c.min_value == 0.0
        assert c.max_value == 1.5

    def test_plane_defaults(self):
        c = PlaneConfig()
        assert c.distance_threshold == 0.01
        assert c.max_iterations == 50

    def test_cluster_defaults(self):
        c = ClusterConfig()
        assert c.tolerance == 0.01
        assert c.min_cluster_size == 750
        assert c.max_cluster_size is None

    def test_defaults_validate(self):
        SceneConfig().validate()


class TestYaml:

    def test_roundtrip(self, tmp_path):
        config = SceneConfig(topic="/camera/depth/points")
        config.plane.max_iterations = 200
        config.grasp.max_workers = 4
        path = tmp_path / "nested" / "scene.yaml"
        save_config(config, path)
        loaded = load_config(path)
        assert loaded.to_dict() == config.to_dict()

    def test_partial_file_keeps_defaults(self, tmp_path):
        path = tmp_path / "scene.yaml"
        path.write_text(yaml.safe_dump({"topic": "kinect", "cluster": {"min_cluster_size": 300}}))
        loaded = load_config(path)
        assert loaded.topic == "kinect"
        assert loaded.cluster.min_cluster_size == 300
        assert loaded.cluster.tolerance == 0.01
        assert loaded.crop.max_value == 1.5

    def test_empty_file(self, tmp_path):
        path = tmp_path / "scene.yaml"
        path.write_text("")
        assert load_config(path).to_dict() == SceneConfig().to_dict()

    def test_unknown_keys_ignored(self):
        loaded = config_from_dict({"colour": "red", "plane": {"mystery": 1, "seed": 3}})
        assert loaded.plane.seed == 3

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")


@pytest.mark.parametrize("raw", [
    {"topic": ""},
    {"crop": {"axis": "q"}},
    {"crop": {"min_value": 2.0, "max_value": 1.0}},
    {"plane": {"distance_threshold": 0.0}},
    {"plane": {"max_iterations": 0}},
    {"cluster": {"tolerance": -1.0}},
    {"cluster": {"min_cluster_size": 0}},
    {"cluster": {"min_cluster_size": 100, "max_cluster_size": 10}},
    {"plane": {"max_iterations": "x"}},
    {"plane": {"max_iterations": 12.5}},
    {"plane": {"refine_coefficients": "yes"}},
    {"cluster": {"tolerance": True}},
    {"cluster": {"max_cluster_size": "big"}},
    {"topic": 7},
])
def test_invalid_values_rejected(raw):
    with pytest.raises(ValueError):
        config_from_dict(raw)


def test_integers_accepted_for_float_fields():
    loaded = config_from_dict({"crop": {"min_value": 0, "max_value": 2}, "plane": {"seed": None}})
    assert loaded.crop.max_value == 2
    assert loaded.plane.seed is None


def test_section_replaced_by_scalar_rejected():
    config = SceneConfig()
    config.plane = 5
    with pytest.raises(ValueError, match="plane"):
        config.validate()
