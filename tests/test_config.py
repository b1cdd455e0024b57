"""Tests for layout configuration, presets and YAML loading."""

import pytest
from pydantic import ValidationError

from storyflow.config import (
    CONFIG_ENV_VAR,
    LAYOUT_PRESETS,
    AdaptiveSpacingRules,
    LayoutConfig,
    config_from_dict,
    get_preset,
    load_layout_config,
    parse_layout_config,
)
from storyflow.errors import IngestionError


class TestDefaults:

    def test_layout_defaults(self):
        config = LayoutConfig()
        assert (config.rank_separation, config.node_separation) == (300, 100)
        assert config.alignment == "UL"
        assert config.ranker == "network-simplex"
        assert config.algorithm == "hierarchical"
        assert config.adaptive_spacing
        assert not config.fractional_ranks

    def test_invalid_values_rejected(self):
        with pytest.raises(ValidationError):
            LayoutConfig(alignment="middle")
        with pytest.raises(ValidationError):
            LayoutConfig(rank_separation=0)
        with pytest.raises(ValidationError):
            LayoutConfig(compression_factor=1.5)

    def test_spacing_rule_tiers(self):
        rules = AdaptiveSpacingRules()
        assert rules.rank_separation(300, 6) == 400
        assert rules.rank_separation(300, 4) == 350
        assert rules.rank_separation(300, 3) == 300
        assert rules.node_separation(100, 11) == 60
        assert rules.node_separation(100, 6) == 80
        assert rules.node_separation(100, 5) == 100


class TestPresets:

    def test_every_view_has_a_preset(self):
        for view in ("puzzle-focus", "character-journey", "node-connections", "content-status", "timeline"):
            assert LAYOUT_PRESETS[view].view_type == view

    def test_preset_values(self):
        puzzle = get_preset("puzzle-focus")
        assert puzzle.cluster_elements and puzzle.fractional_ranks
        assert get_preset("character-journey").algorithm == "force"
        assert get_preset("content-status").algorithm == "grid"

    def test_presets_are_copies(self):
        get_preset("timeline").rank_separation = 999
        assert LAYOUT_PRESETS["timeline"].rank_separation == 250

    def test_unknown_preset(self):
        with pytest.raises(KeyError):
            get_preset("kaleidoscope")


class TestYamlLoading:

    def test_parse_with_preset_and_overrides(self):
        config = parse_layout_config(
            "preset: puzzle-focus\n"
            "rank_separation: 360\n"
            "alignment: DR\n"
        )
        assert config.rank_separation == 360
        assert config.alignment == "DR"
        assert config.cluster_elements
        assert config.view_type == "puzzle-focus"

    def test_adaptive_spacing_table(self):
        config = parse_layout_config("adaptive_spacing:\n  rank_tier_high: 8\n")
        assert config.adaptive_spacing
        assert config.spacing_rules.rank_tier_high == 8
        assert config.spacing_rules.rank_tier_low == 3

    def test_spacing_rules_key(self):
        config = config_from_dict({"spacing_rules": {"node_tier_low": 2}, "adaptive_spacing": False})
        assert not config.adaptive_spacing
        assert config.spacing_rules.node_tier_low == 2

    def test_empty_yaml(self):
        with pytest.raises(IngestionError, match="Empty YAML input"):
            parse_layout_config("")

    def test_non_mapping(self):
        with pytest.raises(IngestionError):
            parse_layout_config("- rank_separation\n")

    def test_invalid_field_value(self):
        with pytest.raises(ValidationError):
            parse_layout_config("ranker: random-walk\n")

    def test_load_file(self, tmp_path):
        path = tmp_path / "layout.yaml"
        path.write_text("node_separation: 42\n")
        assert load_layout_config(str(path)).node_separation == 42

    def test_load_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "layout.yaml"
        path.write_text("preset: content-status\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert load_layout_config().algorithm == "grid"

    def test_defaults_without_file(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        assert load_layout_config() == LayoutConfig()
