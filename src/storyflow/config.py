"""Layout configuration for storyflow.

The configuration surface the calling view layer hands to the engine:
direction, rank/node separation, alignment corner, ranker, fractional
ranks, adaptive spacing, clustering, algorithm identifier, view-type hint
and viewport hint.

Configs can be loaded from YAML.  A document may name a preset and
override individual fields:

    preset: puzzle-focus
    rank_separation: 360
    adaptive_spacing:
      rank_tier_high: 6
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .errors import IngestionError


# --- Defaults ---

DEFAULT_RANK_SEPARATION = 300
DEFAULT_NODE_SEPARATION = 100
DEFAULT_MARGIN = 50
DEFAULT_COMPRESSION_FACTOR = 0.6

CONFIG_ENV_VAR = "STORYFLOW_LAYOUT_CONFIG"

AlignmentCorner = Literal["UL", "UR", "DL", "DR"]
RankerName = Literal["network-simplex", "tight-tree", "longest-path"]


class AdaptiveSpacingRules(BaseModel):
    """Density thresholds for adaptive spacing.

    Rank separation widens when puzzles carry many elements; node
    separation tightens when one entity kind dominates.  The numbers are
    tuned by eye and meant to be overridden.
    """
    # elements per puzzle -> rank separation
    rank_tier_high: float = 5
    rank_floor_high: float = 400
    rank_scale_high: float = 1.3
    rank_tier_low: float = 3
    rank_floor_low: float = 350
    rank_scale_low: float = 1.15

    # largest per-kind node count -> node separation
    node_tier_high: int = 10
    node_cap_high: float = 60
    node_scale_high: float = 0.7
    node_tier_low: int = 5
    node_cap_low: float = 80
    node_scale_low: float = 0.85

    def rank_separation(self, base: float, elements_per_puzzle: float) -> float:
        if elements_per_puzzle > self.rank_tier_high:
            return max(self.rank_floor_high, base * self.rank_scale_high)
        if elements_per_puzzle > self.rank_tier_low:
            return max(self.rank_floor_low, base * self.rank_scale_low)
        return base

    def node_separation(self, base: float, max_kind_count: int) -> float:
        if max_kind_count > self.node_tier_high:
            return min(self.node_cap_high, base * self.node_scale_high)
        if max_kind_count > self.node_tier_low:
            return min(self.node_cap_low, base * self.node_scale_low)
        return base


class Viewport(BaseModel):
    """The visible region of the canvas, in layout coordinates."""
    x: float = 0.0
    y: float = 0.0
    width: float = Field(default=1200.0, gt=0)
    height: float = Field(default=800.0, gt=0)

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    def contains(self, x: float, y: float) -> bool:
        return self.x <= x <= self.x + self.width and self.y <= y <= self.y + self.height


class LayoutConfig(BaseModel):
    """Options for one layout pass."""
    direction: Literal["LR"] = "LR"
    rank_separation: float = Field(default=DEFAULT_RANK_SEPARATION, gt=0)
    node_separation: float = Field(default=DEFAULT_NODE_SEPARATION, ge=0)
    alignment: AlignmentCorner = "UL"
    ranker: RankerName = "network-simplex"
    fractional_ranks: bool = False
    adaptive_spacing: bool = True
    spacing_rules: AdaptiveSpacingRules = Field(default_factory=AdaptiveSpacingRules)
    cluster_elements: bool = False
    compression_factor: float = Field(default=DEFAULT_COMPRESSION_FACTOR, ge=0, le=1)
    algorithm: str = "hierarchical"
    view_type: Optional[str] = None
    viewport: Optional[Viewport] = None
    margin: float = Field(default=DEFAULT_MARGIN, ge=0)
    dependency_weight: float = Field(default=1000, ge=0)
    grouping_weight: float = Field(default=500, ge=0)
    inject_virtual_edges: bool = True
    evaluate_quality: bool = True


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------

LAYOUT_PRESETS: dict[str, LayoutConfig] = {
    "default":           LayoutConfig(rank_separation=250, node_separation=80),
    "puzzle-focus":      LayoutConfig(rank_separation=300, node_separation=100, cluster_elements=True,
                                      fractional_ranks=True, view_type="puzzle-focus"),
    "character-journey": LayoutConfig(rank_separation=200, node_separation=120, algorithm="force",
                                      view_type="character-journey"),
    "node-connections":  LayoutConfig(rank_separation=250, node_separation=80, algorithm="radial",
                                      view_type="node-connections"),
    "content-status":    LayoutConfig(rank_separation=150, node_separation=60, algorithm="grid",
                                      adaptive_spacing=False, view_type="content-status"),
    "timeline":          LayoutConfig(rank_separation=250, node_separation=80, view_type="timeline"),
}


def get_preset(name: str) -> LayoutConfig:
    """Return a copy of a named preset."""
    if name not in LAYOUT_PRESETS:
        raise KeyError(f"Unknown layout preset: {name}")
    return LAYOUT_PRESETS[name].model_copy(deep=True)


# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------

def config_from_dict(data: dict) -> LayoutConfig:
    """Build a config from a plain dict, applying ``preset`` first if named."""
    data = dict(data)
    preset_name = data.pop("preset", None)
    base = get_preset(preset_name) if preset_name else LayoutConfig()

    rules = data.pop("adaptive_spacing_rules", None) or data.pop("spacing_rules", None)
    # `adaptive_spacing` may be a toggle or a table of thresholds
    if isinstance(data.get("adaptive_spacing"), dict):
        rules = data.pop("adaptive_spacing")
    if rules:
        merged = base.spacing_rules.model_dump()
        merged.update(rules)
        data["spacing_rules"] = merged

    merged_config = base.model_dump()
    merged_config.update(data)
    return LayoutConfig.model_validate(merged_config)


def parse_layout_config(yaml_str: str) -> LayoutConfig:
    """Parse a YAML string into a LayoutConfig."""
    data = yaml.safe_load(yaml_str)
    if not data:
        raise IngestionError("Empty YAML input")
    if not isinstance(data, dict):
        raise IngestionError("Layout config must be a mapping")
    return config_from_dict(data)


def load_layout_config(path: Optional[str] = None) -> LayoutConfig:
    """Load a config file, or the file named by STORYFLOW_LAYOUT_CONFIG.

    With neither a path nor the environment variable set, the defaults are
    returned.
    """
    path = path or os.environ.get(CONFIG_ENV_VAR)
    if not path:
        return LayoutConfig()
    content = Path(path).read_text()
    return parse_layout_config(content)
