"""
MCP Tool Tests
==============

The tool handlers are plain coroutines; each returns one JSON text block.
"""

import asyncio
import json

import pytest

from storyflow import ranking, server
from storyflow.config import CONFIG_ENV_VAR


@pytest.fixture(autouse=True)
def no_config_file(monkeypatch):
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.setattr(server, "DEFAULT_CONFIG_PATH", None)


def call(name, arguments):
    contents = asyncio.run(server.call_tool(name, arguments))
    assert len(contents) == 1
    return contents[0].text


class TestLayoutStoryGraph:

    def test_success(self, game_yaml):
        payload = json.loads(call("layout_story_graph", {"game_yaml": game_yaml}))
        assert payload["status"] == "success"
        assert payload["algorithm"] == "hierarchical"
        assert payload["state"] == "complete"
        assert len(payload["nodes"]) == 8
        assert len(payload["edges"]) == 8
        assert payload["quality"] in {"Excellent", "Good", "Fair", "Poor"}
        assert {"category": "dead-end", "entity_id": "letter",
                "message": "Element is rewarded but never required"} in payload["warnings"]

    def test_node_payload(self, game_yaml):
        payload = json.loads(call("layout_story_graph", {"game_yaml": game_yaml}))
        desk = next(n for n in payload["nodes"] if n["id"] == "desk")
        assert desk["entity_kind"] == "puzzle"
        assert desk["label"] == "Search the Desk"
        assert desk["size"] == {"width": 200.0, "height": 60.0}
        assert desk["rank"] is not None

    def test_edges_are_styled_and_visible(self, game_yaml):
        payload = json.loads(call("layout_story_graph", {"game_yaml": game_yaml}))
        kinds = {e["kind"] for e in payload["edges"]}
        assert "virtual-dependency" not in kinds
        reward = next(e for e in payload["edges"] if e["kind"] == "reward")
        assert reward["style"]["animated"] is True

    def test_preset_and_algorithm(self, game_yaml):
        payload = json.loads(call("layout_story_graph", {"game_yaml": game_yaml, "preset": "content-status"}))
        assert payload["algorithm"] == "grid"

        payload = json.loads(call("layout_story_graph", {"game_yaml": game_yaml, "algorithm": "circular"}))
        assert payload["algorithm"] == "circular"

    def test_options_override(self, game_yaml):
        payload = json.loads(call("layout_story_graph", {
            "game_yaml": game_yaml,
            "options": {"evaluate_quality": False},
        }))
        assert payload["metrics"] is None
        assert payload["quality"] is None

    def test_ranking_failure_reports_error(self, game_yaml, monkeypatch):
        def broken(graph):
            raise RuntimeError("no ranks today")

        monkeypatch.setitem(ranking.RANKERS, "network-simplex", broken)
        payload = json.loads(call("layout_story_graph", {"game_yaml": game_yaml}))
        assert payload["status"] == "success"
        assert payload["state"] == "fallback"
        assert payload["error"] == "hierarchical: no ranks today"
        assert len(payload["nodes"]) == 8

    def test_bad_document(self):
        assert call("layout_story_graph", {"game_yaml": ""}).startswith("Failed to parse game document")

    def test_bad_options(self, game_yaml):
        text = call("layout_story_graph", {"game_yaml": game_yaml, "options": {"alignment": "middle"}})
        assert text.startswith("Invalid layout options")

    def test_unknown_preset(self, game_yaml):
        text = call("layout_story_graph", {"game_yaml": game_yaml, "preset": "kaleidoscope"})
        assert text.startswith("Invalid layout options")


class TestEvaluateLayout:

    NODES = [
        {"id": "a", "x": 0, "y": 0},
        {"id": "b", "x": 100, "y": 100},
        {"id": "c", "x": 0, "y": 100},
        {"id": "d", "x": 100, "y": 0},
    ]
    EDGES = [{"source": "a", "target": "b"}, {"source": "c", "target": "d"}]

    def test_basic(self):
        payload = json.loads(call("evaluate_layout", {"nodes": self.NODES, "edges": self.EDGES}))
        assert payload["metrics"]["edge_crossings"] == 1
        assert "stress" not in payload["metrics"]
        assert payload["pattern"]["pattern"] in {"hierarchical", "circular", "grid", "clustered", "force-directed"}

    def test_advanced(self):
        payload = json.loads(call("evaluate_layout", {"nodes": self.NODES, "edges": self.EDGES, "advanced": True}))
        assert payload["metrics"]["orthogonality"] == 0

    def test_overlaps_suggested(self):
        nodes = [{"id": "a", "x": 0, "y": 0}, {"id": "b", "x": 10, "y": 10}]
        payload = json.loads(call("evaluate_layout", {"nodes": nodes}))
        assert payload["suggestions"][0]["priority"] == "critical"

    def test_invalid_layout(self):
        assert call("evaluate_layout", {"nodes": [{"id": "a"}]}).startswith("Invalid layout")
        bad_kind = {"nodes": [{"id": "a", "x": 0, "y": 0, "entity_kind": "weapon"}]}
        assert call("evaluate_layout", bad_kind).startswith("Invalid layout")


class TestCatalogTools:

    def test_list_algorithms(self):
        payload = json.loads(call("list_layout_algorithms", {}))
        names = [a["name"] for a in payload["algorithms"]]
        assert names == ["hierarchical", "force", "force-optimized", "circular", "grid", "radial"]
        assert payload["view_defaults"]["content-status"] == "grid"
        assert "default" not in payload["view_defaults"]

    def test_get_preset(self):
        payload = json.loads(call("get_layout_preset", {"name": "character-journey"}))
        assert payload["algorithm"] == "force"
        assert payload["node_separation"] == 120

    def test_missing_preset(self):
        assert call("get_layout_preset", {"name": "kaleidoscope"}) == "Preset not found: kaleidoscope"

    def test_unknown_tool(self):
        assert call("paint_canvas", {}) == "Unknown tool: paint_canvas"

    def test_tool_schemas(self):
        tools = asyncio.run(server.list_tools())
        assert [t.name for t in tools] == [
            "layout_story_graph", "evaluate_layout", "list_layout_algorithms", "get_layout_preset",
        ]
