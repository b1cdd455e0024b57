"""Storyflow server: MCP tools for laying out murder-mystery story graphs."""

from __future__ import annotations

import json
import logging
import os

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .algorithms import AlgorithmRegistry
from .config import CONFIG_ENV_VAR, LAYOUT_PRESETS, config_from_dict, get_preset, load_layout_config
from .errors import StoryflowError
from .models import Edge, EdgeKind, Node
from .orchestrator import LayoutOrchestrator, layout_story
from .parser import parse_game_yaml
from .quality import (
    detect_layout_pattern,
    evaluate_layout,
    evaluate_layout_advanced,
    overall_quality_score,
    quality_level,
    suggest_improvements,
)


# --- Constants ---
DEFAULT_CONFIG_PATH = os.environ.get(CONFIG_ENV_VAR)
LOG_LEVEL = os.environ.get("STORYFLOW_LOG_LEVEL", "INFO")

logger = logging.getLogger(__name__)

server = Server("storyflow-layout")


# --- Tool definitions ---

@server.list_tools()
async def list_tools() -> list[Tool]:
    return [
        Tool(
            name="layout_story_graph",
            description=(
                "Lay out a murder-mystery story graph from a YAML game document. "
                "Characters, elements, puzzles and timeline events become nodes; their "
                "references become edges. Returns positioned nodes, the visible edges, "
                "quality metrics and data-integrity warnings as JSON."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "game_yaml": {
                        "type": "string",
                        "description": (
                            "YAML game document. Example:\n"
                            "puzzles:\n"
                            "  - id: safe\n"
                            "    name: Open the safe\n"
                            "    puzzleElementIds: [key]\n"
                            "    rewardIds: [letter]\n"
                            "elements:\n"
                            "  - id: key\n"
                            "  - id: letter\n"
                            "\n"
                            "Sections: characters, elements, puzzles, timeline. "
                            "Field names may be camelCase or snake_case."
                        ),
                    },
                    "preset": {
                        "type": "string",
                        "enum": sorted(LAYOUT_PRESETS),
                        "description": "Named layout preset to start from (default: the server config).",
                    },
                    "algorithm": {
                        "type": "string",
                        "enum": ["auto", "hierarchical", "force", "force-optimized", "circular", "grid", "radial"],
                        "description": "Layout algorithm. 'auto' scores every algorithm against the graph.",
                    },
                    "view_type": {
                        "type": "string",
                        "description": "View hint used for algorithm selection and post-processing.",
                    },
                    "options": {
                        "type": "object",
                        "description": (
                            "Extra layout options, e.g. rank_separation, node_separation, "
                            "alignment (UL/UR/DL/DR), ranker, fractional_ranks, cluster_elements."
                        ),
                    },
                },
                "required": ["game_yaml"],
            },
        ),
        Tool(
            name="evaluate_layout",
            description=(
                "Score an existing layout: edge crossings, node overlaps, edge lengths, "
                "aspect ratio and clustering, plus a detected layout pattern and suggestions."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "nodes": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "id": {"type": "string"},
                                "entity_kind": {
                                    "type": "string",
                                    "enum": ["character", "element", "puzzle", "timeline"],
                                },
                                "x": {"type": "number"},
                                "y": {"type": "number"},
                                "width": {"type": "number"},
                                "height": {"type": "number"},
                            },
                            "required": ["id", "x", "y"],
                        },
                    },
                    "edges": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "source": {"type": "string"},
                                "target": {"type": "string"},
                                "kind": {"type": "string"},
                            },
                            "required": ["source", "target"],
                        },
                    },
                    "advanced": {
                        "type": "boolean",
                        "description": "Also compute stress, angular resolution, symmetry and orthogonality.",
                        "default": False,
                    },
                },
                "required": ["nodes"],
            },
        ),
        Tool(
            name="list_layout_algorithms",
            description="List the registered layout algorithms, their characteristics and the per-view defaults.",
            inputSchema={
                "type": "object",
                "properties": {},
            },
        ),
        Tool(
            name="get_layout_preset",
            description="Get the full configuration of a named layout preset.",
            inputSchema={
                "type": "object",
                "properties": {
                    "name": {
                        "type": "string",
                        "description": "Preset name (puzzle-focus, character-journey, ...)",
                    },
                },
                "required": ["name"],
            },
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    if name == "layout_story_graph":
        return await _layout_story_graph(arguments)
    elif name == "evaluate_layout":
        return await _evaluate_layout(arguments)
    elif name == "list_layout_algorithms":
        return await _list_layout_algorithms(arguments)
    elif name == "get_layout_preset":
        return await _get_layout_preset(arguments)
    else:
        return [TextContent(type="text", text=f"Unknown tool: {name}")]


def _node_json(node: Node) -> dict:
    return {
        "id": node.id,
        "entity_kind": node.entity_kind.value,
        "label": node.get_label(),
        "position": {"x": node.x, "y": node.y},
        "size": {"width": node.effective_width(), "height": node.effective_height()},
        "rank": node.rank,
    }


def _edge_json(edge: Edge) -> dict:
    return {
        "id": edge.id,
        "source": edge.source,
        "target": edge.target,
        "kind": edge.kind.value,
        "weight": edge.weight,
        "style": edge.get_style().model_dump(exclude_none=True),
    }


async def _layout_story_graph(args: dict) -> list[TextContent]:
    """Parse a game document and lay it out."""
    try:
        game = parse_game_yaml(args["game_yaml"])
    except StoryflowError as e:
        return [TextContent(type="text", text=f"Failed to parse game document: {e}")]

    overrides = dict(args.get("options") or {})
    for key in ("algorithm", "view_type"):
        if args.get(key):
            overrides[key] = args[key]
    if args.get("preset"):
        overrides["preset"] = args["preset"]

    try:
        if "preset" in overrides:
            config = config_from_dict(overrides)
        else:
            # Server config file first, tool options on top.
            config = config_from_dict({**load_layout_config(DEFAULT_CONFIG_PATH).model_dump(), **overrides})
    except (StoryflowError, KeyError, ValueError) as e:
        return [TextContent(type="text", text=f"Invalid layout options: {e}")]

    try:
        result = layout_story(game, config, orchestrator=LayoutOrchestrator(logger=logger), logger=logger)
    except StoryflowError as e:
        return [TextContent(type="text", text=f"Layout failed: {e}")]

    return [TextContent(
        type="text",
        text=json.dumps({
            "status": "success",
            "algorithm": result.algorithm,
            "state": result.state.value,
            "fell_back": result.fell_back,
            "error": result.error,
            "nodes": [_node_json(n) for n in result.nodes],
            "edges": [_edge_json(e) for e in result.edges],
            "metrics": result.metrics.model_dump() if result.metrics else None,
            "quality": quality_level(overall_quality_score(result.metrics)) if result.metrics else None,
            "warnings": [w.model_dump() for w in result.report.warnings()],
        }),
    )]


async def _evaluate_layout(args: dict) -> list[TextContent]:
    """Compute quality metrics for caller-supplied positions."""
    try:
        nodes = [
            Node(
                id=nd["id"],
                entity_kind=nd.get("entity_kind", "element"),
                x=nd["x"],
                y=nd["y"],
                width=nd.get("width"),
                height=nd.get("height"),
            )
            for nd in args["nodes"]
        ]
        edges = [
            Edge(
                id=f"edge-{i}",
                source=ed["source"],
                target=ed["target"],
                kind=EdgeKind(ed.get("kind", "requirement")),
            )
            for i, ed in enumerate(args.get("edges", []))
        ]
    except (KeyError, ValueError) as e:
        return [TextContent(type="text", text=f"Invalid layout: {e}")]

    advanced = args.get("advanced", False)
    metrics = evaluate_layout_advanced(nodes, edges) if advanced else evaluate_layout(nodes, edges)
    pattern = detect_layout_pattern(nodes, edges)
    score = overall_quality_score(metrics)

    return [TextContent(
        type="text",
        text=json.dumps({
            "metrics": metrics.model_dump(),
            "score": score,
            "quality": quality_level(score),
            "pattern": pattern.model_dump(),
            "suggestions": [s.model_dump() for s in suggest_improvements(metrics, pattern)],
        }),
    )]


async def _list_layout_algorithms(args: dict) -> list[TextContent]:
    registry = AlgorithmRegistry.with_defaults(logger=logger)
    views = sorted(LAYOUT_PRESETS)
    return [TextContent(
        type="text",
        text=json.dumps({
            "algorithms": [a.describe() for a in registry.all()],
            "view_defaults": {v: registry.view_default(v) for v in views if registry.view_default(v)},
        }),
    )]


async def _get_layout_preset(args: dict) -> list[TextContent]:
    name = args["name"]
    try:
        preset = get_preset(name)
    except KeyError:
        return [TextContent(type="text", text=f"Preset not found: {name}")]
    return [TextContent(type="text", text=preset.model_dump_json(indent=2))]


def main():
    """Entry point for the MCP server."""
    import asyncio
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    asyncio.run(_run())


async def _run():
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


if __name__ == "__main__":
    main()
