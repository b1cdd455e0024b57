"""Shared fixtures: a small murder-mystery game and graph builders."""

import pytest

from storyflow.models import Edge, EdgeKind, EntityKind, Node
from storyflow.parser import parse_game_yaml


GAME_YAML = """
characters:
  - id: alex
    name: Alex Reeves
    tier: Core
    ownedElementIds: [journal]
elements:
  - id: journal
    name: Alex's Journal
    descriptionText: "Leather bound. SF_RFID: [JRN_001] SF_ValueRating: [4] SF_MemoryType: [Personal] SF_Group: [Inner Circle (x2)]"
    ownerId: alex
    requiredForPuzzleIds: [desk]
  - id: desk-key
    name: Desk Key
    requiredForPuzzleIds: [desk]
  - id: safe-code
    name: Safe Code
    rewardedByPuzzleIds: [desk]
    requiredForPuzzleIds: [safe]
  - id: letter
    name: Incriminating Letter
    rewardedByPuzzleIds: [safe]
puzzles:
  - id: desk
    name: Search the Desk
    puzzleElementIds: [journal, desk-key]
    rewardIds: [safe-code]
  - id: safe
    name: Open the Safe
    puzzleElementIds: [safe-code]
    rewardIds: [letter]
timeline:
  - id: party
    name: The Party
    date: "2023-05-01"
    charactersInvolvedIds: [alex]
    memoryEvidenceIds: [journal]
"""


def make_node(node_id: str, kind: str = "element", x: float = 0, y: float = 0, **fields) -> Node:
    return Node(id=node_id, entity_kind=EntityKind(kind), x=x, y=y, **fields)


def make_edge(source: str, target: str, kind: str = "requirement", **fields) -> Edge:
    kind = EdgeKind(kind)
    return Edge(id=f"{kind.value}-{source}-{target}", source=source, target=target, kind=kind, **fields)


@pytest.fixture
def game_yaml():
    return GAME_YAML


@pytest.fixture
def game():
    return parse_game_yaml(GAME_YAML)


@pytest.fixture
def dual_role_graph():
    """Puzzle A rewards element E, puzzle B requires it; nothing links A and B directly."""
    nodes = [
        make_node("B", "puzzle"),
        make_node("E", "element"),
        make_node("A", "puzzle"),
        make_node("X", "element"),
    ]
    edges = [
        make_edge("X", "B", "requirement"),
        make_edge("E", "B", "requirement"),
        make_edge("A", "E", "reward"),
    ]
    return nodes, edges
