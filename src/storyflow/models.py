"""
Data models for storyflow: the story-graph ontology.

A murder-mystery game is described by four kinds of entity:

    character  a playable or non-playable person
    element    a prop, document or memory token that can be owned,
               required by a puzzle, or handed out as a puzzle's reward
    puzzle     a gate the players must solve; may contain sub-puzzles
    timeline   a backstory event involving characters and evidence

Entities arrive from the document database as plain records.  Each one
carries an explicit ``entity_kind`` tag set at ingestion time, so nothing
downstream of the parser has to guess an entity's kind from its shape.

The layout side of the ontology:

    Node   one entity on the canvas (id, kind, size, position)
    Edge   one directed, weighted connection between two nodes
    RelationshipRecord  the ephemeral {source, target, kind} tuple that
                        the relationship extractor emits and the edge
                        builder consumes

Edge kinds control styling and carry domain meaning:

    requirement         element → puzzle   (the puzzle needs the element)
    reward              puzzle → element   (solving yields the element)
    ownership           character → element
    timeline            event → participant (character or evidence)
    chain               parent puzzle → sub-puzzle
    container           container element → contained element
    grouping            puzzle ↔ puzzle, layout-only same-rank pull
    virtual-dependency  provider puzzle → consumer puzzle, layout-only
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class EntityKind(str, Enum):
    CHARACTER = "character"
    ELEMENT = "element"
    PUZZLE = "puzzle"
    TIMELINE = "timeline"


class EdgeKind(str, Enum):
    REQUIREMENT = "requirement"
    REWARD = "reward"
    OWNERSHIP = "ownership"
    TIMELINE = "timeline"
    CHAIN = "chain"
    GROUPING = "grouping"
    VIRTUAL_DEPENDENCY = "virtual-dependency"
    CONTAINER = "container"


VIRTUAL_EDGE_KINDS = frozenset({EdgeKind.GROUPING, EdgeKind.VIRTUAL_DEPENDENCY})

# Edges whose direction encodes "must happen before".
ORDERING_EDGE_KINDS = frozenset({EdgeKind.REQUIREMENT, EdgeKind.REWARD})


# ---------------------------------------------------------------------------
# Entities (ingestion side)
# ---------------------------------------------------------------------------

class _Entity(BaseModel):
    """Shared configuration for database records.

    Field names are snake_case in Python; the camelCase spelling used by
    the document database is accepted as an alias.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str
    name: str = ""

    def get_label(self) -> str:
        return self.name if self.name else self.id


class SFMetadata(BaseModel):
    """Gameplay-pattern metadata parsed from an element description.

    Attributes:
        rfid:         Unique scan identifier (``SF_RFID``).
        value_rating: Evidence importance, 1 (minor) to 5 (critical).
        memory_type:  Personal, Business or Technical.
        group:        Group affiliation name.
        group_multiplier: Optional ``(xN)`` multiplier on the group.
        multiplier:   Memory-type multiplier times group multiplier.
    """
    rfid: Optional[str] = None
    value_rating: Optional[int] = None
    memory_type: Optional[str] = None
    group: Optional[str] = None
    group_multiplier: Optional[float] = None
    multiplier: float = 1.0

    def is_empty(self) -> bool:
        return not any((self.rfid, self.value_rating, self.memory_type, self.group))


class Character(_Entity):
    entity_kind: Literal["character"] = "character"
    type: str = "NPC"
    tier: str = "Tertiary"
    owned_element_ids: list[str] = Field(default_factory=list)
    associated_element_ids: list[str] = Field(default_factory=list)
    character_puzzle_ids: list[str] = Field(default_factory=list)
    event_ids: list[str] = Field(default_factory=list)


class Element(_Entity):
    entity_kind: Literal["element"] = "element"
    description_text: str = ""
    sf_patterns: SFMetadata = Field(default_factory=SFMetadata)
    basic_type: str = "Prop"
    owner_id: Optional[str] = None
    container_id: Optional[str] = None
    content_ids: list[str] = Field(default_factory=list)
    timeline_event_id: Optional[str] = None
    required_for_puzzle_ids: list[str] = Field(default_factory=list)
    rewarded_by_puzzle_ids: list[str] = Field(default_factory=list)
    container_puzzle_id: Optional[str] = None
    narrative_threads: list[str] = Field(default_factory=list)


class Puzzle(_Entity):
    entity_kind: Literal["puzzle"] = "puzzle"
    puzzle_element_ids: list[str] = Field(default_factory=list)
    reward_ids: list[str] = Field(default_factory=list)
    locked_item_id: Optional[str] = None
    owner_id: Optional[str] = None
    parent_item_id: Optional[str] = None
    sub_puzzle_ids: list[str] = Field(default_factory=list)
    narrative_threads: list[str] = Field(default_factory=list)


class TimelineEvent(_Entity):
    entity_kind: Literal["timeline"] = "timeline"
    date: Optional[str] = None
    characters_involved_ids: list[str] = Field(default_factory=list)
    memory_evidence_ids: list[str] = Field(default_factory=list)


Entity = Union[Character, Element, Puzzle, TimelineEvent]


class GameData(BaseModel):
    """A snapshot of every entity in the game.

    The snapshot maintains an id index so cross-references held as id
    lists can be resolved in O(1) via ``get()``.
    """
    characters: list[Character] = Field(default_factory=list)
    elements: list[Element] = Field(default_factory=list)
    puzzles: list[Puzzle] = Field(default_factory=list)
    timeline: list[TimelineEvent] = Field(default_factory=list)

    _index: dict[str, Entity] = {}

    def model_post_init(self, __context):
        """Build the id index after initialization."""
        self._index = {entity.id: entity for entity in self.all_entities()}

    def all_entities(self) -> list[Entity]:
        return [*self.characters, *self.elements, *self.puzzles, *self.timeline]

    def get(self, entity_id: str) -> Optional[Entity]:
        return self._index.get(entity_id)

    def kind_of(self, entity_id: str) -> Optional[EntityKind]:
        entity = self._index.get(entity_id)
        return EntityKind(entity.entity_kind) if entity else None


# ---------------------------------------------------------------------------
# Styling
# ---------------------------------------------------------------------------

class EdgeStyle(BaseModel):
    """Visual hints handed to the rendering collaborator with each edge."""
    stroke: str = "#6b7280"
    stroke_width: float = 1.0
    dash: Optional[str] = None
    animated: bool = False
    hidden: bool = False
    label: Optional[str] = None


EDGE_STYLES: dict[EdgeKind, EdgeStyle] = {
    EdgeKind.REQUIREMENT:        EdgeStyle(stroke="#dc2626", stroke_width=2, label="requires"),
    EdgeKind.REWARD:             EdgeStyle(stroke="#10b981", stroke_width=2, dash="5,5", animated=True, label="rewards"),
    EdgeKind.CHAIN:              EdgeStyle(stroke="#8b5cf6", stroke_width=3, label="chain"),
    EdgeKind.TIMELINE:           EdgeStyle(stroke="#f59e0b", stroke_width=2, dash="3,3", label="timeline"),
    EdgeKind.OWNERSHIP:          EdgeStyle(stroke="#3b82f6", stroke_width=2, label="owns"),
    EdgeKind.CONTAINER:          EdgeStyle(stroke="#64748b", stroke_width=2, label="contains"),
    EdgeKind.GROUPING:           EdgeStyle(stroke="transparent", stroke_width=0, hidden=True),
    EdgeKind.VIRTUAL_DEPENDENCY: EdgeStyle(stroke="transparent", stroke_width=0, hidden=True),
}

# Default node footprint per entity kind (width, height).
NODE_SIZES: dict[EntityKind, tuple[float, float]] = {
    EntityKind.PUZZLE:    (200.0, 60.0),
    EntityKind.ELEMENT:   (180.0, 60.0),
    EntityKind.CHARACTER: (160.0, 60.0),
    EntityKind.TIMELINE:  (160.0, 60.0),
}


# ---------------------------------------------------------------------------
# Graph (layout side)
# ---------------------------------------------------------------------------

class Position(BaseModel):
    x: float = 0.0
    y: float = 0.0


class Size(BaseModel):
    width: float
    height: float


class Node(BaseModel):
    """A node: one entity placed on the story canvas.

    ``id`` and ``entity_kind`` never change during a layout pass.  Position
    and size are written only by layout, which always returns copies, so a
    node handed to the engine is never modified in place.  ``rank`` is the
    column the hierarchical layout assigned (fractional when fractional
    ranks are enabled); other algorithms leave it unset.
    """
    id: str
    entity_kind: EntityKind
    label: Optional[str] = None
    x: float = 0.0
    y: float = 0.0
    width: Optional[float] = None
    height: Optional[float] = None
    rank: Optional[float] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def position(self) -> Position:
        return Position(x=self.x, y=self.y)

    @property
    def size(self) -> Size:
        return Size(width=self.effective_width(), height=self.effective_height())

    def effective_width(self) -> float:
        if self.width:
            return self.width
        return NODE_SIZES.get(self.entity_kind, (160.0, 60.0))[0]

    def effective_height(self) -> float:
        if self.height:
            return self.height
        return NODE_SIZES.get(self.entity_kind, (160.0, 60.0))[1]

    def get_label(self) -> str:
        return self.label if self.label else self.id


class Edge(BaseModel):
    """A directed, weighted edge.

    ``weight`` is the structural weight: how strongly ranking should pull the
    two endpoints together.  ``minimum_rank_gap`` is how many ranks the
    target must sit to the right of the source.  Virtual edges take part in
    ranking only and are removed before edges reach the renderer.
    """
    id: str
    source: str
    target: str
    kind: EdgeKind
    weight: float = Field(default=1.0, ge=0)
    minimum_rank_gap: int = Field(default=1, ge=0)
    is_virtual: bool = False
    label: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    style: Optional[EdgeStyle] = None

    def get_style(self) -> EdgeStyle:
        if self.style:
            return self.style
        return EDGE_STYLES.get(self.kind, EdgeStyle())

    def key(self) -> tuple[str, str, str]:
        return (self.kind.value, self.source, self.target)


class RelationshipRecord(BaseModel):
    """One directed relationship between two entity ids."""
    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    kind: EdgeKind
    label: Optional[str] = None


class GraphData(BaseModel):
    """Nodes plus edges, the unit handed between pipeline stages."""
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)

    def node_map(self) -> dict[str, Node]:
        return {node.id: node for node in self.nodes}

    def visible_edges(self) -> list[Edge]:
        return [edge for edge in self.edges if not edge.is_virtual]
