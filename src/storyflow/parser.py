"""Game-data parser for storyflow.

Supports two formats:
1. Sectioned document (characters / elements / puzzles / timeline)
2. Flat entity list (``entities:``), each record tagged with its kind

Keys may be camelCase, as exported by the document database, or snake_case.
Untagged records in a flat list are classified by shape here, at the
ingestion boundary, and nowhere else.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError
from pydantic.alias_generators import to_snake

from .errors import IngestionError
from .models import (
    NODE_SIZES,
    Character,
    Element,
    EntityKind,
    GameData,
    Node,
    Puzzle,
    TimelineEvent,
)
from .patterns import extract_sf_metadata


SECTION_KEYS = {
    EntityKind.CHARACTER: ("characters",),
    EntityKind.ELEMENT: ("elements",),
    EntityKind.PUZZLE: ("puzzles",),
    EntityKind.TIMELINE: ("timeline", "timeline_events", "timelineEvents"),
}

KIND_ALIASES = {
    "character": EntityKind.CHARACTER,
    "element": EntityKind.ELEMENT,
    "puzzle": EntityKind.PUZZLE,
    "timeline": EntityKind.TIMELINE,
    "timeline_event": EntityKind.TIMELINE,
    "timelineevent": EntityKind.TIMELINE,
}

ENTITY_MODELS = {
    EntityKind.CHARACTER: Character,
    EntityKind.ELEMENT: Element,
    EntityKind.PUZZLE: Puzzle,
    EntityKind.TIMELINE: TimelineEvent,
}


def parse_game_yaml(yaml_str: str) -> GameData:
    """Parse a YAML (or JSON) string into GameData."""
    data = yaml.safe_load(yaml_str)
    if not data:
        raise IngestionError("Empty YAML input")
    if not isinstance(data, dict):
        raise IngestionError("Game data must be a mapping")
    return parse_game_dict(data)


def parse_game_file(path: str) -> GameData:
    """Parse a YAML file into GameData."""
    content = Path(path).read_text()
    return parse_game_yaml(content)


def parse_game_dict(data: dict) -> GameData:
    """Build GameData from an already-decoded document."""
    buckets: dict[EntityKind, list] = {kind: [] for kind in EntityKind}

    if "entities" in data:
        for record in data.get("entities") or []:
            kind = _detect_kind(record)
            buckets[kind].append(_parse_entity(kind, record))

    for kind, keys in SECTION_KEYS.items():
        for key in keys:
            for record in data.get(key) or []:
                buckets[kind].append(_parse_entity(kind, record))

    return GameData(
        characters=buckets[EntityKind.CHARACTER],
        elements=buckets[EntityKind.ELEMENT],
        puzzles=buckets[EntityKind.PUZZLE],
        timeline=buckets[EntityKind.TIMELINE],
    )


def _detect_kind(record: dict) -> EntityKind:
    """Classify a flat-list record.

    An explicit tag wins; otherwise the record's fields decide.
    """
    if not isinstance(record, dict):
        raise IngestionError(f"Entity record must be a mapping, got {type(record).__name__}")

    tag = record.get("entity_kind") or record.get("entityKind") or record.get("kind")
    if tag:
        kind = KIND_ALIASES.get(str(tag).lower())
        if kind is None:
            raise IngestionError(f"Unknown entity kind '{tag}' on record {record.get('id')}")
        return kind

    keys = {to_snake(key) for key in record}
    if "tier" in keys:
        return EntityKind.CHARACTER
    if "puzzle_element_ids" in keys or "sub_puzzle_ids" in keys:
        return EntityKind.PUZZLE
    if "characters_involved_ids" in keys or "date" in keys:
        return EntityKind.TIMELINE
    return EntityKind.ELEMENT


def _parse_entity(kind: EntityKind, record: dict):
    """Validate a single record against its entity model."""
    if not isinstance(record, dict):
        raise IngestionError(f"Entity record must be a mapping, got {type(record).__name__}")

    # Blank fields (YAML null) take the model defaults.
    values = {
        k: v for k, v in record.items()
        if v is not None and k not in ("kind", "entity_kind", "entityKind")
    }

    if kind == EntityKind.ELEMENT and not ("sf_patterns" in values or "sfPatterns" in values):
        description = values.get("description_text", values.get("descriptionText", ""))
        values["sf_patterns"] = extract_sf_metadata(description)

    try:
        return ENTITY_MODELS[kind].model_validate(values)
    except ValidationError as e:
        raise IngestionError(f"Invalid {kind.value} record {record.get('id')}: {e}") from e


# ---------------------------------------------------------------------------
# Node creation
# ---------------------------------------------------------------------------

def build_nodes(game: GameData) -> list[Node]:
    """One node per entity, sized by kind, at the origin."""
    return [node_for(entity) for entity in game.all_entities()]


def node_for(entity, position: Optional[tuple[float, float]] = None) -> Node:
    """Build a single node, optionally pre-positioned."""
    kind = EntityKind(entity.entity_kind)
    width, height = NODE_SIZES[kind]
    x, y = position or (0.0, 0.0)
    return Node(id=entity.id, entity_kind=kind, label=entity.get_label(),
                x=x, y=y, width=width, height=height, metadata=_node_metadata(entity))


def _node_metadata(entity) -> dict:
    # Hints the view layer uses for selection and post-processing.
    if entity.entity_kind == "character":
        return {"tier": entity.tier}
    if entity.entity_kind == "timeline" and entity.date:
        return {"date": entity.date}
    return {}
