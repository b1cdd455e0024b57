"""Relationship extraction.

Turns the id lists carried on each entity into directed relationship
records.  Every relationship is stored from both ends in the database
(``puzzle.puzzle_element_ids`` and ``element.required_for_puzzle_ids``
describe the same fact), so records are deduplicated on
``(kind, source, target)``.

Directions:

    requirement   element   → puzzle
    reward        puzzle    → element
    ownership     character → element
    timeline      event     → character / evidence element
    chain         parent puzzle → sub-puzzle
    container     container element → content element

References to ids that are not in the snapshot are skipped.  They are
expected while authors are mid-edit, so they are reported, not raised.
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, Optional

from pydantic import BaseModel, Field

from .models import (
    Character,
    EdgeKind,
    Element,
    EntityKind,
    GameData,
    Puzzle,
    RelationshipRecord,
    TimelineEvent,
)


class DanglingReference(BaseModel):
    """A reference to an id the snapshot does not contain (or of the wrong kind)."""
    entity_id: str
    field: str
    missing_id: str
    reason: str = "missing"


class ExtractionReport(BaseModel):
    records: list[RelationshipRecord] = Field(default_factory=list)
    dangling: list[DanglingReference] = Field(default_factory=list)

    def by_kind(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for record in self.records:
            counts[record.kind.value] = counts.get(record.kind.value, 0) + 1
        return counts


# Expected (source kind, target kind) for each relationship.
ENDPOINT_KINDS: dict[EdgeKind, tuple[set[EntityKind], set[EntityKind]]] = {
    EdgeKind.REQUIREMENT: ({EntityKind.ELEMENT}, {EntityKind.PUZZLE}),
    EdgeKind.REWARD: ({EntityKind.PUZZLE}, {EntityKind.ELEMENT}),
    EdgeKind.OWNERSHIP: ({EntityKind.CHARACTER}, {EntityKind.ELEMENT}),
    EdgeKind.TIMELINE: ({EntityKind.TIMELINE}, {EntityKind.CHARACTER, EntityKind.ELEMENT}),
    EdgeKind.CHAIN: ({EntityKind.PUZZLE}, {EntityKind.PUZZLE}),
    EdgeKind.CONTAINER: ({EntityKind.ELEMENT}, {EntityKind.ELEMENT}),
}


# A raw reference before validation: (record, field it came from, owner id).
_Candidate = tuple[RelationshipRecord, str, str]


def _ids(values: Iterable[Optional[str]]) -> Iterator[str]:
    for value in values:
        if value:
            yield value


# ---------------------------------------------------------------------------
# Per-entity extractors
# ---------------------------------------------------------------------------

def extract_character_relationships(character: Character) -> list[_Candidate]:
    candidates = []
    for element_id in _ids(character.owned_element_ids):
        record = RelationshipRecord(source=character.id, target=element_id, kind=EdgeKind.OWNERSHIP)
        candidates.append((record, "owned_element_ids", element_id))
    for event_id in _ids(character.event_ids):
        record = RelationshipRecord(source=event_id, target=character.id, kind=EdgeKind.TIMELINE)
        candidates.append((record, "event_ids", event_id))
    return candidates


def extract_element_relationships(element: Element) -> list[_Candidate]:
    candidates = []
    for puzzle_id in _ids(element.required_for_puzzle_ids):
        record = RelationshipRecord(source=element.id, target=puzzle_id, kind=EdgeKind.REQUIREMENT)
        candidates.append((record, "required_for_puzzle_ids", puzzle_id))
    for puzzle_id in _ids(element.rewarded_by_puzzle_ids):
        record = RelationshipRecord(source=puzzle_id, target=element.id, kind=EdgeKind.REWARD)
        candidates.append((record, "rewarded_by_puzzle_ids", puzzle_id))
    if element.owner_id:
        record = RelationshipRecord(source=element.owner_id, target=element.id, kind=EdgeKind.OWNERSHIP)
        candidates.append((record, "owner_id", element.owner_id))
    if element.container_id:
        record = RelationshipRecord(source=element.container_id, target=element.id, kind=EdgeKind.CONTAINER)
        candidates.append((record, "container_id", element.container_id))
    for content_id in _ids(element.content_ids):
        record = RelationshipRecord(source=element.id, target=content_id, kind=EdgeKind.CONTAINER)
        candidates.append((record, "content_ids", content_id))
    if element.timeline_event_id:
        record = RelationshipRecord(source=element.timeline_event_id, target=element.id, kind=EdgeKind.TIMELINE)
        candidates.append((record, "timeline_event_id", element.timeline_event_id))
    return candidates


def extract_puzzle_relationships(puzzle: Puzzle) -> list[_Candidate]:
    candidates = []
    for element_id in _ids(puzzle.puzzle_element_ids):
        record = RelationshipRecord(source=element_id, target=puzzle.id, kind=EdgeKind.REQUIREMENT)
        candidates.append((record, "puzzle_element_ids", element_id))
    for element_id in _ids(puzzle.reward_ids):
        record = RelationshipRecord(source=puzzle.id, target=element_id, kind=EdgeKind.REWARD)
        candidates.append((record, "reward_ids", element_id))
    for sub_id in _ids(puzzle.sub_puzzle_ids):
        record = RelationshipRecord(source=puzzle.id, target=sub_id, kind=EdgeKind.CHAIN)
        candidates.append((record, "sub_puzzle_ids", sub_id))
    if puzzle.parent_item_id:
        record = RelationshipRecord(source=puzzle.parent_item_id, target=puzzle.id, kind=EdgeKind.CHAIN)
        candidates.append((record, "parent_item_id", puzzle.parent_item_id))
    return candidates


def extract_timeline_relationships(event: TimelineEvent) -> list[_Candidate]:
    candidates = []
    for character_id in _ids(event.characters_involved_ids):
        record = RelationshipRecord(source=event.id, target=character_id, kind=EdgeKind.TIMELINE)
        candidates.append((record, "characters_involved_ids", character_id))
    for element_id in _ids(event.memory_evidence_ids):
        record = RelationshipRecord(source=event.id, target=element_id, kind=EdgeKind.TIMELINE)
        candidates.append((record, "memory_evidence_ids", element_id))
    return candidates


# ---------------------------------------------------------------------------
# Whole-snapshot extraction
# ---------------------------------------------------------------------------

def _candidates(game: GameData) -> Iterator[tuple[str, _Candidate]]:
    for character in game.characters:
        for candidate in extract_character_relationships(character):
            yield character.id, candidate
    for element in game.elements:
        for candidate in extract_element_relationships(element):
            yield element.id, candidate
    for puzzle in game.puzzles:
        for candidate in extract_puzzle_relationships(puzzle):
            yield puzzle.id, candidate
    for event in game.timeline:
        for candidate in extract_timeline_relationships(event):
            yield event.id, candidate


def extract_relationships_with_report(
    game: GameData,
    logger: Optional[logging.Logger] = None,
) -> ExtractionReport:
    """Extract every relationship and collect the references that were skipped."""
    log = logger or logging.getLogger(__name__)
    report = ExtractionReport()
    seen: set[tuple[str, str, str]] = set()

    for owner_id, (record, field, referenced_id) in _candidates(game):
        source_kind = game.kind_of(record.source)
        target_kind = game.kind_of(record.target)
        if source_kind is None or target_kind is None:
            log.debug(f"Skipping {record.kind.value} {record.source} -> {record.target}: "
                      f"{owner_id}.{field} references missing id {referenced_id}")
            report.dangling.append(DanglingReference(
                entity_id=owner_id, field=field, missing_id=referenced_id,
            ))
            continue

        allowed_sources, allowed_targets = ENDPOINT_KINDS[record.kind]
        if source_kind not in allowed_sources or target_kind not in allowed_targets:
            log.debug(f"Skipping {record.kind.value} {record.source} -> {record.target}: "
                      f"{source_kind.value} -> {target_kind.value} is not a valid pairing")
            report.dangling.append(DanglingReference(
                entity_id=owner_id, field=field, missing_id=referenced_id, reason="wrong-kind",
            ))
            continue

        key = (record.kind.value, record.source, record.target)
        if key in seen:
            continue
        seen.add(key)
        report.records.append(record)

    if report.dangling:
        log.warning(f"Skipped {len(report.dangling)} dangling relationship references")
    log.info(f"Extracted {len(report.records)} relationships")
    return report


def extract_relationships(game: GameData, logger: Optional[logging.Logger] = None) -> list[RelationshipRecord]:
    return extract_relationships_with_report(game, logger=logger).records
