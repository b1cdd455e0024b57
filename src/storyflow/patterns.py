"""SF_ gameplay-pattern metadata embedded in element descriptions.

Four tags are recognised, each case-insensitive:

    SF_RFID: [DEVICE_001]
    SF_ValueRating: [4]              (1 = minor, 5 = critical)
    SF_MemoryType: [Technical]       (Personal x1, Business x3, Technical x5)
    SF_Group: [Security Team (x2.5)] (optional multiplier, 1 to 10)

The memory-type multiplier and the group multiplier combine by product.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from .models import SFMetadata


SF_PATTERNS = {
    "rfid": re.compile(r"SF_RFID:\s*\[([^\]]+)\]", re.IGNORECASE),
    "value_rating": re.compile(r"SF_ValueRating:\s*\[(\d+)\]", re.IGNORECASE),
    "memory_type": re.compile(r"SF_MemoryType:\s*\[(Personal|Business|Technical)\]", re.IGNORECASE),
    "group": re.compile(r"SF_Group:\s*\[([^\]]+?)(?:\s*\(x(\d+(?:\.\d+)?)\))?\]", re.IGNORECASE),
}

PATTERN_NAMES = ("SF_RFID", "SF_ValueRating", "SF_MemoryType", "SF_Group")

MEMORY_TYPE_MULTIPLIERS = {
    "Personal": 1.0,
    "Business": 3.0,
    "Technical": 5.0,
}

VALUE_RATING_RANGE = (1, 5)
GROUP_MULTIPLIER_RANGE = (1.0, 10.0)


def has_sf_patterns(text: Optional[str]) -> bool:
    """Quick check for any SF_ tag."""
    if not text:
        return False
    return any(pattern.search(text) for pattern in SF_PATTERNS.values())


def extract_sf_metadata(text: Optional[str], logger: Optional[logging.Logger] = None) -> SFMetadata:
    """Parse every SF_ tag in ``text``.

    Out-of-range ratings and group multipliers are dropped with a warning;
    the rest of the metadata is still returned.
    """
    log = logger or logging.getLogger(__name__)
    if not text:
        return SFMetadata()

    fields: dict = {}

    match = SF_PATTERNS["rfid"].search(text)
    if match:
        fields["rfid"] = match.group(1).strip()

    match = SF_PATTERNS["value_rating"].search(text)
    if match:
        value = int(match.group(1))
        low, high = VALUE_RATING_RANGE
        if low <= value <= high:
            fields["value_rating"] = value
        else:
            log.warning(f"SF_ValueRating out of range ({low}-{high}): {value}")

    memory_type = None
    match = SF_PATTERNS["memory_type"].search(text)
    if match:
        memory_type = match.group(1).capitalize()
        fields["memory_type"] = memory_type

    group_multiplier = None
    match = SF_PATTERNS["group"].search(text)
    if match:
        fields["group"] = match.group(1).strip()
        if match.group(2):
            value = float(match.group(2))
            low, high = GROUP_MULTIPLIER_RANGE
            if low <= value <= high:
                group_multiplier = value
                fields["group_multiplier"] = value
            else:
                log.warning(f"Invalid group multiplier: {match.group(2)}")

    multiplier = 1.0
    if memory_type:
        multiplier = MEMORY_TYPE_MULTIPLIERS[memory_type]
    if group_multiplier:
        multiplier *= group_multiplier
    fields["multiplier"] = multiplier

    metadata = SFMetadata(**fields)
    found = found_patterns(metadata)
    if found and len(found) < len(PATTERN_NAMES):
        missing = [name for name in PATTERN_NAMES if name not in found]
        log.debug(f"Incomplete SF_ metadata, missing patterns: {', '.join(missing)}")
    return metadata


def found_patterns(metadata: SFMetadata) -> list[str]:
    """Names of the tags that were present in the source text."""
    values = (metadata.rfid, metadata.value_rating, metadata.memory_type, metadata.group)
    return [name for name, value in zip(PATTERN_NAMES, values) if value]


def format_sf_metadata(metadata: SFMetadata) -> str:
    """One-line summary, e.g. ``RFID: X | Value: 4/5 | Type: Technical``."""
    parts = []
    if metadata.rfid:
        parts.append(f"RFID: {metadata.rfid}")
    if metadata.value_rating:
        parts.append(f"Value: {metadata.value_rating}/5")
    if metadata.memory_type:
        parts.append(f"Type: {metadata.memory_type}")
    if metadata.group:
        parts.append(f"Group: {metadata.group}")
    if metadata.multiplier != 1.0:
        parts.append(f"Multiplier: x{metadata.multiplier:g}")
    return " | ".join(parts)
