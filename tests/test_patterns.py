"""Tests for SF_ pattern extraction from element descriptions."""

import logging

from storyflow.patterns import (
    extract_sf_metadata,
    format_sf_metadata,
    found_patterns,
    has_sf_patterns,
)


FULL_TEXT = (
    "A keycard. SF_RFID: [DEVICE_001] SF_ValueRating: [5] "
    "SF_MemoryType: [Technical] SF_Group: [Security Team (x2.5)]"
)


class TestExtraction:

    def test_all_patterns(self):
        metadata = extract_sf_metadata(FULL_TEXT)
        assert metadata.rfid == "DEVICE_001"
        assert metadata.value_rating == 5
        assert metadata.memory_type == "Technical"
        assert metadata.group == "Security Team"
        assert metadata.group_multiplier == 2.5
        assert metadata.multiplier == 12.5

    def test_case_insensitive(self):
        metadata = extract_sf_metadata("sf_memorytype: [business]")
        assert metadata.memory_type == "Business"
        assert metadata.multiplier == 3.0

    def test_group_without_multiplier(self):
        metadata = extract_sf_metadata("SF_Group: [Book Club]")
        assert metadata.group == "Book Club"
        assert metadata.group_multiplier is None
        assert metadata.multiplier == 1.0

    def test_out_of_range_rating_dropped(self, caplog):
        with caplog.at_level(logging.WARNING):
            metadata = extract_sf_metadata("SF_RFID: [X] SF_ValueRating: [9]")
        assert metadata.value_rating is None
        assert metadata.rfid == "X"
        assert "out of range" in caplog.text

    def test_out_of_range_group_multiplier_dropped(self):
        metadata = extract_sf_metadata("SF_Group: [Mob (x20)]")
        assert metadata.group == "Mob"
        assert metadata.group_multiplier is None
        assert metadata.multiplier == 1.0

    def test_empty_text(self):
        assert extract_sf_metadata(None).is_empty()
        assert extract_sf_metadata("").is_empty()
        assert extract_sf_metadata("no tags at all").is_empty()


def test_has_sf_patterns():
    assert has_sf_patterns(FULL_TEXT)
    assert not has_sf_patterns("plain prose")
    assert not has_sf_patterns(None)


def test_found_patterns_lists_present_tags():
    metadata = extract_sf_metadata("SF_RFID: [A] SF_MemoryType: [Personal]")
    assert found_patterns(metadata) == ["SF_RFID", "SF_MemoryType"]


def test_format_summary():
    summary = format_sf_metadata(extract_sf_metadata(FULL_TEXT))
    assert summary == (
        "RFID: DEVICE_001 | Value: 5/5 | Type: Technical | Group: Security Team | Multiplier: x12.5"
    )
