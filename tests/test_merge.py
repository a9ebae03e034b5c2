"""Tests for src.core.merge — merging time slots into one."""

import logging

import pytest

from src.core.merge import merge_slots
from src.data.models import SlotStatus, TimeSlot, parse_timestamp


def _slot(slot_id, start, end, status=SlotStatus.AVAILABLE, notes="", user_id=1, is_locked=False):
    return TimeSlot(
        id=slot_id,
        project_id=10,
        user_id=user_id,
        created_by_id=user_id,
        start_time=parse_timestamp(start),
        end_time=parse_timestamp(end),
        status=status,
        notes=notes,
        is_locked=is_locked,
    )


class TestMergeSlots:
    def test_two_slots_span_and_notes(self):
        merged = merge_slots(
            [
                _slot(1, "2024-05-01T09:00:00Z", "2024-05-01T10:00:00Z", notes="x"),
                _slot(2, "2024-05-01T10:30:00Z", "2024-05-01T11:30:00Z", notes="y"),
            ],
            requested_by=7,
        )
        assert merged.start_time == parse_timestamp("2024-05-01T09:00:00Z")
        assert merged.end_time == parse_timestamp("2024-05-01T11:30:00Z")
        assert merged.status is SlotStatus.AVAILABLE
        assert merged.notes == "x; y"
        assert merged.created_by_id == 7
        assert merged.is_locked is False

    def test_input_order_does_not_matter(self):
        a = _slot(1, "2024-05-03T00:00:00Z", "2024-05-03T23:59:59Z", SlotStatus.BUSY, "late")
        b = _slot(2, "2024-05-01T00:00:00Z", "2024-05-01T23:59:59Z", SlotStatus.AVAILABLE, "early")
        first = merge_slots([a, b], requested_by=1)
        second = merge_slots([b, a], requested_by=1)
        assert first == second
        assert first.status is SlotStatus.AVAILABLE
        assert first.notes == "early; late"

    def test_any_locked_makes_merged_locked(self):
        merged = merge_slots(
            [
                _slot(1, "2024-05-01T00:00:00Z", "2024-05-01T23:59:59Z"),
                _slot(2, "2024-05-02T00:00:00Z", "2024-05-02T23:59:59Z", is_locked=True),
            ],
            requested_by=1,
        )
        assert merged.is_locked is True

    def test_end_is_max_not_last(self):
        merged = merge_slots(
            [
                _slot(1, "2024-05-01T00:00:00Z", "2024-05-10T00:00:00Z"),
                _slot(2, "2024-05-02T00:00:00Z", "2024-05-03T00:00:00Z"),
            ],
            requested_by=1,
        )
        assert merged.end_time == parse_timestamp("2024-05-10T00:00:00Z")

    def test_explicit_notes_win(self):
        merged = merge_slots(
            [_slot(1, "2024-05-01T00:00:00Z", "2024-05-01T01:00:00Z", notes="x")],
            requested_by=1,
            merged_notes="combined",
        )
        assert merged.notes == "combined"

    def test_empty_notes_are_skipped(self):
        merged = merge_slots(
            [
                _slot(1, "2024-05-01T00:00:00Z", "2024-05-01T01:00:00Z", notes=""),
                _slot(2, "2024-05-01T02:00:00Z", "2024-05-01T03:00:00Z", notes="only"),
            ],
            requested_by=1,
        )
        assert merged.notes == "only"

    def test_equal_start_tie_broken_by_lowest_id(self):
        merged = merge_slots(
            [
                _slot(8, "2024-05-01T00:00:00Z", "2024-05-01T05:00:00Z", SlotStatus.BUSY, user_id=3),
                _slot(4, "2024-05-01T00:00:00Z", "2024-05-01T02:00:00Z", SlotStatus.AVAILABLE, user_id=2),
            ],
            requested_by=1,
        )
        assert merged.status is SlotStatus.AVAILABLE
        assert merged.user_id == 2

    def test_mixed_owners_accepted_and_logged(self, caplog):
        with caplog.at_level(logging.INFO, logger="src.core.merge"):
            merged = merge_slots(
                [
                    _slot(1, "2024-05-01T00:00:00Z", "2024-05-01T01:00:00Z", user_id=5),
                    _slot(2, "2024-05-02T00:00:00Z", "2024-05-02T01:00:00Z", user_id=6),
                ],
                requested_by=5,
            )
        assert merged.user_id == 5
        assert "mixed owners" in caplog.text

    def test_empty_input_is_programming_error(self):
        with pytest.raises(ValueError):
            merge_slots([], requested_by=1)
