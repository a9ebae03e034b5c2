"""Tests for src.core.policy — lock policy."""

from datetime import datetime, timezone

from src.core.policy import can_mutate, forbidden_ids
from src.data.models import TimeSlot

_T0 = datetime(2024, 5, 1, tzinfo=timezone.utc)
_T1 = datetime(2024, 5, 2, tzinfo=timezone.utc)


def _slot(slot_id=1, user_id=2, created_by_id=1, is_locked=False):
    return TimeSlot(
        id=slot_id, project_id=10, user_id=user_id, created_by_id=created_by_id,
        start_time=_T0, end_time=_T1, is_locked=is_locked,
    )


class TestCanMutate:
    def test_unlocked_open_to_anyone(self):
        assert can_mutate(_slot(), 99) is True

    def test_locked_allows_creator(self):
        assert can_mutate(_slot(is_locked=True, created_by_id=1, user_id=2), 1) is True

    def test_locked_allows_owner(self):
        assert can_mutate(_slot(is_locked=True, created_by_id=1, user_id=2), 2) is True

    def test_locked_denies_third_party(self):
        assert can_mutate(_slot(is_locked=True, created_by_id=1, user_id=2), 3) is False


def test_forbidden_ids_sorted_and_filtered():
    slots = [
        _slot(slot_id=9, is_locked=True),
        _slot(slot_id=4),
        _slot(slot_id=5, is_locked=True),
    ]
    assert forbidden_ids(slots, 3) == [5, 9]
    assert forbidden_ids(slots, 1) == []
