"""Lock policy for mutating existing time slots."""

from __future__ import annotations

from typing import Iterable

from src.data.models import TimeSlot


def can_mutate(slot: TimeSlot, request_user_id: int) -> bool:
    """Unlocked slots are open to anyone; locked ones to creator or owner only."""
    return (
        not slot.is_locked
        or slot.created_by_id == request_user_id
        or slot.user_id == request_user_id
    )


def forbidden_ids(slots: Iterable[TimeSlot], request_user_id: int) -> list[int]:
    """Ids of the slots `request_user_id` may not touch, ascending."""
    return sorted(slot.id for slot in slots if not can_mutate(slot, request_user_id))
