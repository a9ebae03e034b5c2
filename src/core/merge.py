"""
Overlay Plans — Time Slot Merge.

Collapses several existing slots into one spanning record. The earliest slot
(ties broken by lowest id) decides status and owner; slots with different
owners or statuses are merged without complaint.
"""

from __future__ import annotations

import logging

from src.data.models import NewTimeSlot, TimeSlot

logger = logging.getLogger(__name__)


def merge_slots(
    slots: list[TimeSlot],
    requested_by: int,
    merged_notes: str | None = None,
) -> NewTimeSlot:
    """Compute the single slot that replaces `slots`.

    Args:
        slots: Validated slots from one project. Must not be empty.
        requested_by: Internal id of the user asking for the merge; becomes
            the creator of the merged slot.
        merged_notes: Explicit notes. When empty, the non-empty notes of the
            originals are joined with "; " in start-time order.

    Raises:
        ValueError: If `slots` is empty (caller bug, never user input).
    """
    if not slots:
        raise ValueError("merge_slots() needs at least one time slot")

    ordered = sorted(slots, key=lambda s: (s.start_time, s.id))
    first = ordered[0]

    if len({s.user_id for s in ordered}) > 1 or len({s.status for s in ordered}) > 1:
        logger.info(
            "Merging slots %s with mixed owners/statuses; keeping user #%d, %s",
            [s.id for s in ordered], first.user_id, first.status.value,
        )

    notes = merged_notes or "; ".join(s.notes for s in ordered if s.notes)

    return NewTimeSlot(
        project_id=first.project_id,
        user_id=first.user_id,
        created_by_id=requested_by,
        start_time=first.start_time,
        end_time=max(s.end_time for s in ordered),
        status=first.status,
        notes=notes,
        is_locked=any(s.is_locked for s in ordered),
    )
