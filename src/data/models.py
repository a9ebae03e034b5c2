"""
Overlay Plans — Data Models.

Users, projects and the time slots that describe when a project member is
available or busy. Time slots reference their user, creator and project by
id; the records themselves are owned by the directory tables.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class SlotStatus(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"

    def toggled(self) -> SlotStatus:
        return SlotStatus.BUSY if self is SlotStatus.AVAILABLE else SlotStatus.AVAILABLE


# ---------------------------------------------------------------------------
# Timestamps — fixed-width UTC, millisecond precision, "Z" suffix
# ---------------------------------------------------------------------------


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive values are interpreted as UTC. Raises ValueError on garbage.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Format a datetime as e.g. 2024-05-01T00:00:00.000Z."""
    dt = parse_timestamp(dt)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    """A person known to the system, registered on first contact."""

    id: int
    external_handle: str              # chat platform id, unique
    first_name: str = ""
    last_name: str = ""
    username: str = ""
    avatar_url: str = ""
    language: str = "en"
    created_at: str = ""

    @property
    def display_name(self) -> str:
        full = f"{self.first_name} {self.last_name}".strip()
        return full or self.username or f"user {self.id}"


@dataclass
class Project:
    """A collaboration scope grouping users and their time slots."""

    id: int
    name: str
    description: str = ""
    created_at: str = ""
    member_ids: list[int] = field(default_factory=list)


@dataclass
class TimeSlot:
    """A span during which `user_id` is available or busy within a project."""

    id: int
    project_id: int
    user_id: int                      # whose calendar this entry describes
    created_by_id: int                # who caused it to exist
    start_time: datetime
    end_time: datetime
    status: SlotStatus = SlotStatus.AVAILABLE
    notes: str = ""
    label: str = ""
    color: str = ""
    is_locked: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_wire(self) -> dict:
        """Serialize with the camelCase field names used on every transport."""
        return {
            "id": self.id,
            "projectId": self.project_id,
            "userId": self.user_id,
            "createdById": self.created_by_id,
            "startTime": format_timestamp(self.start_time),
            "endTime": format_timestamp(self.end_time),
            "status": self.status.value,
            "notes": self.notes,
            "label": self.label,
            "color": self.color,
            "isLocked": self.is_locked,
            "createdAt": format_timestamp(self.created_at) if self.created_at else None,
            "updatedAt": format_timestamp(self.updated_at) if self.updated_at else None,
        }


@dataclass
class NewTimeSlot:
    """A time slot that has been fully decided but not yet persisted."""

    project_id: int
    user_id: int
    created_by_id: int
    start_time: datetime
    end_time: datetime
    status: SlotStatus
    notes: str = ""
    label: str = ""
    color: str = ""
    is_locked: bool = False
