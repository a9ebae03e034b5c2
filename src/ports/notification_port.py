"""Notification port — where committed time slot changes are announced.

Core modules depend on this protocol, never on a specific transport.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

TIMESLOTS_UPDATED = "timeslots_updated"


@dataclass(frozen=True)
class TimeslotsUpdated:
    """One committed Add/Update/Delete/Merge. `user_id` is set only for Add."""

    project_id: int
    user_id: int | None = None

    def to_wire(self) -> dict:
        payload: dict = {"projectId": self.project_id}
        if self.user_id is not None:
            payload["userId"] = self.user_id
        return payload


class NotificationPort(Protocol):
    """Abstract change feed used by the time slot store."""

    def publish(self, event: TimeslotsUpdated) -> None: ...
