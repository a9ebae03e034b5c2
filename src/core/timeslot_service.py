"""
Overlay Plans — Time Slot Store.

The only writer of time slots. Each batch operation validates everything
(project, ids, project membership of the ids, requesting user, lock policy)
before a single row is written, then commits in one transaction and
announces the change.

Batches for the same project are serialized by a per-project lock held for
the whole validate+write+publish sequence; projects never block each other.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable

from pydantic import ValidationError

from src.core.errors import ErrorKind, OperationResult, TimeslotError
from src.core.merge import merge_slots
from src.core.policy import forbidden_ids
from src.core.schemas import TimeslotItem, TimeslotUpdate
from src.data.models import NewTimeSlot, TimeSlot, utc_now
from src.ports.notification_port import TimeslotsUpdated

if TYPE_CHECKING:
    from src.data.db import ProjectDB, TimeSlotDB, UserDB
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


def _join_ids(ids: Iterable[int]) -> str:
    return ", ".join(str(i) for i in ids)


def _validation_detail(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg', 'invalid')}" if loc else err.get("msg", "invalid"))
    return "Invalid request: " + "; ".join(parts)


class TimeslotService:
    """Add / update / delete / merge time slots with all-or-nothing batches."""

    def __init__(
        self,
        slot_db: TimeSlotDB,
        user_db: UserDB,
        project_db: ProjectDB,
        notifier: NotificationPort | None = None,
    ) -> None:
        self._slots = slot_db
        self._users = user_db
        self._projects = project_db
        self._notifier = notifier
        self._locks: dict[int, asyncio.Lock] = {}

    def _lock_for(self, project_id: int) -> asyncio.Lock:
        lock = self._locks.get(project_id)
        if lock is None:
            lock = self._locks.setdefault(project_id, asyncio.Lock())
        return lock

    # ------------------------------------------------------------------
    # Shared plumbing
    # ------------------------------------------------------------------

    async def _run(
        self,
        action: str,
        project_id: int,
        body: Callable[[], tuple[Any, TimeslotsUpdated]],
    ) -> OperationResult:
        """Run `body` under the project's lock and translate failures."""
        try:
            async with self._lock_for(project_id):
                data, event = body()
                self._publish(event)
        except TimeslotError as exc:
            logger.warning("%s rejected for project %s: %s", action, project_id, exc.detail)
            return OperationResult.fail(exc)
        except ValidationError as exc:
            detail = _validation_detail(exc)
            logger.warning("%s rejected for project %s: %s", action, project_id, detail)
            return OperationResult.fail(TimeslotError(ErrorKind.VALIDATION_ERROR, detail))
        except Exception as exc:
            logger.error("Error %s for project %s: %s", action, project_id, exc, exc_info=True)
            return OperationResult.fail(
                TimeslotError(ErrorKind.INTERNAL_ERROR, f"Error {action}: internal failure")
            )
        return OperationResult.ok(data)

    def _publish(self, event: TimeslotsUpdated) -> None:
        """Hand the event to the notifier. Never lets a failure escape."""
        if self._notifier is None:
            return
        try:
            self._notifier.publish(event)
        except Exception as exc:
            logger.error("Failed to publish change for project %d: %s", event.project_id, exc)

    def _require_project(self, project_id: int) -> None:
        if self._projects.get_project(project_id) is None:
            raise TimeslotError(
                ErrorKind.NOT_FOUND, f"Project with ID {project_id} not found", [project_id],
            )

    def _require_user(self, user_id: int, role: str) -> None:
        if self._users.get_user(user_id) is None:
            raise TimeslotError(
                ErrorKind.NOT_FOUND, f"{role} with ID {user_id} not found", [user_id],
            )

    def _load_batch(
        self, project_id: int, slot_ids: list[int], request_user_id: int,
    ) -> dict[int, TimeSlot]:
        """Resolve and authorize every id of a batch, or raise."""
        if not slot_ids:
            raise TimeslotError(ErrorKind.VALIDATION_ERROR, "No timeslot ids given")

        self._require_project(project_id)

        wanted = list(dict.fromkeys(slot_ids))
        found = {slot.id: slot for slot in self._slots.get_many(wanted)}

        missing = [sid for sid in wanted if sid not in found]
        if missing:
            raise TimeslotError(
                ErrorKind.NOT_FOUND,
                f"Some timeslots were not found: {_join_ids(missing)}",
                missing,
            )

        foreign = sorted(sid for sid, slot in found.items() if slot.project_id != project_id)
        if foreign:
            raise TimeslotError(
                ErrorKind.CROSS_PROJECT_REFERENCE,
                f"Timeslots [{_join_ids(foreign)}] do not belong to project {project_id}",
                foreign,
            )

        self._require_user(request_user_id, "Requesting user")

        denied = forbidden_ids(found.values(), request_user_id)
        if denied:
            raise TimeslotError(
                ErrorKind.FORBIDDEN,
                f"User {request_user_id} cannot modify locked timeslot {_join_ids(denied)}",
                denied,
            )
        return found

    @staticmethod
    def _check_span(slot_id: int | None, start, end) -> None:
        if start > end:
            label = f"timeslot {slot_id}" if slot_id is not None else "timeslot"
            raise TimeslotError(
                ErrorKind.VALIDATION_ERROR,
                f"Start time of {label} is after its end time",
                [slot_id] if slot_id is not None else [],
            )

    # ------------------------------------------------------------------
    # Public: batch mutations
    # ------------------------------------------------------------------

    async def add_timeslots(
        self,
        project_id: int,
        user_id: int,
        items: list[TimeslotItem | dict],
        created_by_id: int | None = None,
    ) -> OperationResult:
        """Create `items` for `user_id`. Data: list of stored TimeSlot."""

        def body() -> tuple[list[TimeSlot], TimeslotsUpdated]:
            if not items:
                raise TimeslotError(ErrorKind.VALIDATION_ERROR, "No timeslots given")
            parsed = [TimeslotItem.model_validate(item) for item in items]
            for item in parsed:
                self._check_span(None, item.start_time, item.end_time)

            self._require_project(project_id)
            self._require_user(user_id, "User")
            creator_id = created_by_id or user_id
            if creator_id != user_id:
                self._require_user(creator_id, "Creator")

            new_slots = [
                NewTimeSlot(
                    project_id=project_id,
                    user_id=user_id,
                    created_by_id=creator_id,
                    start_time=item.start_time,
                    end_time=item.end_time,
                    status=item.status,
                    notes=item.notes or "",
                    label=item.label or "",
                    color=item.color or "",
                    is_locked=item.is_locked,
                )
                for item in parsed
            ]
            stored = self._slots.insert_many(new_slots)
            logger.info(
                "Added %d timeslot(s) for user #%d in project #%d (by #%d)",
                len(stored), user_id, project_id, creator_id,
            )
            return stored, TimeslotsUpdated(project_id=project_id, user_id=user_id)

        return await self._run("adding timeslots", project_id, body)

    async def update_timeslots(
        self,
        project_id: int,
        updates: list[TimeslotUpdate | dict],
        request_user_id: int,
    ) -> OperationResult:
        """Apply partial updates. Data: list of updated TimeSlot."""

        def body() -> tuple[list[TimeSlot], TimeslotsUpdated]:
            if not updates:
                raise TimeslotError(ErrorKind.VALIDATION_ERROR, "No timeslot updates given")
            parsed = [TimeslotUpdate.model_validate(u) for u in updates]
            slots = self._load_batch(project_id, [u.id for u in parsed], request_user_id)

            now = utc_now()
            touched: dict[int, TimeSlot] = {}
            for update in parsed:
                slot = touched.get(update.id) or slots[update.id]
                if update.start_time is not None:
                    slot.start_time = update.start_time
                if update.end_time is not None:
                    slot.end_time = update.end_time
                if update.status is not None:
                    slot.status = update.status
                if update.notes is not None:
                    slot.notes = update.notes
                if update.is_locked is not None:
                    slot.is_locked = update.is_locked
                if update.label is not None:
                    slot.label = update.label
                if update.color is not None:
                    slot.color = update.color
                slot.updated_at = now
                touched[slot.id] = slot

            for slot in touched.values():
                self._check_span(slot.id, slot.start_time, slot.end_time)

            stored = self._slots.save_many(list(touched.values()))
            return stored, TimeslotsUpdated(project_id=project_id)

        return await self._run("updating timeslots", project_id, body)

    async def delete_timeslots(
        self,
        project_id: int,
        timeslot_ids: list[int],
        request_user_id: int,
    ) -> OperationResult:
        """Remove slots. Data: number of deleted rows."""

        def body() -> tuple[int, TimeslotsUpdated]:
            slots = self._load_batch(project_id, list(timeslot_ids), request_user_id)
            deleted = self._slots.delete_many(slots.keys())
            return deleted, TimeslotsUpdated(project_id=project_id)

        return await self._run("deleting timeslots", project_id, body)

    async def merge_timeslots(
        self,
        project_id: int,
        timeslot_ids: list[int],
        request_user_id: int,
        merged_notes: str | None = None,
    ) -> OperationResult:
        """Collapse slots into one. Data: single-element list with the merged slot."""

        def body() -> tuple[list[TimeSlot], TimeslotsUpdated]:
            slots = self._load_batch(project_id, list(timeslot_ids), request_user_id)
            merged = merge_slots(list(slots.values()), request_user_id, merged_notes)
            stored = self._slots.replace_slots(slots.keys(), merged)
            return [stored], TimeslotsUpdated(project_id=project_id)

        return await self._run("merging timeslots", project_id, body)

    # ------------------------------------------------------------------
    # Public: reads (lock-free)
    # ------------------------------------------------------------------

    def get_user_timeslots(self, project_id: int, user_id: int) -> list[TimeSlot]:
        """A user's slots ordered by start time; empty list on failure."""
        try:
            return self._slots.list_for_user(project_id, user_id)
        except Exception as exc:
            logger.error("Error getting user time slots: %s", exc)
            return []

    def get_project_timeslots(self, project_id: int) -> list[TimeSlot]:
        """Every slot of a project ordered by start time; empty list on failure."""
        try:
            return self._slots.list_for_project(project_id)
        except Exception as exc:
            logger.error("Error getting project time slots: %s", exc)
            return []
