"""
Overlay Plans — Wire contracts.

Pydantic models for the inbound operation payloads. Field names on the wire
are camelCase; Python code uses the snake_case attribute names.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from src.data.models import SlotStatus, parse_timestamp


def _parse_optional_timestamp(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (str, datetime)):
        return parse_timestamp(value)
    return value


Timestamp = Annotated[datetime, BeforeValidator(_parse_optional_timestamp)]
OptionalTimestamp = Annotated[datetime | None, BeforeValidator(_parse_optional_timestamp)]


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class TimeslotItem(_WireModel):
    """One slot to create."""

    start_time: Timestamp = Field(alias="startTime")
    end_time: Timestamp = Field(alias="endTime")
    status: SlotStatus
    notes: str | None = None
    is_locked: bool = Field(False, alias="isLocked")
    label: str | None = Field(None, max_length=100)
    color: str | None = Field(None, max_length=7)


class TimeslotUpdate(_WireModel):
    """A partial update; fields left as None keep their stored value."""

    id: int
    start_time: OptionalTimestamp = Field(None, alias="startTime")
    end_time: OptionalTimestamp = Field(None, alias="endTime")
    status: SlotStatus | None = None
    notes: str | None = None
    is_locked: bool | None = Field(None, alias="isLocked")
    label: str | None = Field(None, max_length=100)
    color: str | None = Field(None, max_length=7)


class AddTimeslotsRequest(_WireModel):
    project_id: int = Field(alias="projectId")
    user_id: int = Field(alias="userId")
    timeslots: list[TimeslotItem] = Field(min_length=1)
    created_by_id: int | None = Field(None, alias="createdById")


class UpdateTimeslotsRequest(_WireModel):
    project_id: int = Field(alias="projectId")
    timeslots: list[TimeslotUpdate] = Field(min_length=1)
    request_user_id: int = Field(alias="requestUserId")


class DeleteTimeslotsRequest(_WireModel):
    project_id: int = Field(alias="projectId")
    timeslot_ids: list[int] = Field(alias="timeslotIds", min_length=1)
    request_user_id: int = Field(alias="requestUserId")


class MergeTimeslotsRequest(_WireModel):
    project_id: int = Field(alias="projectId")
    timeslot_ids: list[int] = Field(alias="timeslotIds", min_length=1)
    request_user_id: int = Field(alias="requestUserId")
    merged_notes: str | None = Field(None, alias="mergedNotes")


class GetUserTimeslotsRequest(_WireModel):
    project_id: int = Field(alias="projectId")
    user_id: int = Field(alias="userId")
