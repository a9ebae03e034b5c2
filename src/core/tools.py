"""
Overlay Plans — Tool dispatch.

Maps the four named time slot operations to the store. Both the chat flow
and the real-time channel go through `dispatch()`, so a request carried by
either transport is validated and executed the same way.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from pydantic import ValidationError

from src.core.errors import ErrorKind, OperationResult, TimeslotError
from src.core.schemas import (
    AddTimeslotsRequest,
    DeleteTimeslotsRequest,
    MergeTimeslotsRequest,
    UpdateTimeslotsRequest,
)

if TYPE_CHECKING:
    from src.core.timeslot_service import TimeslotService

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    ADD = "project_add_timeslots"
    UPDATE = "project_update_timeslots"
    DELETE = "project_delete_timeslots"
    MERGE = "project_merge_timeslots"


_Handler = Callable[["TimeslotService", dict], Awaitable[OperationResult]]


async def _add(service: TimeslotService, args: dict) -> OperationResult:
    req = AddTimeslotsRequest.model_validate(args)
    return await service.add_timeslots(
        req.project_id, req.user_id, req.timeslots, req.created_by_id,
    )


async def _update(service: TimeslotService, args: dict) -> OperationResult:
    req = UpdateTimeslotsRequest.model_validate(args)
    return await service.update_timeslots(req.project_id, req.timeslots, req.request_user_id)


async def _delete(service: TimeslotService, args: dict) -> OperationResult:
    req = DeleteTimeslotsRequest.model_validate(args)
    return await service.delete_timeslots(req.project_id, req.timeslot_ids, req.request_user_id)


async def _merge(service: TimeslotService, args: dict) -> OperationResult:
    req = MergeTimeslotsRequest.model_validate(args)
    return await service.merge_timeslots(
        req.project_id, req.timeslot_ids, req.request_user_id, req.merged_notes,
    )


_HANDLERS: dict[ToolName, _Handler] = {
    ToolName.ADD: _add,
    ToolName.UPDATE: _update,
    ToolName.DELETE: _delete,
    ToolName.MERGE: _merge,
}

_missing = set(ToolName) - set(_HANDLERS)
if _missing:
    raise RuntimeError(f"No handler for tool(s): {sorted(t.value for t in _missing)}")


# ---------------------------------------------------------------------------
# Tool descriptions for function-calling LLMs
# ---------------------------------------------------------------------------

_SLOT_PROPERTIES = {
    "startTime": {"type": "string", "description": "ISO-8601 start, e.g. 2024-05-01T00:00:00.000Z"},
    "endTime": {"type": "string", "description": "ISO-8601 end, e.g. 2024-05-01T23:59:59.000Z"},
    "status": {"type": "string", "enum": ["available", "busy"]},
    "notes": {"type": "string"},
    "isLocked": {"type": "boolean"},
    "label": {"type": "string", "maxLength": 100},
    "color": {"type": "string", "description": "Hex color, e.g. #FF5733", "maxLength": 7},
}

TOOL_SCHEMAS: dict[ToolName, dict] = {
    ToolName.ADD: {
        "name": ToolName.ADD.value,
        "description": "Add time slots for a user in a project.",
        "parameters": {
            "type": "object",
            "properties": {
                "projectId": {"type": "integer"},
                "userId": {"type": "integer"},
                "createdById": {"type": "integer"},
                "timeslots": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": _SLOT_PROPERTIES,
                        "required": ["startTime", "endTime", "status"],
                    },
                },
            },
            "required": ["projectId", "userId", "timeslots"],
        },
    },
    ToolName.UPDATE: {
        "name": ToolName.UPDATE.value,
        "description": "Update existing time slots; omitted fields keep their value.",
        "parameters": {
            "type": "object",
            "properties": {
                "projectId": {"type": "integer"},
                "requestUserId": {"type": "integer"},
                "timeslots": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {"id": {"type": "integer"}, **_SLOT_PROPERTIES},
                        "required": ["id"],
                    },
                },
            },
            "required": ["projectId", "requestUserId", "timeslots"],
        },
    },
    ToolName.DELETE: {
        "name": ToolName.DELETE.value,
        "description": "Delete time slots by id.",
        "parameters": {
            "type": "object",
            "properties": {
                "projectId": {"type": "integer"},
                "requestUserId": {"type": "integer"},
                "timeslotIds": {"type": "array", "items": {"type": "integer"}},
            },
            "required": ["projectId", "requestUserId", "timeslotIds"],
        },
    },
    ToolName.MERGE: {
        "name": ToolName.MERGE.value,
        "description": "Merge several time slots into one spanning slot.",
        "parameters": {
            "type": "object",
            "properties": {
                "projectId": {"type": "integer"},
                "requestUserId": {"type": "integer"},
                "timeslotIds": {"type": "array", "items": {"type": "integer"}},
                "mergedNotes": {"type": "string"},
            },
            "required": ["projectId", "requestUserId", "timeslotIds"],
        },
    },
}

# Filled in by the caller from the chat context, never chosen by the model
_CONTEXT_FIELDS = ("projectId", "requestUserId", "createdById")


def chat_tool_schemas(names: list[ToolName]) -> list[dict]:
    """Descriptions of `names` for a chat LLM, without the context fields."""
    described = []
    for name in names:
        schema = TOOL_SCHEMAS[name]
        params = schema["parameters"]
        described.append({
            "name": schema["name"],
            "description": schema["description"],
            "parameters": {
                "type": "object",
                "properties": {
                    k: v for k, v in params["properties"].items() if k not in _CONTEXT_FIELDS
                },
                "required": [k for k in params["required"] if k not in _CONTEXT_FIELDS],
            },
        })
    return described


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def dispatch(name: str | ToolName, args: dict[str, Any], service: TimeslotService) -> OperationResult:
    """Run the named operation. Unknown names and bad arguments are VALIDATION_ERROR."""
    try:
        tool = ToolName(name)
    except ValueError:
        logger.warning("Unknown tool requested: %s", name)
        return OperationResult.fail(
            TimeslotError(ErrorKind.VALIDATION_ERROR, f"Unknown operation: {name}")
        )

    if not isinstance(args, dict):
        return OperationResult.fail(
            TimeslotError(ErrorKind.VALIDATION_ERROR, "Operation arguments must be an object")
        )

    try:
        return await _HANDLERS[tool](service, args)
    except ValidationError as exc:
        detail = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        logger.warning("Invalid arguments for %s: %s", tool.value, detail)
        return OperationResult.fail(
            TimeslotError(ErrorKind.VALIDATION_ERROR, f"Invalid request: {detail}")
        )
