"""
Overlay Plans — Intent extraction.

Turns a free-form chat message into candidate time slots (and a short reply
for the user) using the configured LLM provider. A second prompt asks whether
the message is really about changing the status of slots the user already has,
and a third offers the edit, delete and merge tools for those slots.

None of them raises: provider errors and malformed JSON degrade to an
empty result so the chat flow can report that nothing was identified.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.core.llm import History, ToolCall, complete, complete_with_tools
from src.core.schemas import TimeslotItem
from src.core.tools import ToolName, chat_tool_schemas
from src.data.models import SlotStatus, format_timestamp, utc_now

if TYPE_CHECKING:
    from src.data.models import TimeSlot, User

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Shared JSON contract
# ---------------------------------------------------------------------------


class CandidateSlot(TimeslotItem):
    """A slot the LLM read out of the message.

    JSON example:
    {
        "startTime": "2024-05-01T00:00:00.000Z",
        "endTime": "2024-05-09T23:59:59.000Z",
        "status": "available",
        "notes": "Trip to Lisbon",
        "label": "Vacation"
    }

    `id` is only present when the message points at an existing slot.
    """

    id: int | None = None


@dataclass
class ExtractionResult:
    response_text: str = ""
    candidate_slots: list[CandidateSlot] = field(default_factory=list)


class StatusChangeAnalysis(BaseModel):
    """The LLM's opinion on whether a message flips existing slots.

    JSON example:
    {
        "isChangeRequest": true,
        "confidence": 0.9,
        "targetStatus": "busy",
        "slotIds": [12, 13],
        "reasoning": "User says they now have to work on those days"
    }
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_change_request: bool = Field(False, alias="isChangeRequest")
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    target_status: SlotStatus | None = Field(None, alias="targetStatus")
    slot_ids: list[int] = Field(default_factory=list, alias="slotIds")
    reasoning: str = ""


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_EXTRACT_PROMPT = """\
You are an assistant helping users manage their schedule in a shared project planner.
Today's date and time is {now}.

## About timeslots
A timeslot is a period when a user is either "available" or "busy":
- startTime: ISO-8601 UTC, always at 00:00:00 of the first day
- endTime: ISO-8601 UTC, always at 23:59:59 of the last day
- status: "available" or "busy"
- notes: optional description of what the timeslot is for
- label: short descriptive label (1-5 words). If the user does not give one, ALWAYS make one up from context.

## Project
Project name: "{project_name}"
Members:
{members}

## The user's current timeslots
{slots}

## Time rules
- Timeslots cover FULL DAYS only, never hours.
- Create the LONGEST possible continuous intervals. "1 to 9 May" is ONE slot spanning 9 days.
- Consecutive days with the same status are ALWAYS one slot.
- Default to current or upcoming dates when no date is mentioned.

## Status rules
The goal is to find out when people are free to meet.
- "available": vacations, holidays, personal time off.
- "busy": work, meetings, deadlines, birthdays or other personal events needing attention.

## Language
Reply in the same language the user wrote in.

## Output
Return ONLY a JSON object, no markdown, no explanation:
{{"response": "short reply for the user", "timeslots": [{{"startTime": "...", "endTime": "...", "status": "available|busy", "notes": "...", "label": "..."}}]}}

If the message is not about scheduling, return an empty "timeslots" array and a short,
friendly, slightly funny "response" (50-100 characters) reminding them you are a scheduling bot.
"""

_STATUS_CHANGE_PROMPT = """\
You decide whether a user wants to CHANGE THE STATUS of timeslots they already have,
as opposed to adding new ones. Today's date is {today}.

The user's timeslots (id, dates, status, label, notes):
{slots}

A change request refers to existing entries by date range, position ("the first one",
"the last one") or description, and asks to mark them available/busy or to flip them.

Return ONLY a JSON object, no markdown, no explanation:
{{"isChangeRequest": true|false, "confidence": 0.0-1.0, "targetStatus": "available"|"busy"|null,
"slotIds": [ids of the timeslots to change], "reasoning": "one sentence"}}

Set "targetStatus" to null when the user asks to switch or toggle without naming a status.
"""

_OPERATION_PROMPT = """\
You manage the timeslots a user already has in a shared project planner.
Today's date is {today}.

The user's timeslots (id, dates, status, label, notes):
{slots}

Call a tool ONLY when the user asks to change, remove or combine timeslots listed above:
- project_update_timeslots: new dates, status, label, notes or color for listed slots
- project_delete_timeslots: remove listed slots
- project_merge_timeslots: combine two or more listed slots into one
Refer to slots by id. Dates cover full days: startTime at 00:00:00, endTime at 23:59:59 UTC.
If the message describes new availability, or no listed slot matches, do not call any tool.
"""

_CHAT_TOOLS = [ToolName.UPDATE, ToolName.DELETE, ToolName.MERGE]


def _describe_slots(slots: list[TimeSlot]) -> str:
    if not slots:
        return "(none)"
    lines = []
    for slot in slots:
        start = slot.start_time.date().isoformat()
        end = slot.end_time.date().isoformat()
        span = start if start == end else f"{start} to {end}"
        label = f" [{slot.label}]" if slot.label else ""
        notes = f' "{slot.notes}"' if slot.notes else ""
        lines.append(f"- #{slot.id} {span} ({slot.status.value}){label}{notes}")
    return "\n".join(lines)


def _describe_members(members: list[User]) -> str:
    if not members:
        return "(none)"
    return "\n".join(
        f"- {m.display_name}" + (f" (@{m.username})" if m.username else "") for m in members
    )


# ---------------------------------------------------------------------------
# Response cleaning
# ---------------------------------------------------------------------------


def _clean_llm_response(raw_text: str) -> str:
    """Remove markdown code block delimiters from LLM's raw response."""
    cleaned_text = (raw_text or "").strip()
    if cleaned_text.startswith("```json"):
        cleaned_text = cleaned_text.removeprefix("```json")
    elif cleaned_text.startswith("```"):
        cleaned_text = cleaned_text.removeprefix("```")
    if cleaned_text.endswith("```"):
        cleaned_text = cleaned_text.removesuffix("```")
    return cleaned_text.strip()


def _parse_candidates(items: object) -> list[CandidateSlot]:
    if isinstance(items, dict):
        items = [items]
    if not isinstance(items, list):
        logger.warning("LLM returned unexpected timeslots type: %s", type(items).__name__)
        return []

    candidates: list[CandidateSlot] = []
    for item in items:
        if not isinstance(item, dict):
            logger.warning("Skipping non-dict timeslot: %s", item)
            continue
        try:
            candidates.append(CandidateSlot.model_validate(item))
        except ValidationError as exc:
            logger.warning("Skipping invalid timeslot %s: %s", item, exc.error_count())
    return candidates


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def extract_timeslots(
    message: str,
    project_name: str,
    existing_slots: list[TimeSlot],
    members: list[User] | None = None,
    history: History | None = None,
    now: datetime | None = None,
) -> ExtractionResult:
    """Ask the LLM for candidate slots and a reply. Never raises."""
    system_prompt = _EXTRACT_PROMPT.format(
        now=format_timestamp(now or utc_now()),
        project_name=project_name,
        members=_describe_members(members or []),
        slots=_describe_slots(existing_slots),
    )

    raw_text = ""
    try:
        raw_text = await complete(
            system=system_prompt,
            user_message=message,
            max_tokens=1024,
            history=history,
        )
        raw_text = _clean_llm_response(raw_text)
        logger.debug("LLM raw extraction: %s", raw_text)

        if not raw_text or raw_text == "null":
            return ExtractionResult()

        data = json.loads(raw_text)
        if isinstance(data, list):
            return ExtractionResult(candidate_slots=_parse_candidates(data))
        if not isinstance(data, dict):
            logger.warning("LLM returned unexpected type: %s", type(data).__name__)
            return ExtractionResult()

        result = ExtractionResult(
            response_text=str(data.get("response") or ""),
            candidate_slots=_parse_candidates(data.get("timeslots") or []),
        )
        logger.info("Extracted %d candidate slot(s) from: %s", len(result.candidate_slots), message[:80])
        return result

    except json.JSONDecodeError as exc:
        logger.error("Failed to parse LLM response as JSON: %s — raw: '%s'", exc, raw_text)
        # plain-text reply
        return ExtractionResult(response_text=raw_text if not raw_text.startswith(("{", "[")) else "")
    except Exception as exc:
        logger.error("Unexpected error in extract_timeslots: %s", exc)
        return ExtractionResult()


async def analyze_status_change(
    message: str,
    slots: list[TimeSlot],
    history: History | None = None,
) -> StatusChangeAnalysis:
    """Ask the LLM whether `message` flips existing slots. Never raises."""
    if not slots:
        return StatusChangeAnalysis(reasoning="no existing timeslots")

    raw_text = ""
    try:
        raw_text = await complete(
            system=_STATUS_CHANGE_PROMPT.format(
                today=utc_now().date().isoformat(),
                slots=_describe_slots(slots),
            ),
            user_message=message,
            max_tokens=256,
            history=history,
        )
        raw_text = _clean_llm_response(raw_text)
        logger.debug("LLM status-change analysis: %s", raw_text)

        data = json.loads(raw_text)
        if not isinstance(data, dict):
            return StatusChangeAnalysis(reasoning="unexpected response")

        analysis = StatusChangeAnalysis.model_validate(data)
        known = {slot.id for slot in slots}
        analysis.slot_ids = [sid for sid in analysis.slot_ids if sid in known]
        logger.info(
            "Status-change analysis: change=%s confidence=%.2f target=%s slots=%s",
            analysis.is_change_request, analysis.confidence,
            analysis.target_status.value if analysis.target_status else None,
            analysis.slot_ids,
        )
        return analysis

    except json.JSONDecodeError as exc:
        logger.error("Failed to parse status-change JSON: %s — raw: '%s'", exc, raw_text)
        return StatusChangeAnalysis(reasoning="unparseable response")
    except ValidationError as exc:
        logger.warning("Invalid status-change analysis: %s", exc.error_count())
        return StatusChangeAnalysis(reasoning="invalid response")
    except Exception as exc:
        logger.error("Unexpected error in analyze_status_change: %s", exc)
        return StatusChangeAnalysis(reasoning="analysis failed")


def _referenced_ids(call: ToolCall) -> list:
    if call.name == ToolName.UPDATE.value:
        items = call.arguments.get("timeslots")
        if not isinstance(items, list):
            return []
        return [item.get("id") if isinstance(item, dict) else None for item in items]
    ids = call.arguments.get("timeslotIds")
    return ids if isinstance(ids, list) else []


async def plan_slot_operation(
    message: str,
    slots: list[TimeSlot],
    history: History | None = None,
) -> ToolCall | None:
    """Ask the LLM whether `message` edits, deletes or merges existing slots.

    Returns the first tool call that only touches `slots`, or None. Never raises.
    """
    if not slots:
        return None

    try:
        completion = await complete_with_tools(
            system=_OPERATION_PROMPT.format(
                today=utc_now().date().isoformat(),
                slots=_describe_slots(slots),
            ),
            user_message=message,
            tools=chat_tool_schemas(_CHAT_TOOLS),
            max_tokens=1024,
            history=history,
        )
    except Exception as exc:
        logger.error("Unexpected error in plan_slot_operation: %s", exc)
        return None

    allowed = {tool.value for tool in _CHAT_TOOLS}
    known = {slot.id for slot in slots}
    for call in completion.tool_calls:
        if call.name not in allowed:
            logger.warning("Ignoring unexpected tool call: %s", call.name)
            continue
        ids = _referenced_ids(call)
        if not ids or not all(isinstance(sid, (int, float)) and sid in known for sid in ids):
            logger.warning("Ignoring %s on unknown slot ids %s", call.name, ids)
            continue
        logger.info("Planned %s on slots %s", call.name, ids)
        return call
    return None
