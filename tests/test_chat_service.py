"""Tests for src.core.chat_service — chat turn orchestration."""

from unittest.mock import AsyncMock, patch

import pytest

from src.core.chat_service import (
    ChatService,
    ErrorResponse,
    ProposalResponse,
    ResponseKind,
    StatusChangedResponse,
    SuccessResponse,
    ToolAppliedResponse,
)
from src.core.directory import DEFAULT_PROJECT_NAME
from src.core.errors import ErrorKind
from src.core.extractor import CandidateSlot, ExtractionResult, StatusChangeAnalysis
from src.core.llm import ToolCall
from src.core.session import AwaitingConfirmation, InMemorySessionStore, InProject, SelectingProject
from src.core.tools import ToolName
from src.data.models import SlotStatus

_MAY = {"startTime": "2024-05-01T00:00:00Z", "endTime": "2024-05-01T23:59:59Z"}


def _candidate(status="available", **extra):
    return CandidateSlot(**_MAY, status=status, **extra)


def _extraction(*candidates, text="Noted!"):
    return ExtractionResult(response_text=text, candidate_slots=list(candidates))


@pytest.fixture
def sessions():
    return InMemorySessionStore()


@pytest.fixture
def chat(service, directory, sessions):
    return ChatService(service, directory, sessions)


@pytest.fixture(autouse=True)
def no_tool_call():
    """Most turns do not edit existing slots."""
    with patch("src.core.chat_service.plan_slot_operation", AsyncMock(return_value=None)) as mock:
        yield mock


def _no_change():
    return AsyncMock(return_value=StatusChangeAnalysis())


# ---------------------------------------------------------------------------
# Registration and project context
# ---------------------------------------------------------------------------


class TestRegistration:
    def test_register_creates_default_project(self, chat, sessions):
        user, project = chat.register(42, first_name="Ann")
        assert project.name == DEFAULT_PROJECT_NAME
        assert isinstance(sessions.get(user.id), SelectingProject)
        again, same = chat.register(42)
        assert (again.id, same.id) == (user.id, project.id)

    def test_register_keeps_active_project(self, chat, sessions):
        user, project = chat.register(42)
        chat.select_project(user, project.id)
        chat.register(42)
        assert isinstance(sessions.get(user.id), InProject)

    def test_select_project_joins(self, chat, people):
        alice, _, _, project = people
        dave, _ = chat.register("2000")
        selected = chat.select_project(dave, project.id)
        assert selected.id == project.id
        assert chat.current_project(dave).id == project.id
        assert dave.id in chat.current_project(dave).member_ids

    def test_select_unknown_project(self, chat):
        user, _ = chat.register(1)
        assert chat.select_project(user, 999) is None
        assert chat.current_project(user) is None


class TestActingFor:
    def test_act_for_member(self, chat, people):
        alice, bob, _, project = people
        chat.select_project(alice, project.id)
        assert chat.act_for(alice, bob.id).id == bob.id
        assert chat.acting_for(alice).id == bob.id
        assert chat.act_for(alice, None) is None
        assert chat.acting_for(alice) is None

    def test_act_for_outsider_refused(self, chat, directory, people):
        alice, _, _, project = people
        outsider = directory.resolve_user("9999")
        chat.select_project(alice, project.id)
        assert chat.act_for(alice, outsider.id) is None
        assert chat.acting_for(alice) is None

    def test_act_for_needs_project(self, chat, people):
        alice, bob, _, _ = people
        assert chat.act_for(alice, bob.id) is None

    def test_find_members_excludes_self(self, chat, people):
        alice, bob, carol, project = people
        chat.select_project(alice, project.id)
        assert [u.id for u in chat.find_members(alice, "a")] == [carol.id]
        assert [u.id for u in chat.find_members(alice, "bob")] == [bob.id]


# ---------------------------------------------------------------------------
# Processing messages
# ---------------------------------------------------------------------------


class TestProcessText:
    @pytest.mark.asyncio
    async def test_needs_project(self, chat):
        user, _ = chat.register(1)
        response = await chat.process_text(user, "free on Monday")
        assert response.kind is ResponseKind.NEEDS_PROJECT

    @pytest.mark.asyncio
    async def test_new_slots_are_proposed_then_approved(self, chat, sessions, service, people):
        alice, _, _, project = people
        chat.select_project(alice, project.id)
        extract = AsyncMock(return_value=_extraction(_candidate(label="Holiday")))
        with patch("src.core.chat_service.extract_timeslots", extract):
            response = await chat.process_text(alice, "free on 1 May")

        assert isinstance(response, ProposalResponse)
        assert response.message == "Noted!"
        assert response.for_user is None
        state = sessions.get(alice.id)
        assert isinstance(state, AwaitingConfirmation)
        assert state.history == [("user", "free on 1 May"), ("assistant", "Noted!")]
        assert service.get_user_timeslots(project.id, alice.id) == []

        approved = await chat.approve(alice)
        assert isinstance(approved, SuccessResponse)
        [slot] = approved.slots
        assert slot.label == "Holiday"
        assert slot.is_locked is False
        assert isinstance(sessions.get(alice.id), InProject)

    @pytest.mark.asyncio
    async def test_approve_and_lock(self, chat, people):
        alice, _, _, project = people
        chat.select_project(alice, project.id)
        with patch("src.core.chat_service.extract_timeslots", AsyncMock(return_value=_extraction(_candidate()))):
            await chat.process_text(alice, "free on 1 May")
        approved = await chat.approve(alice, lock=True)
        assert approved.locked is True
        assert approved.slots[0].is_locked is True

    @pytest.mark.asyncio
    async def test_proposal_for_other_member(self, chat, service, people):
        alice, bob, _, project = people
        chat.select_project(alice, project.id)
        chat.act_for(alice, bob.id)
        with patch("src.core.chat_service.extract_timeslots", AsyncMock(return_value=_extraction(_candidate()))):
            response = await chat.process_text(alice, "Bob is free on 1 May")
        assert response.for_user.id == bob.id

        approved = await chat.approve(alice, lock=True)
        [slot] = approved.slots
        assert slot.user_id == bob.id
        assert slot.created_by_id == alice.id
        assert slot.is_locked is False
        assert approved.for_user.id == bob.id

    @pytest.mark.asyncio
    async def test_reject_discards_proposal(self, chat, sessions, service, people):
        alice, _, _, project = people
        chat.select_project(alice, project.id)
        with patch("src.core.chat_service.extract_timeslots", AsyncMock(return_value=_extraction(_candidate()))):
            await chat.process_text(alice, "free on 1 May")
        assert chat.reject(alice).kind is ResponseKind.REJECTED
        assert isinstance(sessions.get(alice.id), InProject)
        assert (await chat.approve(alice)).kind is ResponseKind.NO_ACTION
        assert service.get_user_timeslots(project.id, alice.id) == []

    @pytest.mark.asyncio
    async def test_nothing_extracted(self, chat, people):
        alice, _, _, project = people
        chat.select_project(alice, project.id)
        with patch("src.core.chat_service.extract_timeslots", AsyncMock(return_value=_extraction(text="I only do calendars"))):
            response = await chat.process_text(alice, "tell me a joke")
        assert response.kind is ResponseKind.NO_ACTION
        assert response.message == "I only do calendars"

    @pytest.mark.asyncio
    async def test_confident_analysis_changes_status(self, chat, service, people):
        alice, _, _, project = people
        chat.select_project(alice, project.id)
        [slot] = (await service.add_timeslots(project.id, alice.id, [{**_MAY, "status": "available"}])).data
        analysis = StatusChangeAnalysis(
            isChangeRequest=True, confidence=0.95, targetStatus="busy", slotIds=[slot.id],
        )
        extract = AsyncMock()
        with patch("src.core.chat_service.analyze_status_change", AsyncMock(return_value=analysis)), \
             patch("src.core.chat_service.extract_timeslots", extract):
            response = await chat.process_text(alice, "actually I'm busy that day")

        assert isinstance(response, StatusChangedResponse)
        assert response.slots[0].status is SlotStatus.BUSY
        extract.assert_not_called()

    @pytest.mark.asyncio
    async def test_heuristic_change_when_analysis_unsure(self, chat, service, people):
        alice, _, _, project = people
        chat.select_project(alice, project.id)
        [slot] = (await service.add_timeslots(project.id, alice.id, [{**_MAY, "status": "available"}])).data
        unsure = StatusChangeAnalysis(isChangeRequest=True, confidence=0.2, slotIds=[slot.id])
        with patch("src.core.chat_service.analyze_status_change", AsyncMock(return_value=unsure)), \
             patch("src.core.chat_service.extract_timeslots", AsyncMock(return_value=_extraction(_candidate("busy")))):
            response = await chat.process_text(alice, "change 1 May to busy")

        assert response.kind is ResponseKind.STATUS_CHANGED
        assert service.get_user_timeslots(project.id, alice.id)[0].status is SlotStatus.BUSY

    @pytest.mark.asyncio
    async def test_locked_slot_change_is_forbidden(self, chat, service, people):
        alice, bob, carol, project = people
        [slot] = (await service.add_timeslots(
            project.id, bob.id, [{**_MAY, "status": "available", "isLocked": True}],
        )).data
        chat.select_project(carol, project.id)
        chat.act_for(carol, bob.id)
        analysis = StatusChangeAnalysis(
            isChangeRequest=True, confidence=0.9, targetStatus="busy", slotIds=[slot.id],
        )
        with patch("src.core.chat_service.analyze_status_change", AsyncMock(return_value=analysis)):
            response = await chat.process_text(carol, "Bob is busy on 1 May")

        assert isinstance(response, ErrorResponse)
        assert response.error_kind is ErrorKind.FORBIDDEN
        assert service.get_user_timeslots(project.id, bob.id)[0].status is SlotStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_generic_error(self, chat, people):
        alice, _, _, project = people
        chat.select_project(alice, project.id)
        with patch("src.core.chat_service.extract_timeslots", AsyncMock(side_effect=RuntimeError("boom"))):
            response = await chat.process_text(alice, "free on 1 May")
        assert response.kind is ResponseKind.ERROR
        assert response.error_kind is ErrorKind.INTERNAL_ERROR
        assert "boom" not in response.message

    @pytest.mark.asyncio
    async def test_new_message_replaces_pending_proposal(self, chat, sessions, people):
        alice, _, _, project = people
        chat.select_project(alice, project.id)
        with patch("src.core.chat_service.extract_timeslots", AsyncMock(return_value=_extraction(_candidate()))):
            await chat.process_text(alice, "free on 1 May")
        with patch("src.core.chat_service.extract_timeslots", AsyncMock(return_value=_extraction(text="Hm?"))):
            await chat.process_text(alice, "never mind")
        assert isinstance(sessions.get(alice.id), InProject)


# ---------------------------------------------------------------------------
# Edits chosen by the LLM
# ---------------------------------------------------------------------------


def _plan(name, **arguments):
    return AsyncMock(return_value=ToolCall(name, arguments))


class TestToolCalls:
    @pytest.mark.asyncio
    async def test_delete_from_chat(self, chat, service, people):
        alice, _, _, project = people
        chat.select_project(alice, project.id)
        [slot] = (await service.add_timeslots(project.id, alice.id, [{**_MAY, "status": "available"}])).data
        extract = AsyncMock()

        with patch("src.core.chat_service.plan_slot_operation", _plan("project_delete_timeslots", timeslotIds=[slot.id])), \
             patch("src.core.chat_service.extract_timeslots", extract):
            response = await chat.process_text(alice, "delete my 1 May slot")

        assert isinstance(response, ToolAppliedResponse)
        assert response.tool is ToolName.DELETE
        assert response.deleted_count == 1
        assert service.get_user_timeslots(project.id, alice.id) == []
        extract.assert_not_called()

    @pytest.mark.asyncio
    async def test_merge_from_chat(self, chat, service, people):
        alice, _, _, project = people
        chat.select_project(alice, project.id)
        slots = (await service.add_timeslots(project.id, alice.id, [
            {**_MAY, "status": "available"},
            {"startTime": "2024-05-02T00:00:00Z", "endTime": "2024-05-02T23:59:59Z", "status": "available"},
        ])).data

        plan = _plan("project_merge_timeslots", timeslotIds=[s.id for s in slots], mergedNotes="long weekend")
        with patch("src.core.chat_service.plan_slot_operation", plan):
            response = await chat.process_text(alice, "merge my May slots")

        assert response.kind is ResponseKind.TOOL_APPLIED
        [merged] = response.slots
        assert merged.notes == "long weekend"
        assert [s.id for s in service.get_user_timeslots(project.id, alice.id)] == [merged.id]

    @pytest.mark.asyncio
    async def test_context_fields_come_from_the_session(self, chat, service, people):
        alice, bob, carol, project = people
        [slot] = (await service.add_timeslots(
            project.id, bob.id, [{**_MAY, "status": "available", "isLocked": True}],
        )).data
        chat.select_project(carol, project.id)
        chat.act_for(carol, bob.id)

        # the model cannot pose as the slot owner
        plan = _plan(
            "project_update_timeslots",
            requestUserId=bob.id, projectId=999,
            timeslots=[{"id": slot.id, "status": "busy"}],
        )
        with patch("src.core.chat_service.plan_slot_operation", plan):
            response = await chat.process_text(carol, "Bob is busy on 1 May")

        assert isinstance(response, ErrorResponse)
        assert response.error_kind is ErrorKind.FORBIDDEN
        assert service.get_user_timeslots(project.id, bob.id)[0].status is SlotStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_no_call_falls_through_to_analysis(self, chat, service, people, no_tool_call):
        alice, _, _, project = people
        chat.select_project(alice, project.id)
        await service.add_timeslots(project.id, alice.id, [{**_MAY, "status": "available"}])

        with patch("src.core.chat_service.analyze_status_change", _no_change()), \
             patch("src.core.chat_service.extract_timeslots", AsyncMock(return_value=_extraction(text="Hm?"))):
            response = await chat.process_text(alice, "what's up")

        assert response.kind is ResponseKind.NO_ACTION
        no_tool_call.assert_called_once()
