"""
Overlay Plans — UI-Agnostic Chat Service.

Orchestrates one chat turn: load the user's session context, ask the LLM
whether the message edits existing slots or describes new ones, reconcile,
and either apply the edit right away or propose new slots for approval.

Each UI adapter calls this service and renders the response objects in its
own way. Nothing here sends messages or knows about a chat platform.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from src.core.errors import ErrorKind
from src.core.extractor import analyze_status_change, extract_timeslots, plan_slot_operation
from src.core.reconciler import AddSlots, ChangeStatus, reconcile
from src.core.schemas import TimeslotUpdate
from src.core.session import AwaitingConfirmation, InProject, SelectingProject, back_to_project
from src.core.tools import ToolName, dispatch

if TYPE_CHECKING:
    from src.core.directory import Directory
    from src.core.errors import OperationResult
    from src.core.extractor import CandidateSlot
    from src.core.llm import ToolCall
    from src.core.session import SessionState, SessionStore
    from src.core.timeslot_service import TimeslotService
    from src.data.models import Project, TimeSlot, User

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Response types
# ---------------------------------------------------------------------------


class ResponseKind(Enum):
    PROPOSAL = "proposal"
    STATUS_CHANGED = "status_changed"
    TOOL_APPLIED = "tool_applied"
    SUCCESS = "success"
    REJECTED = "rejected"
    NO_ACTION = "no_action"
    NEEDS_PROJECT = "needs_project"
    ERROR = "error"


@dataclass
class ServiceResponse:
    kind: ResponseKind
    message: str = ""


@dataclass
class ProposalResponse(ServiceResponse):
    candidates: list[CandidateSlot] = field(default_factory=list)
    for_user: User | None = None


@dataclass
class StatusChangedResponse(ServiceResponse):
    slots: list[TimeSlot] = field(default_factory=list)


@dataclass
class ToolAppliedResponse(ServiceResponse):
    tool: ToolName | None = None
    slots: list[TimeSlot] = field(default_factory=list)
    deleted_count: int = 0


@dataclass
class SuccessResponse(ServiceResponse):
    slots: list[TimeSlot] = field(default_factory=list)
    locked: bool = False
    for_user: User | None = None


@dataclass
class NoActionResponse(ServiceResponse):
    pass


@dataclass
class ErrorResponse(ServiceResponse):
    error_kind: ErrorKind | None = None


def _error_from(result: OperationResult) -> ErrorResponse:
    # Internal failures already carry a generic message
    return ErrorResponse(
        kind=ResponseKind.ERROR, message=result.error, error_kind=result.error_kind,
    )


class ChatService:
    """Chat turn orchestration on top of the directory and the time slot store.

    Returns structured response objects and never sends messages itself.
    """

    def __init__(
        self,
        timeslots: TimeslotService,
        directory: Directory,
        sessions: SessionStore,
        threshold: float = 0.7,
    ) -> None:
        self._timeslots = timeslots
        self._directory = directory
        self._sessions = sessions
        self._threshold = threshold

    # ------------------------------------------------------------------
    # Public: registration and project context
    # ------------------------------------------------------------------

    def register(
        self,
        external_handle: str | int,
        first_name: str = "",
        last_name: str = "",
        username: str = "",
    ) -> tuple[User, Project]:
        """Resolve the user and make sure they have at least one project."""
        user = self._directory.resolve_user(external_handle, first_name, last_name, username)
        project = self._directory.ensure_default_project(user)
        state = self._sessions.get(user.id)
        if not isinstance(state, (InProject, AwaitingConfirmation)):
            self._sessions.set(user.id, SelectingProject())
        return user, project

    def list_projects(self, user: User) -> list[Project]:
        return self._directory.list_projects_for_user(user.id)

    def select_project(self, user: User, project_id: int) -> Project | None:
        """Enter a project, joining it on first visit."""
        project = self._directory.get_project(project_id)
        if project is None:
            return None
        if user.id not in project.member_ids:
            self._directory.add_member(project_id, user.id)
        self._sessions.set(user.id, InProject(project_id=project_id))
        logger.info("User #%d entered project #%d", user.id, project_id)
        return project

    def current_project(self, user: User) -> Project | None:
        state = self._sessions.get(user.id)
        if not isinstance(state, (InProject, AwaitingConfirmation)):
            return None
        return self._directory.get_project(state.project_id)

    def acting_for(self, user: User) -> User | None:
        """The member the user is currently scheduling for, if not themselves."""
        state = self._sessions.get(user.id)
        target_id = None
        if isinstance(state, InProject):
            target_id = state.acting_for_user_id
        elif isinstance(state, AwaitingConfirmation):
            target_id = state.for_user_id
        return self._directory.get_user(target_id) if target_id else None

    def find_members(self, user: User, query: str) -> list[User]:
        project = self.current_project(user)
        if project is None:
            return []
        return [m for m in self._directory.search_members(project.id, query) if m.id != user.id]

    def act_for(self, user: User, target_user_id: int | None) -> User | None:
        """Schedule on behalf of `target_user_id` (None or self resets).

        Returns the target user, or None when acting for oneself or when the
        target is not a member of the current project.
        """
        state = self._sessions.get(user.id)
        if isinstance(state, AwaitingConfirmation):
            state = back_to_project(state)
        if not isinstance(state, InProject):
            return None

        target = None
        if target_user_id is not None and target_user_id != user.id:
            if not self._directory.is_member(state.project_id, target_user_id):
                return None
            target = self._directory.get_user(target_user_id)
        state.acting_for_user_id = target.id if target else None
        self._sessions.set(user.id, state)
        return target

    def user_timeslots(self, user: User) -> list[TimeSlot]:
        project = self.current_project(user)
        if project is None:
            return []
        target = self.acting_for(user) or user
        return self._timeslots.get_user_timeslots(project.id, target.id)

    # ------------------------------------------------------------------
    # Public: process a message
    # ------------------------------------------------------------------

    async def process_text(self, user: User, text: str) -> ServiceResponse:
        """Turn one chat message into a proposal, a status change or nothing."""
        state = self._sessions.get(user.id)
        if isinstance(state, AwaitingConfirmation):
            # A new message replaces whatever was waiting for approval
            state = back_to_project(state)
        if not isinstance(state, InProject):
            return ServiceResponse(kind=ResponseKind.NEEDS_PROJECT)

        project = self._directory.get_project(state.project_id)
        if project is None:
            self._sessions.set(user.id, SelectingProject())
            return ServiceResponse(kind=ResponseKind.NEEDS_PROJECT)

        try:
            response, new_state = await self._handle(user, project, state, text)
        except Exception as exc:
            logger.error("Error processing message from user #%d: %s", user.id, exc, exc_info=True)
            return ErrorResponse(
                kind=ResponseKind.ERROR,
                message="Error processing message",
                error_kind=ErrorKind.INTERNAL_ERROR,
            )

        new_state.remember("user", text)
        new_state.remember("assistant", response.message)
        self._sessions.set(user.id, new_state)
        return response

    async def _handle(
        self, user: User, project: Project, state: InProject, text: str,
    ) -> tuple[ServiceResponse, SessionState]:
        target_id = state.acting_for_user_id or user.id
        existing = self._timeslots.get_user_timeslots(project.id, target_id)
        history = list(state.history)

        if existing:
            call = await plan_slot_operation(text, existing, history)
            if call is not None:
                return await self._apply_tool_call(user, project, call), state

            analysis = await analyze_status_change(text, existing, history)
            if analysis.is_change_request and analysis.confidence >= self._threshold:
                decision = reconcile(text, [], existing, analysis, self._threshold)
                if isinstance(decision, ChangeStatus):
                    return await self._apply_status_change(user, project, decision), state

        members = self._directory.list_members(project.id)
        extraction = await extract_timeslots(text, project.name, existing, members, history)
        decision = reconcile(text, extraction.candidate_slots, existing, None, self._threshold)

        if isinstance(decision, ChangeStatus):
            return await self._apply_status_change(user, project, decision), state

        if isinstance(decision, AddSlots):
            for_user = self._directory.get_user(target_id) if target_id != user.id else None
            pending = AwaitingConfirmation(
                project_id=project.id,
                candidates=decision.candidates,
                for_user_id=state.acting_for_user_id,
                history=history,
            )
            response = ProposalResponse(
                kind=ResponseKind.PROPOSAL,
                message=extraction.response_text,
                candidates=decision.candidates,
                for_user=for_user,
            )
            return response, pending

        return NoActionResponse(kind=ResponseKind.NO_ACTION, message=extraction.response_text), state

    async def _apply_tool_call(self, user: User, project: Project, call: ToolCall) -> ServiceResponse:
        """Run an edit the LLM chose, scoped to the current project and user."""
        args = {k: v for k, v in call.arguments.items() if k != "requestUserHandle"}
        args.update(projectId=project.id, requestUserId=user.id)
        result = await dispatch(call.name, args, self._timeslots)
        if not result.success:
            return _error_from(result)

        tool = ToolName(call.name)
        logger.info("%s applied by user #%d in project #%d", tool.value, user.id, project.id)
        if tool is ToolName.DELETE:
            return ToolAppliedResponse(kind=ResponseKind.TOOL_APPLIED, tool=tool, deleted_count=result.data)
        return ToolAppliedResponse(kind=ResponseKind.TOOL_APPLIED, tool=tool, slots=result.data)

    async def _apply_status_change(
        self, user: User, project: Project, decision: ChangeStatus,
    ) -> ServiceResponse:
        updates = [TimeslotUpdate(id=u.slot_id, status=u.status) for u in decision.updates]
        result = await self._timeslots.update_timeslots(project.id, updates, user.id)
        if not result.success:
            return _error_from(result)
        logger.info(
            "Status of %d slot(s) changed by user #%d in project #%d",
            len(result.data), user.id, project.id,
        )
        return StatusChangedResponse(kind=ResponseKind.STATUS_CHANGED, slots=result.data)

    # ------------------------------------------------------------------
    # Public: approval
    # ------------------------------------------------------------------

    async def approve(self, user: User, lock: bool = False) -> ServiceResponse:
        """Store the pending proposal. Locking is only allowed for one's own slots."""
        state = self._sessions.get(user.id)
        if not isinstance(state, AwaitingConfirmation) or not state.candidates:
            return NoActionResponse(kind=ResponseKind.NO_ACTION)

        for_user_id = state.for_user_id or user.id
        lock = lock and for_user_id == user.id
        items = [
            cand.model_copy(update={"is_locked": lock or cand.is_locked})
            for cand in state.candidates
        ]

        result = await self._timeslots.add_timeslots(
            state.project_id, for_user_id, items, created_by_id=user.id,
        )
        self._sessions.set(user.id, back_to_project(state))
        if not result.success:
            return _error_from(result)

        for_user = self._directory.get_user(for_user_id) if for_user_id != user.id else None
        return SuccessResponse(
            kind=ResponseKind.SUCCESS, slots=result.data, locked=lock, for_user=for_user,
        )

    def reject(self, user: User) -> ServiceResponse:
        state = self._sessions.get(user.id)
        if isinstance(state, AwaitingConfirmation):
            self._sessions.set(user.id, back_to_project(state))
        return ServiceResponse(kind=ResponseKind.REJECTED)
