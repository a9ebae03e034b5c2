"""
Overlay Plans — Chat session context.

Each chat user has exactly one context describing where they are in the
conversation. Contexts are explicit tagged variants, loaded at the start of a
request and saved at the end through a small keyed store.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated, Literal, Protocol, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from src.core.extractor import CandidateSlot
from src.core.llm import MAX_HISTORY_MESSAGES

if TYPE_CHECKING:
    from src.data.db import SessionDB

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------


class Initial(BaseModel):
    kind: Literal["initial"] = "initial"


class SelectingProject(BaseModel):
    kind: Literal["selecting_project"] = "selecting_project"


class _Conversation(BaseModel):
    history: list[tuple[str, str]] = Field(default_factory=list)

    def remember(self, role: str, content: str) -> None:
        """Append a turn, keeping only the most recent ones."""
        if not content:
            return
        self.history.append((role, content))
        del self.history[:-MAX_HISTORY_MESSAGES]


class InProject(_Conversation):
    kind: Literal["in_project"] = "in_project"
    project_id: int
    acting_for_user_id: int | None = None


class AwaitingConfirmation(_Conversation):
    kind: Literal["awaiting_confirmation"] = "awaiting_confirmation"
    project_id: int
    candidates: list[CandidateSlot]
    for_user_id: int | None = None


SessionState = Annotated[
    Union[Initial, SelectingProject, InProject, AwaitingConfirmation],
    Field(discriminator="kind"),
]

_adapter: TypeAdapter = TypeAdapter(SessionState)


def dump_state(state: SessionState) -> str:
    return _adapter.dump_json(state, by_alias=True).decode()


def load_state(payload: str | None) -> SessionState:
    """Parse a stored context; anything unreadable starts over as Initial."""
    if not payload:
        return Initial()
    try:
        return _adapter.validate_json(payload)
    except ValidationError as exc:
        logger.warning("Discarding unreadable session context: %s", exc.error_count())
        return Initial()


def back_to_project(state: AwaitingConfirmation) -> InProject:
    return InProject(
        project_id=state.project_id,
        acting_for_user_id=state.for_user_id,
        history=list(state.history),
    )


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class SessionStore(Protocol):
    def get(self, user_id: int) -> SessionState: ...

    def set(self, user_id: int, state: SessionState) -> None: ...

    def clear(self, user_id: int) -> None: ...


class InMemorySessionStore:
    """Process-local store. Keeps serialized copies so callers never share objects."""

    def __init__(self) -> None:
        self._data: dict[int, str] = {}

    def get(self, user_id: int) -> SessionState:
        return load_state(self._data.get(user_id))

    def set(self, user_id: int, state: SessionState) -> None:
        self._data[user_id] = dump_state(state)

    def clear(self, user_id: int) -> None:
        self._data.pop(user_id, None)


class SqliteSessionStore:
    """Contexts persisted as JSON in the chat_sessions table."""

    def __init__(self, session_db: SessionDB) -> None:
        self._db = session_db

    @staticmethod
    def _key(user_id: int) -> str:
        return f"user:{user_id}"

    def get(self, user_id: int) -> SessionState:
        return load_state(self._db.get(self._key(user_id)))

    def set(self, user_id: int, state: SessionState) -> None:
        self._db.set(self._key(user_id), dump_state(state))

    def clear(self, user_id: int) -> None:
        self._db.delete(self._key(user_id))
