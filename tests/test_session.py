"""Tests for src.core.session — chat contexts and their stores."""

import pytest

from src.core.extractor import CandidateSlot
from src.core.llm import MAX_HISTORY_MESSAGES
from src.core.session import (
    AwaitingConfirmation,
    InMemorySessionStore,
    Initial,
    InProject,
    SelectingProject,
    SqliteSessionStore,
    back_to_project,
    dump_state,
    load_state,
)


def _candidate():
    return CandidateSlot(
        startTime="2024-05-01T00:00:00Z", endTime="2024-05-09T23:59:59Z",
        status="available", label="Vacation",
    )


class TestSerialization:
    def test_awaiting_confirmation_survives_storage(self):
        state = AwaitingConfirmation(
            project_id=10, candidates=[_candidate()], for_user_id=3, history=[("user", "hi")],
        )
        loaded = load_state(dump_state(state))
        assert isinstance(loaded, AwaitingConfirmation)
        assert loaded.candidates[0].start_time == state.candidates[0].start_time
        assert loaded.candidates[0].label == "Vacation"
        assert loaded.for_user_id == 3
        assert loaded.history == [("user", "hi")]

    def test_kind_picks_variant(self):
        assert isinstance(load_state(dump_state(SelectingProject())), SelectingProject)
        assert isinstance(load_state('{"kind": "in_project", "project_id": 4}'), InProject)

    @pytest.mark.parametrize("payload", [None, "", "not json", '{"kind": "lost"}'])
    def test_unreadable_starts_over(self, payload):
        assert isinstance(load_state(payload), Initial)


class TestConversation:
    def test_history_is_bounded(self):
        state = InProject(project_id=1)
        for i in range(MAX_HISTORY_MESSAGES + 5):
            state.remember("user", f"msg {i}")
        assert len(state.history) == MAX_HISTORY_MESSAGES
        assert state.history[-1] == ("user", f"msg {MAX_HISTORY_MESSAGES + 4}")

    def test_empty_turns_skipped(self):
        state = InProject(project_id=1)
        state.remember("assistant", "")
        assert state.history == []

    def test_back_to_project_keeps_target_and_history(self):
        waiting = AwaitingConfirmation(
            project_id=10, candidates=[], for_user_id=3, history=[("user", "x")],
        )
        state = back_to_project(waiting)
        assert isinstance(state, InProject)
        assert state.project_id == 10
        assert state.acting_for_user_id == 3
        assert state.history == [("user", "x")]


class TestStores:
    def test_in_memory_round_trip(self):
        store = InMemorySessionStore()
        assert isinstance(store.get(1), Initial)
        store.set(1, InProject(project_id=5))
        state = store.get(1)
        state.project_id = 6
        assert store.get(1).project_id == 5
        store.clear(1)
        assert isinstance(store.get(1), Initial)

    def test_sqlite_persists_across_instances(self, session_db, tmp_db_path):
        from src.data.db import SessionDB

        SqliteSessionStore(session_db).set(7, InProject(project_id=2, acting_for_user_id=8))
        reopened = SqliteSessionStore(SessionDB(db_path=tmp_db_path))
        state = reopened.get(7)
        assert isinstance(state, InProject)
        assert state.acting_for_user_id == 8
        reopened.clear(7)
        assert isinstance(reopened.get(7), Initial)
