"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures like temp DBs and a wired-up time slot store.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("LLM_API_KEY", "fake-llm-key-for-tests")
os.environ.setdefault("LLM_PROVIDER", "gemini")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")

import pytest


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path shared by all tables of one test."""
    return str(tmp_path / "test_overlay.db")


@pytest.fixture
def user_db(tmp_db_path):
    from src.data.db import UserDB
    return UserDB(db_path=tmp_db_path)


@pytest.fixture
def project_db(tmp_db_path):
    from src.data.db import ProjectDB
    return ProjectDB(db_path=tmp_db_path)


@pytest.fixture
def slot_db(tmp_db_path):
    from src.data.db import TimeSlotDB
    return TimeSlotDB(db_path=tmp_db_path)


@pytest.fixture
def session_db(tmp_db_path):
    from src.data.db import SessionDB
    return SessionDB(db_path=tmp_db_path)


@pytest.fixture
def directory(user_db, project_db):
    from src.core.directory import Directory
    return Directory(user_db, project_db)


@pytest.fixture
def hub():
    from src.core.notifier import ChangeHub
    return ChangeHub()


@pytest.fixture
def service(slot_db, user_db, project_db, hub):
    from src.core.timeslot_service import TimeslotService
    return TimeslotService(slot_db, user_db, project_db, notifier=hub)


@pytest.fixture
def people(directory):
    """Three registered users and one project holding all of them."""
    alice = directory.resolve_user("1001", first_name="Alice")
    bob = directory.resolve_user("1002", first_name="Bob")
    carol = directory.resolve_user("1003", first_name="Carol")
    project = directory.create_project("Trip", "Summer trip", owner_id=alice.id)
    directory.add_member(project.id, bob.id)
    directory.add_member(project.id, carol.id)
    return alice, bob, carol, directory.get_project(project.id)
