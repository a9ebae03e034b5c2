"""
Overlay Plans — Identity & Project Directory.

Turns external chat handles into internal users, owns project records and
membership, and gives every new user a starter project.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from src.core.errors import ErrorKind, TimeslotError

if TYPE_CHECKING:
    from src.data.db import ProjectDB, UserDB
    from src.data.models import Project, User

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_NAME = "My First Project"
DEFAULT_PROJECT_DESCRIPTION = "This is your first project created automatically."


class Directory:
    """Users and projects, as referenced by the time slot store."""

    def __init__(self, user_db: UserDB, project_db: ProjectDB, default_language: str = "en") -> None:
        self._users = user_db
        self._projects = project_db
        self._default_language = default_language
        # Synchronous methods cannot await an asyncio.Lock; this also covers other threads
        self._default_lock = threading.Lock()

    # -- users ----------------------------------------------------------

    def resolve_user(
        self,
        external_handle: str | int,
        first_name: str = "",
        last_name: str = "",
        username: str = "",
    ) -> User:
        """Return the user for a handle, registering on first sight.

        Display fields are refreshed on every contact for existing users.
        """
        handle = str(external_handle)
        user, created = self._users.get_or_create(
            handle, first_name, last_name, username, language=self._default_language,
        )
        if not created and (first_name or last_name or username):
            self._users.update_profile(
                user.id,
                first_name=first_name or None,
                last_name=last_name or None,
                username=username or None,
            )
            user = self._users.get_user(user.id) or user
        return user

    def get_user(self, user_id: int) -> User | None:
        return self._users.get_user(user_id)

    def find_user_by_handle(self, external_handle: str | int) -> User | None:
        return self._users.get_by_handle(str(external_handle))

    def set_language(self, user_id: int, language: str) -> None:
        self._users.set_language(user_id, language)

    def update_profile(self, user_id: int, **fields: str | None) -> None:
        self._users.update_profile(user_id, **fields)

    # -- projects -------------------------------------------------------

    def resolve_project(self, project_id: int) -> Project:
        """Fetch a project or raise a NOT_FOUND error."""
        project = self._projects.get_project(project_id)
        if project is None:
            raise TimeslotError(
                ErrorKind.NOT_FOUND, f"Project with ID {project_id} not found", [project_id],
            )
        return project

    def get_project(self, project_id: int) -> Project | None:
        return self._projects.get_project(project_id)

    def ensure_default_project(self, user: User) -> Project:
        """Give `user` a starter project if they belong to none yet."""
        with self._default_lock:
            existing = self._projects.list_for_user(user.id)
            if existing:
                return existing[0]
            project = self._projects.create_project(
                DEFAULT_PROJECT_NAME, DEFAULT_PROJECT_DESCRIPTION, member_ids=[user.id],
            )
        logger.info("Default project #%d created for user #%d", project.id, user.id)
        return project

    def create_project(self, name: str, description: str = "", owner_id: int | None = None) -> Project:
        name = name.strip()
        if not name:
            raise TimeslotError(ErrorKind.VALIDATION_ERROR, "Project name must not be empty")
        members = [owner_id] if owner_id is not None else []
        return self._projects.create_project(name, description, member_ids=members)

    def add_member(self, project_id: int, user_id: int) -> bool:
        self.resolve_project(project_id)
        if self._users.get_user(user_id) is None:
            raise TimeslotError(
                ErrorKind.NOT_FOUND, f"User with ID {user_id} not found", [user_id],
            )
        return self._projects.add_member(project_id, user_id)

    def list_projects_for_user(self, user_id: int) -> list[Project]:
        return self._projects.list_for_user(user_id)

    def list_members(self, project_id: int) -> list[User]:
        return self._projects.list_members(project_id)

    def is_member(self, project_id: int, user_id: int) -> bool:
        project = self._projects.get_project(project_id)
        return project is not None and user_id in project.member_ids

    def search_members(self, project_id: int, query: str) -> list[User]:
        """Members whose first, last or user name contains `query` (any case)."""
        needle = query.strip().lstrip("@").casefold()
        if not needle:
            return []
        return [
            user for user in self._projects.list_members(project_id)
            if needle in user.first_name.casefold()
            or needle in user.last_name.casefold()
            or needle in user.username.casefold()
            or needle in user.display_name.casefold()
        ]
