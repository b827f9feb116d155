"""Ownership checks shared by the request handlers."""
from __future__ import annotations

from flask_login import current_user

from .errors import NotFoundError, UnauthorizedError
from .extensions import db
from .models import Chapter, Project


def owned_project(project_id: int) -> Project:
    """Load ``project_id`` for the signed-in user.

    Missing projects raise 404; projects belonging to someone else raise 401.
    """

    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project not found")
    if project.owner_id != current_user.id:
        raise UnauthorizedError()
    return project


def owned_chapter(chapter_id: int) -> Chapter:
    chapter = db.session.get(Chapter, chapter_id)
    if chapter is None:
        raise NotFoundError("Chapter not found")
    if chapter.project.owner_id != current_user.id:
        raise UnauthorizedError()
    return chapter
