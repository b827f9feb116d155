"""Project, chapter and version writes.

Each public function performs one multi-step change inside :func:`atomic`, so a
failure part-way leaves the database exactly as it was.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass
from typing import List, Optional

from ..models import Chapter, Project, User, Version
from ..storage import atomic

_TAG_PATTERN = re.compile(r"<[^>]*>")
_WHITESPACE_PATTERN = re.compile(r"\s+")

RESTORE_VERSION_LABEL = "Before restore"


class ManuscriptError(RuntimeError):
    """Raised when a manuscript change is rejected."""


@dataclass
class ChapterUpdate:
    content: Optional[str] = None
    title: Optional[str] = None
    create_version: bool = False
    version_label: Optional[str] = None


def strip_markup(content: Optional[str]) -> str:
    """Return the plain text of rich-text ``content`` with tags replaced by spaces."""

    if not content:
        return ""
    return html.unescape(_TAG_PATTERN.sub(" ", content)).strip()


def count_words(content: Optional[str]) -> int:
    # Entities are not unescaped, so a lone "&nbsp;" counts as one word.
    if not content:
        return 0
    plain = _TAG_PATTERN.sub(" ", content).strip()
    if not plain:
        return 0
    return len([word for word in _WHITESPACE_PATTERN.split(plain) if word])


def create_project(owner: User, title: str, description: Optional[str] = None) -> Project:
    """Create ``project`` together with its first, empty chapter."""

    cleaned_title = (title or "").strip()
    if not cleaned_title:
        raise ManuscriptError("Title is required")

    with atomic() as session:
        project = Project(
            owner=owner,
            title=cleaned_title,
            description=(description or "").strip() or None,
        )
        session.add(project)
        session.add(Chapter(project=project, title="Chapter 1", content="", order=0, word_count=0))
    return project


def add_chapter(project: Project, title: Optional[str] = None) -> Chapter:
    with atomic() as session:
        existing = (
            Chapter.query.filter_by(project_id=project.id).order_by(Chapter.order.asc()).all()
        )
        next_order = max((chapter.order for chapter in existing), default=-1) + 1
        chapter = Chapter(
            project=project,
            title=(title or "").strip() or f"Chapter {len(existing) + 1}",
            content="",
            order=next_order,
            word_count=0,
        )
        session.add(chapter)
        project.touch()
    return chapter


def update_chapter(chapter: Chapter, update: ChapterUpdate) -> Optional[Version]:
    """Apply an auto-save.

    With ``create_version`` the chapter's current, pre-update content is first
    stored as an immutable :class:`Version`.  Empty chapters are not snapshotted.
    Returns the new version, if one was written.
    """

    if update.title is not None and not update.title.strip():
        raise ManuscriptError("Title cannot be empty")

    version: Optional[Version] = None
    with atomic() as session:
        if update.create_version and chapter.content:
            version = Version(
                chapter=chapter,
                content=chapter.content,
                word_count=chapter.word_count or 0,
                label=(update.version_label or "").strip() or None,
            )
            session.add(version)

        if update.title is not None:
            chapter.title = update.title.strip()
        if update.content is not None:
            chapter.content = update.content
            chapter.word_count = count_words(update.content)
        chapter.project.touch()
    return version


def delete_chapter(chapter: Chapter) -> List[Chapter]:
    """Delete ``chapter`` and re-densify the order of its siblings.

    Returns the remaining chapters in their new order.
    """

    project = chapter.project
    with atomic() as session:
        session.delete(chapter)
        session.flush()
        remaining = (
            Chapter.query.filter_by(project_id=project.id).order_by(Chapter.order.asc(), Chapter.id.asc()).all()
        )
        for index, sibling in enumerate(remaining):
            sibling.order = index
        project.touch()
    return remaining


def restore_version(chapter: Chapter, version: Version) -> Optional[Version]:
    """Restore ``version`` into ``chapter`` after snapshotting the current draft."""

    if version.chapter_id != chapter.id:
        raise ManuscriptError("Version does not belong to this chapter")
    return update_chapter(
        chapter,
        ChapterUpdate(content=version.content, create_version=True, version_label=RESTORE_VERSION_LABEL),
    )


def list_versions(chapter: Chapter) -> List[Version]:
    return (
        Version.query.filter_by(chapter_id=chapter.id)
        .order_by(Version.created_at.desc(), Version.id.desc())
        .all()
    )


def manuscript_text(project: Project) -> str:
    """Plain-text manuscript with chapter headings, in chapter order."""

    sections = []
    for chapter in Chapter.query.filter_by(project_id=project.id).order_by(Chapter.order.asc()).all():
        plain = strip_markup(chapter.content)
        if plain:
            sections.append(f"## {chapter.title}\n\n{plain}")
    return "\n\n".join(sections)


def delete_project(project: Project) -> None:
    with atomic() as session:
        session.delete(project)


def update_project(
    project: Project,
    title: Optional[str] = None,
    description: Optional[str] = None,
    *,
    description_set: bool = False,
) -> Project:
    with atomic():
        if title and title.strip():
            project.title = title.strip()
        if description_set:
            project.description = (description or "").strip() or None
        project.touch()
    return project

