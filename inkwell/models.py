from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from flask_login import UserMixin
from sqlalchemy.orm import validates
from werkzeug.security import check_password_hash, generate_password_hash

from .extensions import db, login_manager

PLOT_THREAD_STATUSES = ("active", "resolved", "foreshadowed")
CONSISTENCY_FLAG_TYPES = ("contradiction", "unresolved", "question")
CONSISTENCY_FLAG_STATUSES = ("open", "resolved")


def normalize_name(value: Optional[str]) -> str:
    """Return the key used for case-insensitive name matching."""

    return (value or "").strip().casefold()


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    display_name = db.Column(db.String(120), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    projects = db.relationship("Project", backref="owner", lazy=True, cascade="all, delete-orphan")

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "displayName": self.display_name or self.username,
        }

    def __repr__(self) -> str:  # pragma: no cover - repr for debugging
        return f"<User {self.username}>"


@login_manager.user_loader
def load_user(user_id: str) -> Optional["User"]:
    return db.session.get(User, int(user_id))


class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    chapters = db.relationship(
        "Chapter",
        backref="project",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="Chapter.order",
    )
    characters = db.relationship("Character", backref="project", lazy=True, cascade="all, delete-orphan")
    locations = db.relationship("Location", backref="project", lazy=True, cascade="all, delete-orphan")
    items = db.relationship("StoryItem", backref="project", lazy=True, cascade="all, delete-orphan")
    timeline_events = db.relationship(
        "TimelineEvent",
        backref="project",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="TimelineEvent.order",
    )
    plot_threads = db.relationship("PlotThread", backref="project", lazy=True, cascade="all, delete-orphan")
    world_rules = db.relationship("WorldRule", backref="project", lazy=True, cascade="all, delete-orphan")
    relationships = db.relationship(
        "CharacterRelationship", backref="project", lazy=True, cascade="all, delete-orphan"
    )
    consistency_flags = db.relationship(
        "ConsistencyFlag", backref="project", lazy=True, cascade="all, delete-orphan"
    )

    def touch(self) -> None:
        self.updated_at = datetime.utcnow()

    def to_dict(self, *, include_chapters: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }
        if include_chapters:
            data["chapters"] = [chapter.to_dict() for chapter in self.chapters]
        return data

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Project {self.title}>"


class Chapter(db.Model):
    __tablename__ = "chapters"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text, nullable=False, default="")
    # Dense, zero-based position within the project.
    order = db.Column("sort_order", db.Integer, nullable=False, default=0)
    word_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    versions = db.relationship(
        "Version",
        backref="chapter",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="Version.created_at.desc()",
    )
    timeline_events = db.relationship("TimelineEvent", backref="chapter", lazy=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "title": self.title,
            "content": self.content or "",
            "order": self.order,
            "wordCount": self.word_count or 0,
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Chapter {self.order}: {self.title}>"


class Version(db.Model):
    __tablename__ = "versions"

    id = db.Column(db.Integer, primary_key=True)
    chapter_id = db.Column(
        db.Integer, db.ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False, index=True
    )
    content = db.Column(db.Text, nullable=False)
    word_count = db.Column(db.Integer, nullable=False, default=0)
    label = db.Column(db.String(200), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "chapterId": self.chapter_id,
            "content": self.content,
            "wordCount": self.word_count or 0,
            "label": self.label,
            "createdAt": _isoformat(self.created_at),
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Version {self.id} of chapter {self.chapter_id}>"


class Character(db.Model):
    __tablename__ = "characters"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = db.Column(db.String(200), nullable=False)
    name_key = db.Column(db.String(200), nullable=False)
    aliases = db.Column(db.JSON, nullable=True)
    physical_description = db.Column(db.Text, nullable=True)
    age = db.Column(db.String(60), nullable=True)
    personality = db.Column(db.Text, nullable=True)
    backstory = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    first_appearance = db.Column(db.String(200), nullable=True)
    is_main_character = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    relationships_as_first = db.relationship(
        "CharacterRelationship",
        foreign_keys="CharacterRelationship.character1_id",
        lazy=True,
        cascade="all, delete",
    )
    relationships_as_second = db.relationship(
        "CharacterRelationship",
        foreign_keys="CharacterRelationship.character2_id",
        lazy=True,
        cascade="all, delete",
    )

    __table_args__ = (db.UniqueConstraint("project_id", "name_key", name="uq_character_project_name"),)

    @validates("name")
    def _sync_name_key(self, _key: str, value: str) -> str:
        self.name_key = normalize_name(value)
        return value

    @property
    def alias_list(self) -> List[str]:
        if isinstance(self.aliases, list):
            return [str(alias) for alias in self.aliases]
        return []

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "name": self.name,
            "aliases": self.alias_list,
            "physicalDescription": self.physical_description,
            "age": self.age,
            "personality": self.personality,
            "backstory": self.backstory,
            "notes": self.notes,
            "firstAppearance": self.first_appearance,
            "isMainCharacter": bool(self.is_main_character),
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Character {self.name}>"


class CharacterRelationship(db.Model):
    __tablename__ = "character_relationships"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    character1_id = db.Column(
        db.Integer, db.ForeignKey("characters.id", ondelete="CASCADE"), nullable=False, index=True
    )
    character2_id = db.Column(
        db.Integer, db.ForeignKey("characters.id", ondelete="CASCADE"), nullable=False, index=True
    )
    relationship = db.Column(db.String(200), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    @property
    def pair_key(self) -> frozenset:
        """Unordered endpoint pair; A-B and B-A compare equal."""
        return frozenset((self.character1_id, self.character2_id))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "character1Id": self.character1_id,
            "character2Id": self.character2_id,
            "relationship": self.relationship,
            "notes": self.notes,
            "createdAt": _isoformat(self.created_at),
        }


class Location(db.Model):
    __tablename__ = "locations"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = db.Column(db.String(200), nullable=False)
    name_key = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    sensory_details = db.Column(db.Text, nullable=True)
    significance = db.Column(db.Text, nullable=True)
    parent_location_id = db.Column(
        db.Integer, db.ForeignKey("locations.id", ondelete="SET NULL"), nullable=True
    )
    first_appearance = db.Column(db.String(200), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (db.UniqueConstraint("project_id", "name_key", name="uq_location_project_name"),)

    @validates("name")
    def _sync_name_key(self, _key: str, value: str) -> str:
        self.name_key = normalize_name(value)
        return value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "name": self.name,
            "description": self.description,
            "sensoryDetails": self.sensory_details,
            "significance": self.significance,
            "parentLocationId": self.parent_location_id,
            "firstAppearance": self.first_appearance,
            "notes": self.notes,
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }


class StoryItem(db.Model):
    __tablename__ = "story_items"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = db.Column(db.String(200), nullable=False)
    name_key = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    significance = db.Column(db.Text, nullable=True)
    current_possessor = db.Column(db.String(200), nullable=True)
    first_appearance = db.Column(db.String(200), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (db.UniqueConstraint("project_id", "name_key", name="uq_story_item_project_name"),)

    @validates("name")
    def _sync_name_key(self, _key: str, value: str) -> str:
        self.name_key = normalize_name(value)
        return value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "name": self.name,
            "description": self.description,
            "significance": self.significance,
            "currentPossessor": self.current_possessor,
            "firstAppearance": self.first_appearance,
            "notes": self.notes,
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }


class TimelineEvent(db.Model):
    __tablename__ = "timeline_events"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    chapter_id = db.Column(
        db.Integer, db.ForeignKey("chapters.id", ondelete="SET NULL"), nullable=True, index=True
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    story_date = db.Column(db.String(120), nullable=True)
    duration = db.Column(db.String(120), nullable=True)
    order = db.Column("sort_order", db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "chapterId": self.chapter_id,
            "title": self.title,
            "description": self.description,
            "storyDate": self.story_date,
            "duration": self.duration,
            "order": self.order,
            "notes": self.notes,
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }


class PlotThread(db.Model):
    __tablename__ = "plot_threads"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = db.Column(db.String(300), nullable=False)
    title_key = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="active")
    # Chapter titles, stored as text rather than references.
    introduced_in = db.Column(db.String(200), nullable=True)
    resolved_in = db.Column(db.String(200), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (db.UniqueConstraint("project_id", "title_key", name="uq_plot_thread_project_title"),)

    @validates("title")
    def _sync_title_key(self, _key: str, value: str) -> str:
        self.title_key = normalize_name(value)
        return value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "introducedIn": self.introduced_in,
            "resolvedIn": self.resolved_in,
            "notes": self.notes,
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }


class WorldRule(db.Model):
    __tablename__ = "world_rules"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category = db.Column(db.String(120), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    name_key = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    limitations = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (db.UniqueConstraint("project_id", "name_key", name="uq_world_rule_project_name"),)

    @validates("name")
    def _sync_name_key(self, _key: str, value: str) -> str:
        self.name_key = normalize_name(value)
        return value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "category": self.category,
            "name": self.name,
            "description": self.description,
            "limitations": self.limitations,
            "notes": self.notes,
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }


class ConsistencyFlag(db.Model):
    __tablename__ = "consistency_flags"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type = db.Column(db.String(20), nullable=False)
    description = db.Column(db.Text, nullable=False)
    location1 = db.Column(db.String(300), nullable=True)
    location2 = db.Column(db.String(300), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="open")
    resolution = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "type": self.type,
            "description": self.description,
            "location1": self.location1,
            "location2": self.location2,
            "status": self.status,
            "resolution": self.resolution,
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }
