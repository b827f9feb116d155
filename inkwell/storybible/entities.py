"""Manual editing of story bible entries.

Every entity kind is described by an :class:`EntityKind` entry in
:data:`ENTITY_KINDS`: which model backs it, which JSON keys map to which
columns, and how each value is validated.  The request handlers stay generic.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from ..errors import ApiError
from ..models import (
    CONSISTENCY_FLAG_STATUSES,
    CONSISTENCY_FLAG_TYPES,
    PLOT_THREAD_STATUSES,
    Chapter,
    Character,
    CharacterRelationship,
    ConsistencyFlag,
    Location,
    PlotThread,
    Project,
    StoryItem,
    TimelineEvent,
    WorldRule,
    normalize_name,
)
from ..storage import atomic


@dataclass(frozen=True)
class FieldSpec:
    key: str
    attr: str
    kind: str = "text"
    required: bool = False
    choices: Tuple[str, ...] = ()
    ref: Optional[type] = None


@dataclass(frozen=True)
class EntityKind:
    label: str
    model: type
    fields: Tuple[FieldSpec, ...]
    # Column compared case-insensitively for per-project uniqueness.
    unique_attr: Optional[str] = None
    creatable: bool = True


ENTITY_KINDS: Dict[str, EntityKind] = {
    "characters": EntityKind(
        label="character",
        model=Character,
        unique_attr="name",
        fields=(
            FieldSpec("name", "name", required=True),
            FieldSpec("aliases", "aliases", kind="list"),
            FieldSpec("physicalDescription", "physical_description"),
            FieldSpec("age", "age"),
            FieldSpec("personality", "personality"),
            FieldSpec("backstory", "backstory"),
            FieldSpec("notes", "notes"),
            FieldSpec("firstAppearance", "first_appearance"),
            FieldSpec("isMainCharacter", "is_main_character", kind="bool"),
        ),
    ),
    "locations": EntityKind(
        label="location",
        model=Location,
        unique_attr="name",
        fields=(
            FieldSpec("name", "name", required=True),
            FieldSpec("description", "description"),
            FieldSpec("sensoryDetails", "sensory_details"),
            FieldSpec("significance", "significance"),
            FieldSpec("parentLocationId", "parent_location_id", kind="ref", ref=Location),
            FieldSpec("firstAppearance", "first_appearance"),
            FieldSpec("notes", "notes"),
        ),
    ),
    "items": EntityKind(
        label="item",
        model=StoryItem,
        unique_attr="name",
        fields=(
            FieldSpec("name", "name", required=True),
            FieldSpec("description", "description"),
            FieldSpec("significance", "significance"),
            FieldSpec("currentPossessor", "current_possessor"),
            FieldSpec("firstAppearance", "first_appearance"),
            FieldSpec("notes", "notes"),
        ),
    ),
    "events": EntityKind(
        label="event",
        model=TimelineEvent,
        fields=(
            FieldSpec("title", "title", required=True),
            FieldSpec("description", "description"),
            FieldSpec("storyDate", "story_date"),
            FieldSpec("duration", "duration"),
            FieldSpec("order", "order", kind="int"),
            FieldSpec("chapterId", "chapter_id", kind="ref", ref=Chapter),
            FieldSpec("notes", "notes"),
        ),
    ),
    "plot-threads": EntityKind(
        label="plot thread",
        model=PlotThread,
        unique_attr="title",
        fields=(
            FieldSpec("title", "title", required=True),
            FieldSpec("description", "description"),
            FieldSpec("status", "status", kind="enum", choices=PLOT_THREAD_STATUSES),
            FieldSpec("introducedIn", "introduced_in"),
            FieldSpec("resolvedIn", "resolved_in"),
            FieldSpec("notes", "notes"),
        ),
    ),
    "world-rules": EntityKind(
        label="world rule",
        model=WorldRule,
        unique_attr="name",
        fields=(
            FieldSpec("category", "category", required=True),
            FieldSpec("name", "name", required=True),
            FieldSpec("description", "description"),
            FieldSpec("limitations", "limitations"),
            FieldSpec("notes", "notes"),
        ),
    ),
    "relationships": EntityKind(
        label="relationship",
        model=CharacterRelationship,
        fields=(
            FieldSpec("character1Id", "character1_id", kind="ref", required=True, ref=Character),
            FieldSpec("character2Id", "character2_id", kind="ref", required=True, ref=Character),
            FieldSpec("relationship", "relationship", required=True),
            FieldSpec("notes", "notes"),
        ),
    ),
    # Flags come from the model; authors can only triage them.
    "consistency-flags": EntityKind(
        label="consistency flag",
        model=ConsistencyFlag,
        creatable=False,
        fields=(
            FieldSpec("type", "type", kind="enum", choices=CONSISTENCY_FLAG_TYPES),
            FieldSpec("status", "status", kind="enum", choices=CONSISTENCY_FLAG_STATUSES),
            FieldSpec("resolution", "resolution"),
        ),
    ),
}


def _max_length(model: type, attr: str) -> Optional[int]:
    column = getattr(model, attr).property.columns[0]
    return getattr(column.type, "length", None)


def _coerce(kind: EntityKind, field: FieldSpec, raw: Any, project: Project) -> Any:
    if field.kind == "text":
        if raw is None:
            value = None
        elif isinstance(raw, (str, int, float)) and not isinstance(raw, bool):
            value = str(raw).strip() or None
        else:
            raise ApiError(f"{field.key} must be a string", 400)
        if field.required and value is None:
            raise ApiError(f"{field.key} is required", 400)
        limit = _max_length(kind.model, field.attr)
        if value is not None and limit is not None and len(value) > limit:
            raise ApiError(f"{field.key} must be at most {limit} characters", 400)
        return value

    if field.kind == "list":
        if raw is None:
            return None
        if isinstance(raw, str):
            raw = raw.split(",")
        if not isinstance(raw, list) or not all(isinstance(entry, str) for entry in raw):
            raise ApiError(f"{field.key} must be a list of strings", 400)
        return [entry.strip() for entry in raw if entry.strip()]

    if field.kind == "bool":
        if not isinstance(raw, bool):
            raise ApiError(f"{field.key} must be true or false", 400)
        return raw

    if field.kind == "int":
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise ApiError(f"{field.key} must be an integer", 400)
        return raw

    if field.kind == "enum":
        value = raw.strip().lower() if isinstance(raw, str) else None
        if value not in field.choices:
            raise ApiError(f"{field.key} must be one of: {', '.join(field.choices)}", 400)
        return value

    if field.kind == "ref":
        if raw is None:
            if field.required:
                raise ApiError(f"{field.key} is required", 400)
            return None
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise ApiError(f"{field.key} must be an integer id", 400)
        target = field.ref.query.filter_by(id=raw, project_id=project.id).first()
        if target is None:
            raise ApiError(f"{field.key} does not belong to this project", 400)
        return raw

    raise ValueError(f"Unknown field kind '{field.kind}'")


def _apply(kind: EntityKind, row: Any, payload: Dict[str, Any], project: Project, *, creating: bool) -> None:
    for field in kind.fields:
        if field.key not in payload:
            if creating and field.required:
                raise ApiError(f"{field.key} is required", 400)
            continue
        setattr(row, field.attr, _coerce(kind, field, payload[field.key], project))


def _check_unique(kind: EntityKind, row: Any, project: Project) -> None:
    if not kind.unique_attr:
        return
    value = getattr(row, kind.unique_attr)
    key_column = getattr(kind.model, f"{kind.unique_attr}_key")
    clash = kind.model.query.filter(
        kind.model.project_id == project.id,
        key_column == normalize_name(value),
    )
    if row.id is not None:
        clash = clash.filter(kind.model.id != row.id)
    if clash.first() is not None:
        raise ApiError(f"A {kind.label} named '{value}' already exists in this project", 409)


def _check_relationship(row: CharacterRelationship, project: Project) -> None:
    if row.character1_id == row.character2_id:
        raise ApiError("A relationship needs two different characters", 400)
    clash = CharacterRelationship.query.filter(
        CharacterRelationship.project_id == project.id,
        (
            (CharacterRelationship.character1_id == row.character1_id)
            & (CharacterRelationship.character2_id == row.character2_id)
        )
        | (
            (CharacterRelationship.character1_id == row.character2_id)
            & (CharacterRelationship.character2_id == row.character1_id)
        ),
    )
    if row.id is not None:
        clash = clash.filter(CharacterRelationship.id != row.id)
    if clash.first() is not None:
        raise ApiError("These characters already have a relationship", 409)


def _validate(kind: EntityKind, row: Any, project: Project) -> None:
    _check_unique(kind, row, project)
    if isinstance(row, CharacterRelationship):
        _check_relationship(row, project)
    if isinstance(row, Location) and row.id is not None and row.parent_location_id == row.id:
        raise ApiError("A location cannot be its own parent", 400)


def create_entity(kind: EntityKind, project: Project, payload: Dict[str, Any]) -> Any:
    if not kind.creatable:
        raise ApiError(f"A {kind.label} cannot be created directly", 405)

    row = kind.model(project_id=project.id)
    _apply(kind, row, payload, project, creating=True)
    if isinstance(row, TimelineEvent) and "order" not in payload:
        row.order = TimelineEvent.query.filter_by(project_id=project.id).count()
    _validate(kind, row, project)

    try:
        with atomic() as session:
            session.add(row)
            project.touch()
    except IntegrityError as exc:
        raise ApiError(f"This {kind.label} conflicts with an existing entry", 409) from exc
    return row


def update_entity(kind: EntityKind, row: Any, payload: Dict[str, Any]) -> Any:
    project = row.project
    try:
        with atomic() as session:
            with session.no_autoflush:
                _apply(kind, row, payload, project, creating=False)
                _validate(kind, row, project)
            project.touch()
    except IntegrityError as exc:
        raise ApiError(f"This {kind.label} conflicts with an existing entry", 409) from exc
    return row


def delete_entity(row: Any) -> None:
    with atomic() as session:
        session.delete(row)
        row.project.touch()
