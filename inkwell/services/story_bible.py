"""Story bible extraction and merge.

An extraction run walks every chapter of a project in order:

1. Pass one asks the model for the chapter's characters, locations, items,
   timeline events, plot threads, world rules and consistency issues.  Names
   found in earlier chapters are fed forward so the model does not re-describe
   them.
2. Pass two asks again, per chapter, for character relationships.  A
   relationship can only be stored once both characters have rows, which is
   only guaranteed after every pass-one result has been merged.

All model calls happen before anything is written.  The merge of both passes
then runs in a single transaction, so a failed call or a failed write leaves
the story bible untouched.

Entities are matched by case-insensitive exact name (plot threads by title);
"Sarah" and "Sarah Chen" are different characters.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Dict, List, Tuple

from flask import current_app
from sqlalchemy.orm import Session

from ..models import (
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
from .llm_gateway import (
    ExtractedRelationship,
    KnownNames,
    LLMGateway,
    StoryBibleExtraction,
)
from .manuscript import manuscript_text, strip_markup


class StoryBibleError(RuntimeError):
    """Raised when an extraction run cannot start."""


class NoChaptersError(StoryBibleError):
    """Raised when the project has no chapters to read."""


@dataclass
class ExtractionCounts:
    characters: int = 0
    locations: int = 0
    items: int = 0
    events: int = 0
    plot_threads: int = 0
    world_rules: int = 0
    relationships: int = 0
    consistency_flags: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "characters": self.characters,
            "locations": self.locations,
            "items": self.items,
            "events": self.events,
            "plotThreads": self.plot_threads,
            "worldRules": self.world_rules,
            "relationships": self.relationships,
            "consistencyFlags": self.consistency_flags,
        }


@dataclass
class _ChapterExtraction:
    chapter: Chapter
    extraction: StoryBibleExtraction
    relationships: List[ExtractedRelationship] = field(default_factory=list)


def story_bible_for(project: Project) -> Dict[str, List[dict]]:
    """Full story bible dump for ``project``."""

    pid = project.id
    return {
        "characters": [row.to_dict() for row in Character.query.filter_by(project_id=pid).order_by(Character.id).all()],
        "locations": [row.to_dict() for row in Location.query.filter_by(project_id=pid).order_by(Location.id).all()],
        "items": [row.to_dict() for row in StoryItem.query.filter_by(project_id=pid).order_by(StoryItem.id).all()],
        "events": [
            row.to_dict()
            for row in TimelineEvent.query.filter_by(project_id=pid)
            .order_by(TimelineEvent.order, TimelineEvent.id)
            .all()
        ],
        "plotThreads": [row.to_dict() for row in PlotThread.query.filter_by(project_id=pid).order_by(PlotThread.id).all()],
        "worldRules": [row.to_dict() for row in WorldRule.query.filter_by(project_id=pid).order_by(WorldRule.id).all()],
        "relationships": [
            row.to_dict()
            for row in CharacterRelationship.query.filter_by(project_id=pid).order_by(CharacterRelationship.id).all()
        ],
        "consistencyFlags": [
            row.to_dict() for row in ConsistencyFlag.query.filter_by(project_id=pid).order_by(ConsistencyFlag.id).all()
        ],
    }


def extract_story_bible(project: Project, gateway: LLMGateway) -> ExtractionCounts:
    """Run both extraction passes over ``project`` and merge the results.

    Raises :class:`NoChaptersError` when the project has no chapters.  Errors
    from the model call propagate unchanged, and nothing is written.
    """

    chapters = Chapter.query.filter_by(project_id=project.id).order_by(Chapter.order.asc()).all()
    if not chapters:
        raise NoChaptersError("No chapters found")

    readable: List[Tuple[Chapter, str]] = []
    for chapter in chapters:
        plain = strip_markup(chapter.content)
        if plain:
            readable.append((chapter, plain))

    known_names = KnownNames(
        characters=[row.name for row in Character.query.filter_by(project_id=project.id).all()],
        locations=[row.name for row in Location.query.filter_by(project_id=project.id).all()],
        items=[row.name for row in StoryItem.query.filter_by(project_id=project.id).all()],
    )

    staged: List[_ChapterExtraction] = []
    for chapter, plain in readable:
        result = gateway.extract_story_bible_elements(plain, chapter.title, known_names)
        staged.append(_ChapterExtraction(chapter=chapter, extraction=result.value))
        known_names.add_from(result.value)

    for entry, (chapter, plain) in zip(staged, readable):
        # No known-names context here: only the relationships are used.
        result = gateway.extract_story_bible_elements(plain, chapter.title)
        entry.relationships = result.value.relationships

    counts = ExtractionCounts()
    with atomic() as session:
        merger = _BibleMerger(session, project, counts)
        for entry in staged:
            merger.merge_chapter(entry.chapter, entry.extraction)
        session.flush()
        merger.refresh_characters()
        for entry in staged:
            merger.merge_relationships(entry.relationships)

    current_app.logger.info(
        "Story bible extraction for project %s read %s of %s chapters: %s",
        project.id,
        len(readable),
        len(chapters),
        counts.to_dict(),
    )
    return counts


def run_consistency_check(project: Project, gateway: LLMGateway) -> List[ConsistencyFlag]:
    """Check the whole manuscript against the current bible and store open flags."""

    manuscript = manuscript_text(project)
    if not manuscript:
        raise NoChaptersError("The manuscript has no text to check")

    bible = story_bible_for(project)
    summary = {
        "characters": [row["name"] for row in bible["characters"]],
        "locations": [row["name"] for row in bible["locations"]],
        "items": [row["name"] for row in bible["items"]],
        "plotThreads": [{"title": row["title"], "status": row["status"]} for row in bible["plotThreads"]],
        "worldRules": [{"name": row["name"], "description": row["description"]} for row in bible["worldRules"]],
        "events": [row["title"] for row in bible["events"]],
    }
    result = gateway.check_consistency(manuscript, summary)

    flags: List[ConsistencyFlag] = []
    with atomic() as session:
        for issue in result.value:
            flag = ConsistencyFlag(project=project, status="open", **asdict(issue))
            session.add(flag)
            flags.append(flag)
    return flags


class _BibleMerger:
    """Insert-if-new bookkeeping for one extraction run."""

    def __init__(self, session: Session, project: Project, counts: ExtractionCounts) -> None:
        self.session = session
        self.project = project
        self.counts = counts
        pid = project.id
        self.characters: Dict[str, Character] = {
            row.name_key: row for row in Character.query.filter_by(project_id=pid).all()
        }
        self.locations: Dict[str, Location] = {
            row.name_key: row for row in Location.query.filter_by(project_id=pid).all()
        }
        self.items: Dict[str, StoryItem] = {
            row.name_key: row for row in StoryItem.query.filter_by(project_id=pid).all()
        }
        self.plot_threads: Dict[str, PlotThread] = {
            row.title_key: row for row in PlotThread.query.filter_by(project_id=pid).all()
        }
        self.world_rules: Dict[str, WorldRule] = {
            row.name_key: row for row in WorldRule.query.filter_by(project_id=pid).all()
        }
        self.existing_event_count = TimelineEvent.query.filter_by(project_id=pid).count()
        self.relationship_pairs = {
            row.pair_key for row in CharacterRelationship.query.filter_by(project_id=pid).all()
        }

    def merge_chapter(self, chapter: Chapter, extraction: StoryBibleExtraction) -> None:
        project = self.project
        first_seen = chapter.title

        for entry in extraction.characters:
            key = normalize_name(entry.name)
            if not key or key in self.characters:
                continue
            self.characters[key] = self._insert(Character(
                project=project,
                name=entry.name,
                aliases=entry.aliases or None,
                physical_description=entry.physical_description,
                age=entry.age,
                personality=entry.personality,
                is_main_character=entry.is_main_character,
                first_appearance=first_seen,
            ))
            self.counts.characters += 1

        for entry in extraction.locations:
            key = normalize_name(entry.name)
            if not key or key in self.locations:
                continue
            self.locations[key] = self._insert(Location(
                project=project,
                name=entry.name,
                description=entry.description,
                sensory_details=entry.sensory_details,
                significance=entry.significance,
                first_appearance=first_seen,
            ))
            self.counts.locations += 1

        for entry in extraction.items:
            key = normalize_name(entry.name)
            if not key or key in self.items:
                continue
            self.items[key] = self._insert(StoryItem(
                project=project,
                name=entry.name,
                description=entry.description,
                significance=entry.significance,
                current_possessor=entry.current_possessor,
                first_appearance=first_seen,
            ))
            self.counts.items += 1

        for entry in extraction.events:
            self._insert(TimelineEvent(
                project=project,
                chapter=chapter,
                title=entry.title,
                description=entry.description,
                story_date=entry.story_date,
                duration=entry.duration,
                order=self.existing_event_count + self.counts.events,
            ))
            self.counts.events += 1

        for entry in extraction.plot_threads:
            key = normalize_name(entry.title)
            if not key or key in self.plot_threads:
                continue
            self.plot_threads[key] = self._insert(PlotThread(
                project=project,
                title=entry.title,
                description=entry.description,
                status=entry.status,
                introduced_in=first_seen,
                resolved_in=first_seen if entry.status == "resolved" else None,
            ))
            self.counts.plot_threads += 1

        for entry in extraction.world_rules:
            key = normalize_name(entry.name)
            if not key or key in self.world_rules:
                continue
            self.world_rules[key] = self._insert(WorldRule(
                project=project,
                category=entry.category,
                name=entry.name,
                description=entry.description,
                limitations=entry.limitations,
            ))
            self.counts.world_rules += 1

        for issue in extraction.consistency_issues:
            self._insert(ConsistencyFlag(project=project, status="open", **asdict(issue)))
            self.counts.consistency_flags += 1

    def _insert(self, row):
        self.session.add(row)
        return row

    def refresh_characters(self) -> None:
        self.characters = {
            row.name_key: row for row in Character.query.filter_by(project_id=self.project.id).all()
        }

    def merge_relationships(self, relationships: List[ExtractedRelationship]) -> None:
        for entry in relationships:
            first = self.characters.get(normalize_name(entry.character1))
            second = self.characters.get(normalize_name(entry.character2))
            if first is None or second is None or first.id == second.id:
                continue
            pair = frozenset((first.id, second.id))
            if pair in self.relationship_pairs:
                continue
            self._insert(CharacterRelationship(
                project=self.project,
                character1_id=first.id,
                character2_id=second.id,
                relationship=entry.relationship,
            ))
            self.relationship_pairs.add(pair)
            self.counts.relationships += 1

