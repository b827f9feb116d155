"""Prompt templates, calls and output parsers for the AI writing modes.

The hosted model answers in free text, so nothing it returns is trusted to be
well formed.  Every parser here returns a usable value: either what it could
recover from the reply, or an explicit empty/default value flagged with
``used_fallback=True``.  Only transport and configuration problems raise.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Generic, Iterable, List, Mapping, Optional, TypeVar

from .text_clients import LLMConfigurationError, LLMServiceError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

ASSIST_KINDS = ("grammar", "clarity", "stronger", "shorter")
PLOT_THREAD_STATUSES = ("active", "resolved", "foreshadowed")
ISSUE_TYPES = ("contradiction", "unresolved", "question")
MAX_STORY_CHOICES = 3

# Widths of the story bible columns the parsed values are stored in.
NAME_LENGTH = 200
TITLE_LENGTH = 300
LABEL_LENGTH = 120
AGE_LENGTH = 60

_GENERATION_PARAMETER_KEYS = {"max_new_tokens", "temperature", "top_p"}
_PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")
_JSON_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_NARRATIVE_PATTERN = re.compile(r"NARRATIVE:\s*([\s\S]*?)(?=CHOICES:|$)")
_CHOICES_PATTERN = re.compile(r"CHOICES:\s*([\s\S]*)$")
_CHOICE_MARKER_PATTERN = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s*")


@dataclass
class ParseResult(Generic[T]):
    value: T
    used_fallback: bool = False


@dataclass
class StoryTurn:
    narrative: str
    choices: List[str]
    used_fallback: bool = False


@dataclass
class ExtractedCharacter:
    name: str
    aliases: List[str] = field(default_factory=list)
    physical_description: Optional[str] = None
    age: Optional[str] = None
    personality: Optional[str] = None
    is_main_character: bool = False


@dataclass
class ExtractedLocation:
    name: str
    description: Optional[str] = None
    sensory_details: Optional[str] = None
    significance: Optional[str] = None


@dataclass
class ExtractedItem:
    name: str
    description: Optional[str] = None
    significance: Optional[str] = None
    current_possessor: Optional[str] = None


@dataclass
class ExtractedEvent:
    title: str
    description: Optional[str] = None
    story_date: Optional[str] = None
    duration: Optional[str] = None


@dataclass
class ExtractedPlotThread:
    title: str
    description: Optional[str] = None
    status: str = "active"


@dataclass
class ExtractedWorldRule:
    category: str
    name: str
    description: Optional[str] = None
    limitations: Optional[str] = None


@dataclass
class ExtractedRelationship:
    character1: str
    character2: str
    relationship: str


@dataclass
class ConsistencyIssue:
    type: str
    description: str
    location1: Optional[str] = None
    location2: Optional[str] = None


@dataclass
class StoryBibleExtraction:
    characters: List[ExtractedCharacter] = field(default_factory=list)
    locations: List[ExtractedLocation] = field(default_factory=list)
    items: List[ExtractedItem] = field(default_factory=list)
    events: List[ExtractedEvent] = field(default_factory=list)
    plot_threads: List[ExtractedPlotThread] = field(default_factory=list)
    world_rules: List[ExtractedWorldRule] = field(default_factory=list)
    relationships: List[ExtractedRelationship] = field(default_factory=list)
    consistency_issues: List[ConsistencyIssue] = field(default_factory=list)


@dataclass
class KnownNames:
    """Names already in the story bible, shown to the model as context."""

    characters: List[str] = field(default_factory=list)
    locations: List[str] = field(default_factory=list)
    items: List[str] = field(default_factory=list)

    def add_from(self, extraction: StoryBibleExtraction) -> None:
        _extend_unique(self.characters, (entry.name for entry in extraction.characters))
        _extend_unique(self.locations, (entry.name for entry in extraction.locations))
        _extend_unique(self.items, (entry.name for entry in extraction.items))

    def render(self) -> str:
        lines = [
            f"Characters: {', '.join(self.characters) or 'none yet'}",
            f"Locations: {', '.join(self.locations) or 'none yet'}",
            f"Items: {', '.join(self.items) or 'none yet'}",
        ]
        return "\n".join(lines)


def _extend_unique(target: List[str], names: Iterable[str]) -> None:
    seen = {name.casefold() for name in target}
    for name in names:
        key = name.casefold()
        if key not in seen:
            target.append(name)
            seen.add(key)


class LLMGateway:
    """Issue one stateless request per operation and convert the reply."""

    def __init__(
        self,
        client: Optional[Any],
        prompts: Mapping[str, Any],
        *,
        missing_credential_message: str = "The text-generation service is not configured.",
    ) -> None:
        self.client = client
        self.prompts = prompts
        self.missing_credential_message = missing_credential_message

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    # ---------------- writing modes ----------------
    def get_writing_feedback(self, selected_text: str, full_context: str, question: str) -> str:
        reply = self._run(
            "writing_feedback",
            selected_text=selected_text,
            full_context=full_context or "",
            question=question,
        )
        return reply or "Unable to generate feedback."

    def generate_from_description(
        self,
        description: str,
        context: str = "",
        style_notes: Optional[str] = None,
    ) -> str:
        context_section = f"Here's my existing work for style/tone reference:\n\n---\n{context}\n---\n\n" if context else ""
        style_section = f"Style notes: {style_notes}\n\n" if style_notes else ""
        reply = self._run(
            "generate_from_description",
            description=description,
            context_section=context_section,
            style_section=style_section,
        )
        return reply or "Unable to generate content."

    def continue_story(self, story_context: str, author_choice: Optional[str] = None) -> StoryTurn:
        if author_choice:
            choice_section = f"I choose: {author_choice}"
        else:
            choice_section = "Begin the story. Set the scene and give me my first choices."
        reply = self._run("story_weaver", story_context=story_context or "", choice_section=choice_section)
        return parse_story_turn(reply)

    def quick_assist(self, text: str, kind: str) -> str:
        entry = self._prompt_entry("quick_assist")
        instructions = entry.get("instructions") or {}
        instruction = instructions.get(kind) if kind in ASSIST_KINDS else None
        if not instruction:
            raise ValueError(f"Unsupported assist type '{kind}'.")
        reply = self._run("quick_assist", instruction=instruction, text=text)
        if not reply:
            LOGGER.warning("Quick assist (%s) returned nothing; keeping the original text.", kind)
            return text
        return reply

    # ---------------- story bible ----------------
    def extract_story_bible_elements(
        self,
        chapter_text: str,
        chapter_title: str,
        known_names: Optional[KnownNames] = None,
    ) -> ParseResult[StoryBibleExtraction]:
        reply = self._run(
            "story_bible_extraction",
            chapter_title=chapter_title,
            chapter_text=chapter_text,
            known_names=(known_names or KnownNames()).render(),
        )
        result = parse_story_bible_extraction(reply)
        if result.used_fallback:
            LOGGER.warning("Story bible extraction for '%s' could not be parsed; using empty result.", chapter_title)
        return result

    def check_consistency(
        self,
        manuscript: str,
        existing_bible: Mapping[str, Any],
    ) -> ParseResult[List[ConsistencyIssue]]:
        reply = self._run(
            "consistency_check",
            manuscript=manuscript,
            story_bible=json.dumps(existing_bible, ensure_ascii=False, indent=2, default=str),
        )
        result = parse_consistency_issues(reply)
        if result.used_fallback:
            LOGGER.warning("Consistency check reply could not be parsed; reporting no issues.")
        return result

    # ---------------- plumbing ----------------
    def _prompt_entry(self, key: str) -> Dict[str, Any]:
        entry = self.prompts.get(key)
        if not isinstance(entry, dict):
            raise LLMConfigurationError(f"Prompt configuration is missing the '{key}' entry.")
        return entry

    def _run(self, key: str, **values: str) -> str:
        if self.client is None:
            raise LLMConfigurationError(self.missing_credential_message)

        entry = self._prompt_entry(key)
        prompt_template = entry.get("prompt_template")
        if not prompt_template:
            raise LLMConfigurationError(f"Prompt template for '{key}' is missing.")

        base_context = str(self.prompts.get("base_context") or "")
        system_prompt = apply_template(entry.get("system_prompt") or "", base_context=base_context)
        final_prompt = apply_template(prompt_template, **values)
        generation_kwargs = extract_generation_parameters(entry.get("parameters"))

        try:
            reply = self.client.generate_response(final_prompt, system=system_prompt or None, **generation_kwargs)
        except LLMServiceError:
            raise
        except Exception as exc:
            LOGGER.exception("Text generation for '%s' failed", key)
            raise LLMServiceError(f"Text generation for '{key}' failed: {exc}") from exc

        return (reply or "").strip()


def load_prompt_config(path: str | Path) -> Dict[str, Any]:
    prompt_path = Path(path)
    if not prompt_path.exists():
        raise LLMConfigurationError(f"Prompt configuration file not found at: {prompt_path}")

    with prompt_path.open("r", encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as exc:
            raise LLMConfigurationError(f"Unable to parse prompt configuration: {exc.msg}") from exc

    if not isinstance(data, dict):
        raise LLMConfigurationError("Prompt configuration must be a JSON object.")
    return data


def apply_template(template: str, **values: Any) -> str:
    """Fill ``{name}`` placeholders in a single pass; unknown ones are left as-is."""

    def _replace(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key not in values:
            return match.group(0)
        raw = values[key]
        return raw if isinstance(raw, str) else str(raw)

    return _PLACEHOLDER_PATTERN.sub(_replace, template)


def extract_generation_parameters(parameters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Filter a raw parameters dictionary to generation kwargs supported by the clients."""

    if not isinstance(parameters, dict):
        return {}
    return {
        key: parameters[key]
        for key in _GENERATION_PARAMETER_KEYS
        if key in parameters and parameters[key] is not None
    }


# ---------------- parsers ----------------
def parse_story_turn(raw_text: Optional[str]) -> StoryTurn:
    text = (raw_text or "").strip()

    narrative_match = _NARRATIVE_PATTERN.search(text)
    choices_match = _CHOICES_PATTERN.search(text)

    narrative = narrative_match.group(1).strip() if narrative_match else text
    choices: List[str] = []
    if choices_match:
        for line in choices_match.group(1).splitlines():
            cleaned = _CHOICE_MARKER_PATTERN.sub("", line).strip()
            if cleaned:
                choices.append(cleaned)

    used_fallback = narrative_match is None or not choices
    return StoryTurn(narrative=narrative, choices=choices[:MAX_STORY_CHOICES], used_fallback=used_fallback)


def recover_json(raw_text: Optional[str], opener: str = "{", closer: str = "}") -> Optional[Any]:
    """Best-effort JSON recovery from a model reply.

    Code fences are unwrapped first; then the span from the first ``opener`` to
    the last ``closer`` is decoded.  Returns ``None`` when nothing decodes.
    """

    text = (raw_text or "").strip()
    if not text:
        return None

    fence_match = _JSON_FENCE_PATTERN.search(text)
    if fence_match:
        text = fence_match.group(1).strip()

    span = re.search(re.escape(opener) + r"[\s\S]*" + re.escape(closer), text)
    if not span:
        return None

    try:
        return json.loads(span.group(0))
    except json.JSONDecodeError:
        LOGGER.debug("Unable to decode JSON span from model reply: %.200s", span.group(0))
        return None


def parse_story_bible_extraction(raw_text: Optional[str]) -> ParseResult[StoryBibleExtraction]:
    data = recover_json(raw_text, "{", "}")
    if not isinstance(data, dict):
        return ParseResult(StoryBibleExtraction(), used_fallback=True)

    extraction = StoryBibleExtraction()

    for entry in _dict_entries(data.get("characters")):
        name = _clean(entry.get("name"), NAME_LENGTH)
        if not name:
            continue
        extraction.characters.append(
            ExtractedCharacter(
                name=name,
                aliases=_clean_list(entry.get("aliases")),
                physical_description=_clean(entry.get("physicalDescription")),
                age=_clean(entry.get("age"), AGE_LENGTH),
                personality=_clean(entry.get("personality")),
                is_main_character=entry.get("isMainCharacter") is True,
            )
        )

    for entry in _dict_entries(data.get("locations")):
        name = _clean(entry.get("name"), NAME_LENGTH)
        if not name:
            continue
        extraction.locations.append(
            ExtractedLocation(
                name=name,
                description=_clean(entry.get("description")),
                sensory_details=_clean(entry.get("sensoryDetails")),
                significance=_clean(entry.get("significance")),
            )
        )

    for entry in _dict_entries(data.get("items")):
        name = _clean(entry.get("name"), NAME_LENGTH)
        if not name:
            continue
        extraction.items.append(
            ExtractedItem(
                name=name,
                description=_clean(entry.get("description")),
                significance=_clean(entry.get("significance")),
                current_possessor=_clean(entry.get("currentPossessor"), NAME_LENGTH),
            )
        )

    for entry in _dict_entries(data.get("events")):
        title = _clean(entry.get("title"), TITLE_LENGTH)
        if not title:
            continue
        extraction.events.append(
            ExtractedEvent(
                title=title,
                description=_clean(entry.get("description")),
                story_date=_clean(entry.get("storyDate"), LABEL_LENGTH),
                duration=_clean(entry.get("duration"), LABEL_LENGTH),
            )
        )

    for entry in _dict_entries(data.get("plotThreads")):
        title = _clean(entry.get("title"), TITLE_LENGTH)
        if not title:
            continue
        status = (_clean(entry.get("status")) or "").lower()
        extraction.plot_threads.append(
            ExtractedPlotThread(
                title=title,
                description=_clean(entry.get("description")),
                status=status if status in PLOT_THREAD_STATUSES else "active",
            )
        )

    for entry in _dict_entries(data.get("worldRules")):
        name = _clean(entry.get("name"), NAME_LENGTH)
        if not name:
            continue
        extraction.world_rules.append(
            ExtractedWorldRule(
                category=_clean(entry.get("category"), LABEL_LENGTH) or "general",
                name=name,
                description=_clean(entry.get("description")),
                limitations=_clean(entry.get("limitations")),
            )
        )

    for entry in _dict_entries(data.get("relationships")):
        first = _clean(entry.get("character1"), NAME_LENGTH)
        second = _clean(entry.get("character2"), NAME_LENGTH)
        label = _clean(entry.get("relationship"), NAME_LENGTH)
        if not first or not second or not label:
            continue
        extraction.relationships.append(
            ExtractedRelationship(character1=first, character2=second, relationship=label)
        )

    extraction.consistency_issues.extend(_parse_issue_entries(data.get("consistencyIssues")))
    return ParseResult(extraction)


def parse_consistency_issues(raw_text: Optional[str]) -> ParseResult[List[ConsistencyIssue]]:
    data = recover_json(raw_text, "[", "]")
    if not isinstance(data, list):
        return ParseResult([], used_fallback=True)
    return ParseResult(_parse_issue_entries(data))


def _parse_issue_entries(raw: Any) -> List[ConsistencyIssue]:
    issues: List[ConsistencyIssue] = []
    for entry in _dict_entries(raw):
        description = _clean(entry.get("description"))
        if not description:
            continue
        issue_type = (_clean(entry.get("type")) or "").lower()
        issues.append(
            ConsistencyIssue(
                type=issue_type if issue_type in ISSUE_TYPES else "question",
                description=description,
                location1=_clean(entry.get("location1"), TITLE_LENGTH),
                location2=_clean(entry.get("location2"), TITLE_LENGTH),
            )
        )
    return issues


def _dict_entries(raw: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    return [entry for entry in raw if isinstance(entry, dict)]


def _clean(value: object, max_length: Optional[int] = None) -> Optional[str]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    if max_length is not None:
        cleaned = cleaned[:max_length].rstrip()
    return cleaned or None


def _clean_list(value: object) -> List[str]:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list):
        return []
    return [cleaned for cleaned in (_clean(item) for item in value) if cleaned]
