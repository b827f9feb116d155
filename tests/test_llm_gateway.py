import json

import pytest

from inkwell.config import TestConfig
from inkwell.services.llm_gateway import (
    KnownNames,
    LLMGateway,
    apply_template,
    load_prompt_config,
    parse_consistency_issues,
    parse_story_bible_extraction,
    parse_story_turn,
    recover_json,
)
from inkwell.services.text_clients import LLMConfigurationError, LLMServiceError, build_text_client

from conftest import FakeTextClient


@pytest.fixture
def prompts():
    return load_prompt_config(TestConfig.PROMPT_CONFIG_PATH)


def test_parse_story_turn_reads_sections():
    raw = (
        "NARRATIVE:\nThe door creaks open.\nCold air rushes in.\n\n"
        "CHOICES:\n1. Step inside\n2) Call out\n- Run away\n4. Too many"
    )

    turn = parse_story_turn(raw)

    assert turn.narrative == "The door creaks open.\nCold air rushes in."
    assert turn.choices == ["Step inside", "Call out", "Run away"]
    assert not turn.used_fallback


def test_parse_story_turn_falls_back_to_raw_text():
    turn = parse_story_turn("Just some prose without any markers.")

    assert turn.narrative == "Just some prose without any markers."
    assert turn.choices == []
    assert turn.used_fallback


def test_recover_json_handles_fences_and_chatter():
    raw = 'Sure! Here it is:\n```json\n{"characters": [{"name": "Mara"}]}\n```\nAnything else?'

    assert recover_json(raw) == {"characters": [{"name": "Mara"}]}
    assert recover_json('Found: [{"type": "question"}] done', "[", "]") == [{"type": "question"}]
    assert recover_json("no json here") is None
    assert recover_json("{broken: json}") is None


def test_parse_story_bible_extraction_coerces_values():
    raw = json.dumps(
        {
            "characters": [
                {"name": " Mara ", "aliases": "the Fox, Red", "isMainCharacter": True, "age": 34},
                {"name": ""},
                "not a dict",
            ],
            "plotThreads": [{"title": "The debt", "status": "Simmering"}],
            "worldRules": [{"name": "Iron burns fae"}],
            "consistencyIssues": [{"type": "oops", "description": "Eye colour changes"}],
            "relationships": [{"character1": "Mara", "character2": "Tobin"}],
        }
    )

    result = parse_story_bible_extraction(raw)

    extraction = result.value
    assert not result.used_fallback
    assert [c.name for c in extraction.characters] == ["Mara"]
    assert extraction.characters[0].aliases == ["the Fox", "Red"]
    assert extraction.characters[0].age == "34"
    assert extraction.characters[0].is_main_character is True
    assert extraction.plot_threads[0].status == "active"
    assert extraction.world_rules[0].category == "general"
    assert extraction.consistency_issues[0].type == "question"
    assert extraction.relationships == []


def test_parse_story_bible_extraction_caps_values_to_column_widths():
    raw = json.dumps(
        {
            "characters": [{"name": "N" * 250, "age": "in her late thirties, " * 10}],
            "events": [{"title": "T" * 400, "storyDate": "D" * 200}],
            "worldRules": [{"category": "C" * 200, "name": "Iron binds"}],
            "relationships": [{"character1": "Mara", "character2": "Tobin", "relationship": "R" * 500}],
            "consistencyIssues": [{"type": "question", "description": "Where?", "location1": "L" * 400}],
        }
    )

    extraction = parse_story_bible_extraction(raw).value

    character = extraction.characters[0]
    assert character.name == "N" * 200
    assert len(character.age) <= 60
    assert not character.age.endswith(" ")
    assert extraction.events[0].title == "T" * 300
    assert extraction.events[0].story_date == "D" * 120
    assert extraction.world_rules[0].category == "C" * 120
    assert extraction.relationships[0].relationship == "R" * 200
    assert extraction.consistency_issues[0].location1 == "L" * 300
    assert extraction.consistency_issues[0].description == "Where?"


def test_parse_story_bible_extraction_fallback_is_empty():
    result = parse_story_bible_extraction("I could not find anything, sorry.")

    assert result.used_fallback
    assert result.value.characters == []
    assert result.value.relationships == []


def test_parse_consistency_issues_fallback():
    assert parse_consistency_issues("nothing").value == []
    assert parse_consistency_issues("nothing").used_fallback
    assert parse_consistency_issues("[]").value == []
    assert not parse_consistency_issues("[]").used_fallback


def test_apply_template_is_single_pass():
    result = apply_template("Text: {text} / {missing}", text="literal {missing} braces")

    assert result == "Text: literal {missing} braces / {missing}"


def test_known_names_render_and_dedupe():
    names = KnownNames(characters=["Mara"])
    extraction = parse_story_bible_extraction('{"characters": [{"name": "MARA"}, {"name": "Tobin"}]}').value

    names.add_from(extraction)

    assert names.characters == ["Mara", "Tobin"]
    assert "Locations: none yet" in names.render()


def test_quick_assist_returns_input_on_empty_reply(prompts):
    gateway = LLMGateway(FakeTextClient(""), prompts)

    assert gateway.quick_assist("their going home", "grammar") == "their going home"


def test_quick_assist_rejects_unknown_kind(prompts):
    gateway = LLMGateway(FakeTextClient("x"), prompts)

    with pytest.raises(ValueError):
        gateway.quick_assist("text", "poetic")


def test_gateway_sends_system_prompt_and_parameters(prompts):
    client = FakeTextClient("Looks good.")
    gateway = LLMGateway(client, prompts)

    assert gateway.get_writing_feedback("A line.", "Context.", "Is it clear?") == "Looks good."
    call = client.calls[0]
    assert '"A line."' in call["prompt"]
    assert "Is it clear?" in call["prompt"]
    assert "CONSULTANT" in call["system"]
    assert "{base_context}" not in call["system"]
    assert call["max_new_tokens"] == 1024


def test_feedback_fallback_on_empty_reply(prompts):
    gateway = LLMGateway(FakeTextClient("   "), prompts)

    assert gateway.get_writing_feedback("A", "", "Q") == "Unable to generate feedback."


def test_unconfigured_gateway_raises_configuration_error(prompts):
    gateway = LLMGateway(None, prompts, missing_credential_message="ANTHROPIC_API_KEY is not configured.")

    with pytest.raises(LLMConfigurationError, match="ANTHROPIC_API_KEY"):
        gateway.generate_from_description("A duel at dawn")


def test_unexpected_client_errors_are_wrapped(prompts):
    gateway = LLMGateway(FakeTextClient(TimeoutError("slow")), prompts)

    with pytest.raises(LLMServiceError):
        gateway.continue_story("Once upon a time")


def test_build_text_client_without_key_returns_none():
    assert build_text_client({"LLM_PROVIDER": "anthropic", "ANTHROPIC_API_KEY": None}) is None
    assert build_text_client({"LLM_PROVIDER": "openai"}) is None


def test_build_text_client_rejects_unknown_provider():
    with pytest.raises(LLMConfigurationError):
        build_text_client({"LLM_PROVIDER": "carrier-pigeon"})
