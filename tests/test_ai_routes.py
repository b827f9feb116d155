from inkwell import create_app
from inkwell.config import TestConfig
from inkwell.extensions import db
from inkwell.services.text_clients import LLMServiceError

from conftest import make_user


def test_assist_returns_revised_text(logged_in, fake_client):
    fake_client.reply = "They're going home."

    response = logged_in.post("/ai/assist", json={"text": "their going home", "assistType": "grammar"})

    assert response.status_code == 200
    assert response.get_json() == {"result": "They're going home."}
    assert "Fix any grammar" in fake_client.calls[0]["prompt"]


def test_assist_validates_input(logged_in, fake_client):
    assert logged_in.post("/ai/assist", json={"assistType": "grammar"}).status_code == 400
    assert logged_in.post("/ai/assist", json={"text": "x", "assistType": "rhyme"}).status_code == 400
    assert fake_client.calls == []


def test_feedback_reports_generic_failure(logged_in, fake_client):
    fake_client.reply = LLMServiceError("upstream 529")

    response = logged_in.post(
        "/ai/feedback",
        json={"selectedText": "The sky wept.", "fullContext": "", "question": "Too purple?"},
    )

    assert response.status_code == 500
    assert response.get_json() == {"error": "Failed to generate feedback"}


def test_generate_passes_style_reference(logged_in, fake_client):
    fake_client.reply = "Steel rang against steel."

    response = logged_in.post(
        "/ai/generate",
        json={"description": "A duel at dawn", "context": "Earlier scene", "styleReference": "Terse"},
    )

    assert response.get_json() == {"content": "Steel rang against steel."}
    prompt = fake_client.calls[0]["prompt"]
    assert "Earlier scene" in prompt
    assert "Style notes: Terse" in prompt


def test_generate_without_credential_reports_configuration_error():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        user = make_user()
        client = app.test_client()
        client.post("/auth/login", json={"username": user.username, "password": "password123"})

        response = client.post("/ai/generate", json={"description": "A duel at dawn"})

        assert response.status_code == 500
        assert response.get_json()["error"] == "ANTHROPIC_API_KEY is not configured. Add it to your .env file."
        db.session.remove()
        db.drop_all()


def test_storyweaver_parses_turn(logged_in, fake_client):
    fake_client.reply = "NARRATIVE:\nRain hammered the roof.\n\nCHOICES:\n1. Open the door\n2. Hide\n3. Shout"

    response = logged_in.post("/ai/storyweaver", json={"storyContext": "A lonely cabin.", "authorChoice": "Wait"})

    assert response.get_json() == {
        "narrative": "Rain hammered the roof.",
        "choices": ["Open the door", "Hide", "Shout"],
    }
    assert "I choose: Wait" in fake_client.calls[0]["prompt"]


def test_storyweaver_degrades_without_markers(logged_in, fake_client):
    fake_client.reply = "The model ignored the format."

    response = logged_in.post("/ai/storyweaver", json={"storyContext": "A lonely cabin."})

    assert response.status_code == 200
    assert response.get_json() == {"narrative": "The model ignored the format.", "choices": []}


def test_ai_routes_require_login(client):
    assert client.post("/ai/generate", json={"description": "x"}).status_code == 401


def test_storyweaver_needs_context_or_choice(logged_in, fake_client):
    response = logged_in.post("/ai/storyweaver", json={"storyContext": "  ", "authorChoice": ""})

    assert response.status_code == 400
    assert response.get_json() == {"error": "Story context or author choice is required"}
    assert fake_client.calls == []


def test_storyweaver_accepts_choice_without_context(logged_in, fake_client):
    fake_client.reply = "NARRATIVE:\nThe door creaked.\n\nCHOICES:\n1. Enter\n2. Leave"

    response = logged_in.post("/ai/storyweaver", json={"authorChoice": "Knock"})

    assert response.status_code == 200
    assert response.get_json()["choices"] == ["Enter", "Leave"]


def test_ai_routes_reject_non_object_bodies(logged_in, fake_client):
    response = logged_in.post("/ai/assist", json=["their going home", "grammar"])

    assert response.status_code == 400
    assert response.get_json() == {"error": "Request body must be a JSON object"}
    assert fake_client.calls == []
